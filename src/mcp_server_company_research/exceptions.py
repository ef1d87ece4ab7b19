"""Custom exceptions for the company research server."""


class CompanyResearchError(Exception):
    """Base exception for company research errors."""

    pass


class ConfigurationError(CompanyResearchError):
    """Raised when a required credential or setting is missing or invalid."""

    pass


class LLMProviderError(ConfigurationError):
    """Raised when LLM provider configuration is invalid."""

    pass


class StageError(CompanyResearchError):
    """Base class for failures local to a single pipeline stage."""

    pass


class StageTimeout(StageError):
    """Raised when a stage's query batch does not settle before its timeout."""

    pass


class StageCallLimitExceeded(StageError):
    """Raised when a stage cannot start because the call budget is spent."""

    pass


class RequiredStageFailure(CompanyResearchError):
    """Raised when a stage flagged as required does not succeed."""

    def __init__(self, stage: str, reason: str | None = None):
        self.stage = stage
        self.reason = reason or "unknown error"
        super().__init__(f"Required stage '{stage}' failed: {self.reason}")


class ItemResearchFailure(CompanyResearchError):
    """Raised when the research cycle for one batch item fails."""

    pass


class ItemPersistenceFailure(CompanyResearchError):
    """Raised when writing a batch item's research back to the CRM fails."""

    pass


class MalformedGenerativeOutput(CompanyResearchError):
    """Raised when generative output cannot be parsed as the expected JSON payload."""

    pass


class SearchProviderError(CompanyResearchError):
    """Raised when the search or extraction provider returns an error."""

    pass


class CRMError(CompanyResearchError):
    """Raised when a CRM request fails."""

    pass


class SessionStateError(CompanyResearchError):
    """Raised when a bulk session transition is not valid from its current status."""

    pass


class SessionNotFoundError(CompanyResearchError):
    """Raised when a bulk session id is unknown to the store."""

    pass
