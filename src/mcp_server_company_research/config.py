"""Settings for the research engine, loaded from env vars over an optional JSON config file."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "mcp-server-company-research"


def get_config_dir() -> Path:
    """Per-user config directory, created on first use."""
    root = os.environ.get("APPDATA") if os.name == "nt" else None
    path = Path(root or "~/.config").expanduser() / APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file() -> dict[str, Any]:
    """Read the JSON config file. A missing, empty or unreadable file yields no overrides."""
    try:
        data = json.loads(CONFIG_FILE.read_text(encoding="utf-8") or "{}")
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config_file(config_data: dict[str, Any]) -> Path:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config_data, indent=2), encoding="utf-8")
    return CONFIG_FILE


def _secret_or_env(secret: Optional[SecretStr], *env_names: str) -> Optional[str]:
    """Explicit setting first, then the first non-empty environment variable."""
    if secret:
        return secret.get_secret_value()
    for name in env_names:
        if value := os.environ.get(name):
            return value
    return None


# Conventional key variables per LLM provider; first match wins
STANDARD_ENV_VAR_NAMES: dict[str, str | list[str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "azure_openai": "AZURE_OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

NO_KEY_PROVIDERS = frozenset({"ollama", "bedrock"})

ProviderType = Literal["openai", "anthropic", "google", "azure_openai", "groq", "deepseek", "ollama", "bedrock", "openrouter"]
ResearchDepthType = Literal["quick", "standard", "deep"]
TransportType = Literal["stdio", "streamable-http", "sse"]


class LLMSettings(BaseSettings):
    """Chat model used to extract structured signals from search evidence."""

    model_config = SettingsConfigDict(env_prefix="MCP_LLM_")

    provider: ProviderType = Field(default="anthropic")
    model_name: str = Field(default="claude-sonnet-4-20250514")
    api_key: Optional[SecretStr] = Field(default=None, description="Key override for any provider")
    base_url: Optional[str] = Field(default=None, description="OpenAI-compatible endpoint (self-hosted models)")
    azure_endpoint: Optional[str] = Field(default=None)
    azure_api_version: Optional[str] = Field(default="2024-02-01")
    aws_region: Optional[str] = Field(default=None, description="Bedrock region")

    def get_api_key_for_provider(self) -> Optional[str]:
        """Resolve the key: MCP_LLM_API_KEY, then the provider's standard variable, then MCP_LLM_<PROVIDER>_API_KEY."""
        standard = STANDARD_ENV_VAR_NAMES.get(self.provider, [])
        names = [standard] if isinstance(standard, str) else list(standard)
        return _secret_or_env(self.api_key, *names, f"MCP_LLM_{self.provider.upper()}_API_KEY")

    def requires_api_key(self) -> bool:
        return self.provider not in NO_KEY_PROVIDERS


class SearchSettings(BaseSettings):
    """Web search and page extraction provider."""

    model_config = SettingsConfigDict(env_prefix="MCP_SEARCH_")

    api_key: Optional[SecretStr] = Field(default=None, description="Search API key (falls back to TAVILY_API_KEY)")
    base_url: str = Field(default="https://api.tavily.com")
    request_timeout: float = Field(default=15.0, description="HTTP timeout per provider request in seconds")
    cost_per_call: float = Field(default=0.01, description="Estimated USD cost of one search or extract call")

    def get_api_key(self) -> Optional[str]:
        return _secret_or_env(self.api_key, "TAVILY_API_KEY")


class PipelineSettings(BaseSettings):
    """Defaults for the staged research pipeline."""

    model_config = SettingsConfigDict(env_prefix="MCP_PIPELINE_")

    depth: ResearchDepthType = Field(default="standard")
    angle: Optional[str] = Field(default=None, description="Default research angle (e.g. margin_analytics)")
    scrape_website: bool = Field(default=True)


class CRMSettings(BaseSettings):
    """CRM business records: the source of bulk subjects and the target of write-back."""

    model_config = SettingsConfigDict(env_prefix="MCP_CRM_")

    api_key: Optional[SecretStr] = Field(default=None, description="CRM API key (falls back to GHL_API_KEY)")
    location_id: Optional[str] = Field(default=None, description="CRM location id (falls back to GHL_LOCATION_ID)")
    base_url: str = Field(default="https://services.leadconnectorhq.com")
    api_version: str = Field(default="2021-07-28")
    page_size: int = Field(default=100)
    research_field: str = Field(default="company_research", description="Record property that receives research payloads")

    def get_api_key(self) -> Optional[str]:
        return _secret_or_env(self.api_key, "GHL_API_KEY")

    def get_location_id(self) -> Optional[str]:
        return self.location_id or os.environ.get("GHL_LOCATION_ID")


class BulkSettings(BaseSettings):
    """Bulk session configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_BULK_")

    checkpoint_interval: int = Field(default=5, ge=1, description="Persist the session every N processed items")
    database_path: Optional[str] = Field(default=None, description="SQLite file for bulk sessions (default: config dir)")
    save_to_crm: bool = Field(default=True, description="Write each successful result back to the CRM")


class CostSettings(BaseSettings):
    """Token prices for generative calls, in USD per 1k tokens."""

    model_config = SettingsConfigDict(env_prefix="MCP_COST_")

    input_per_1k_tokens: float = Field(default=0.003)
    output_per_1k_tokens: float = Field(default=0.015)


class ServerSettings(BaseSettings):
    """MCP server transport and output options."""

    model_config = SettingsConfigDict(env_prefix="MCP_SERVER_")

    logging_level: str = Field(default="INFO")
    transport: TransportType = Field(default="stdio")
    host: str = Field(default="127.0.0.1", description="Host for HTTP transports")
    port: int = Field(default=8384, description="Port for HTTP transports")
    results_dir: Optional[str] = Field(default=None, description="Directory to save research results")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="MCP_", extra="ignore")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    crm: CRMSettings = Field(default_factory=CRMSettings)
    bulk: BulkSettings = Field(default_factory=BulkSettings)
    cost: CostSettings = Field(default_factory=CostSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def save(self) -> Path:
        """Write the current settings to the config file. Keys are never written."""
        data = self.model_dump(mode="json", exclude_none=True)
        for section in ("llm", "search", "crm"):
            data.get(section, {}).pop("api_key", None)
        return save_config_file(data)

    def get_results_dir(self) -> Path:
        """Directory for saved research JSON (default ~/Documents/company-research-results), created if needed."""
        if self.server.results_dir:
            path = Path(self.server.results_dir).expanduser()
        else:
            documents = Path("~/Documents").expanduser()
            path = (documents if documents.exists() else Path.home()) / "company-research-results"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_database_path(self) -> Path:
        if self.bulk.database_path:
            return Path(self.bulk.database_path).expanduser()
        return get_config_dir() / "bulk_sessions.db"


def _load_settings() -> AppSettings:
    """File config is the base; environment variables overlay it."""
    return AppSettings(**load_config_file())


settings = _load_settings()
