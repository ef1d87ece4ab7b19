"""Schema validation and normalization of generative model output.

Model output is untrusted input. Everything downstream of this module sees
a fully typed, fully defaulted ``ExtractedResearch`` regardless of what the
provider actually returned.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator

from ..exceptions import MalformedGenerativeOutput
from ..knowledge.models import EvidenceItem
from .models import DatePrecision

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Not available"
NOT_SPECIFIED = "Not specified"
UNKNOWN = "Unknown"
DEFAULT_SIGNAL_CREDIBILITY = 0.5

SIGNAL_TYPES = ("financial", "strategic", "pricing", "leadership", "technology", "industry")
DEFAULT_SIGNAL_TYPE = "industry"

PERSONA_KEYS = ("cfo_finance", "pricing_rgm", "sales_commercial", "ceo_gm", "technology_analytics")

_PRECISION_ALIASES = {
    "day": DatePrecision.EXACT,
    "exact": DatePrecision.EXACT,
    "month": DatePrecision.MONTH,
    "quarter": DatePrecision.QUARTER,
    "year": DatePrecision.YEAR,
    "approximate": DatePrecision.UNKNOWN,
    "unknown": DatePrecision.UNKNOWN,
}


def _text(value: Any, default: str) -> str:
    """Coerce scalars to text; anything unusable becomes ``default``."""
    if value is None or isinstance(value, dict):
        return default
    if isinstance(value, list):
        parts = [_text(item, "") for item in value if not isinstance(item, dict | list)]
        return "; ".join(part for part in parts if part) or default
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int | float):
        return str(value)
    text = str(value).strip()
    return text or default


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


class _LenientModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text_fields(cls, value: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields[info.field_name]
        if field.annotation is str:
            return _text(value, field.default)
        return value


class CompanyProfile(_LenientModel):
    confirmed_name: str = "Unknown Company"
    industry: str = NOT_SPECIFIED
    sub_segment: str = NOT_SPECIFIED
    estimated_revenue: str = NOT_AVAILABLE
    employee_count: str = NOT_AVAILABLE
    business_model: str = NOT_AVAILABLE
    headquarters: str = NOT_AVAILABLE
    market_position: str = NOT_AVAILABLE


class RecentSignal(_LenientModel):
    """A dated, sourced fact the model pulled out of the gathered evidence."""

    signal_type: str = DEFAULT_SIGNAL_TYPE
    description: str = ""
    source: str = UNKNOWN
    source_url: str = ""
    date: str = UNKNOWN
    date_precision: DatePrecision = DatePrecision.UNKNOWN
    credibility_score: float = DEFAULT_SIGNAL_CREDIBILITY
    relevance: str = ""

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        aliases = {
            "type": "signal_type",
            "signal": "description",
            "detail": "description",
            "headline": "description",
            "source_name": "source",
            "credibility": "credibility_score",
        }
        for alias, name in aliases.items():
            if alias in data and data.get(name) in (None, ""):
                data[name] = data[alias]
        return data

    @field_validator("signal_type", mode="after")
    @classmethod
    def _known_signal_type(cls, value: str) -> str:
        value = value.lower()
        return value if value in SIGNAL_TYPES else DEFAULT_SIGNAL_TYPE

    @field_validator("date_precision", mode="before")
    @classmethod
    def _known_precision(cls, value: Any) -> DatePrecision:
        if isinstance(value, DatePrecision):
            return value
        if isinstance(value, str):
            return _PRECISION_ALIASES.get(value.strip().lower(), DatePrecision.UNKNOWN)
        return DatePrecision.UNKNOWN

    @field_validator("credibility_score", mode="before")
    @classmethod
    def _clamp_credibility(cls, value: Any) -> float:
        return min(max(_as_float(value, DEFAULT_SIGNAL_CREDIBILITY), 0.0), 1.0)

    @model_validator(mode="after")
    def _require_description(self) -> "RecentSignal":
        if not self.description:
            raise ValueError("signal has no description")
        return self

    def to_evidence(self) -> EvidenceItem:
        return EvidenceItem(
            description=self.description,
            relevance_note=self.relevance,
            source_name=self.source,
            source_url=self.source_url or None,
        )


class PersonaAngle(_LenientModel):
    primary_hook: str = NOT_AVAILABLE
    supporting_point: str = NOT_AVAILABLE
    question_to_pose: str = NOT_AVAILABLE

    @model_validator(mode="before")
    @classmethod
    def _apply_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {}
        data = dict(data)
        if "hook" in data and "primary_hook" not in data:
            data["primary_hook"] = data["hook"]
        if "question" in data and "question_to_pose" not in data:
            data["question_to_pose"] = data["question"]
        return data


class OutreachPriority(_LenientModel):
    recommended_personas: list[str] = Field(default_factory=list)
    timing_notes: str = NOT_AVAILABLE
    cautions: str = NOT_AVAILABLE

    @field_validator("recommended_personas", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> list[str]:
        return [item.strip() for item in _as_list(value) if isinstance(item, str) and item.strip()]


def _default_persona_angles() -> dict[str, PersonaAngle]:
    return {key: PersonaAngle() for key in PERSONA_KEYS}


class ExtractedResearch(BaseModel):
    """Typed, defaulted result of one extraction call."""

    company_profile: CompanyProfile = Field(default_factory=CompanyProfile)
    recent_signals: list[RecentSignal] = Field(default_factory=list)
    persona_angles: dict[str, PersonaAngle] = Field(default_factory=_default_persona_angles)
    outreach_priority: OutreachPriority = Field(default_factory=OutreachPriority)
    research_gaps: list[str] = Field(default_factory=list)

    def evidence_items(self) -> list[EvidenceItem]:
        return [signal.to_evidence() for signal in self.recent_signals]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def parse_generative_json(text: str) -> Any:
    """Parse JSON out of a model response, tolerating markdown code fences.

    Raises:
        MalformedGenerativeOutput: If no JSON document can be parsed.
    """
    content = str(text or "").strip()

    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        content = content[start:end if end != -1 else None].strip()
    elif "```" in content:
        start = content.find("```") + 3
        end = content.find("```", start)
        content = content[start:end if end != -1 else None].strip()

    if not content:
        raise MalformedGenerativeOutput("Empty response from generative provider")

    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedGenerativeOutput(f"Response is not valid JSON: {e}") from e


def _normalize_signals(raw: Any) -> list[RecentSignal]:
    signals = []
    for item in _as_list(raw):
        if not isinstance(item, dict):
            continue
        try:
            signals.append(RecentSignal.model_validate(item))
        except ValidationError:
            logger.debug(f"Dropping invalid signal: {str(item)[:100]}")
    return signals


def _normalize_persona_angles(raw: Any) -> dict[str, PersonaAngle]:
    angles = _default_persona_angles()
    if not isinstance(raw, dict):
        return angles
    for key, value in raw.items():
        if isinstance(value, dict):
            angles[str(key)] = PersonaAngle.model_validate(value)
    return angles


def normalize_research_output(data: Any, fallback_name: str | None = None) -> ExtractedResearch:
    """Coerce arbitrary parsed model output into an ``ExtractedResearch``.

    Wrong scalar types are converted, missing or invalid fields get defaults,
    and invalid array elements are dropped. This never raises for any JSON
    value.

    Args:
        data: Parsed JSON from the model (any shape)
        fallback_name: Used as confirmed_name when the model omits it

    Returns:
        The normalized research with one persona angle per known persona key.
    """
    if not isinstance(data, dict):
        logger.warning(f"Expected a JSON object from the model, got {type(data).__name__}; using defaults")
        data = {}

    raw_profile = data.get("company_profile")
    profile = CompanyProfile.model_validate(raw_profile if isinstance(raw_profile, dict) else {})
    if fallback_name and profile.confirmed_name == CompanyProfile.model_fields["confirmed_name"].default:
        profile = profile.model_copy(update={"confirmed_name": fallback_name})

    raw_priority = data.get("outreach_priority")
    priority = OutreachPriority.model_validate(raw_priority if isinstance(raw_priority, dict) else {})

    gaps = [_text(gap, "") for gap in _as_list(data.get("research_gaps"))]

    return ExtractedResearch(
        company_profile=profile,
        recent_signals=_normalize_signals(data.get("recent_signals")),
        persona_angles=_normalize_persona_angles(data.get("persona_angles")),
        outreach_priority=priority,
        research_gaps=[gap for gap in gaps if gap],
    )
