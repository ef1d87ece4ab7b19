"""Data models for the pain point catalog and evidence matching."""

import re
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TriggerSignal:
    """A weighted pattern whose match counts as evidence for a pain point."""

    pattern: str
    weight: float
    regex: re.Pattern = field(compare=False, repr=False)

    @classmethod
    def compile(cls, pattern: str, weight: Any) -> "TriggerSignal":
        """Validate and compile a trigger.

        Raises:
            re.error: If the pattern is not a valid regular expression.
            ValueError: If the weight is not a positive number.
        """
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
            raise ValueError(f"Invalid weight {weight!r} for pattern '{pattern}'")
        return cls(pattern=pattern, weight=float(weight), regex=re.compile(pattern, re.IGNORECASE))


@dataclass(frozen=True)
class PainPoint:
    """A recognizable business problem with the triggers that suggest it."""

    id: str
    name: str
    category: str
    description: str
    trigger_signals: tuple[TriggerSignal, ...]
    hypothesis_template: str
    dimensions: tuple[str, ...] = ()
    discovery_questions: tuple[str, ...] = ()
    primary_personas: tuple[str, ...] = ()
    secondary_personas: tuple[str, ...] = ()
    industries: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PainPoint":
        """Build a pain point from catalog data, compiling every trigger.

        Duplicate patterns within one entry are dropped so a single evidence
        item can never be counted twice for the same pattern.

        Raises:
            KeyError, TypeError, ValueError, re.error: If the entry is malformed.
        """
        triggers: list[TriggerSignal] = []
        seen: set[str] = set()
        for raw in data["trigger_signals"]:
            pattern = str(raw["pattern"])
            if pattern in seen:
                continue
            seen.add(pattern)
            triggers.append(TriggerSignal.compile(pattern, raw["weight"]))

        if not triggers:
            raise ValueError(f"Pain point '{data['id']}' has no trigger signals")

        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            category=str(data["category"]),
            description=str(data.get("description", "")),
            trigger_signals=tuple(triggers),
            hypothesis_template=str(data["hypothesis_template"]),
            dimensions=tuple(data.get("dimensions") or ()),
            discovery_questions=tuple(data.get("discovery_questions") or ()),
            primary_personas=tuple(data.get("primary_personas") or ()),
            secondary_personas=tuple(data.get("secondary_personas") or ()),
            industries=tuple(data.get("industries") or ()),
        )

    def render_hypothesis(self, company: str, industry: str) -> str:
        """Fill the template. The dimension is always the first declared one."""
        values = {
            "company": company,
            "industry": industry or "similar",
            "dimension": self.dimensions[0] if self.dimensions else "operations",
        }
        text = self.hypothesis_template
        for key, value in values.items():
            text = text.replace(f"{{{key}}}", value)
        return text


@dataclass(frozen=True)
class ResearchAngle:
    """A service-line focus that steers search queries toward one category."""

    id: str
    name: str
    description: str = ""
    service_line: str = ""
    search_themes: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResearchAngle":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            service_line=str(data.get("service_line", "")),
            search_themes=tuple(str(theme) for theme in data.get("search_themes") or ()),
        )


@dataclass(frozen=True)
class EvidenceItem:
    """A normalized fact and its source, the unit that triggers are matched against."""

    description: str
    relevance_note: str = ""
    source_name: str = ""
    source_url: str | None = None

    def matchable_text(self) -> str:
        return f"{self.description} {self.relevance_note} {self.source_name}"


@dataclass(frozen=True)
class EvidenceLink:
    """One trigger match supporting a hypothesis."""

    signal_index: int
    trigger_pattern: str
    match_score: float
    matched_text: str
    source_url: str | None = None

    @property
    def key(self) -> tuple[int, str]:
        return (self.signal_index, self.trigger_pattern)


@dataclass(frozen=True)
class HypothesisWithEvidence:
    """A pain point instantiated for a subject, with the evidence that surfaced it."""

    pain_point_id: str
    pain_point_name: str
    hypothesis: str
    total_score: float
    evidence_chain: tuple[EvidenceLink, ...]
    discovery_questions: tuple[str, ...] = ()
    primary_personas: tuple[str, ...] = ()
    generated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "pain_point_id": self.pain_point_id,
            "pain_point_name": self.pain_point_name,
            "hypothesis": self.hypothesis,
            "total_score": round(self.total_score, 4),
            "evidence_chain": [
                {
                    "signal_index": link.signal_index,
                    "trigger_pattern": link.trigger_pattern,
                    "match_score": link.match_score,
                    "matched_text": link.matched_text,
                    "source_url": link.source_url,
                }
                for link in self.evidence_chain
            ],
            "discovery_questions": list(self.discovery_questions),
            "primary_personas": list(self.primary_personas),
            "generated_at": self.generated_at,
        }
