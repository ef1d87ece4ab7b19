"""Data models for bulk research sessions."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..exceptions import SessionStateError
from ..research.models import Subject


class BulkStatus(str, Enum):
    """Bulk session lifecycle status."""

    DRAFT = "draft"
    READY = "ready"
    RESEARCHING = "researching"
    PAUSED = "paused"
    RESEARCH_COMPLETE = "research_complete"
    CANCELLED = "cancelled"


class SelectionStrategy(str, Enum):
    """How subjects are picked from the filtered CRM records."""

    FIRST_5 = "first_5"
    FIRST_10 = "first_10"
    FIRST_25 = "first_25"
    FIRST_50 = "first_50"
    FIRST_100 = "first_100"
    TOP_10_BY_SCORE = "top_10_by_score"
    TOP_25_BY_SCORE = "top_25_by_score"
    TOP_50_BY_SCORE = "top_50_by_score"
    CUSTOM = "custom"

    @property
    def limit(self) -> int | None:
        if self == SelectionStrategy.CUSTOM:
            return None
        return int(self.value.split("_")[1])

    @property
    def by_score(self) -> bool:
        return self.value.endswith("_by_score")


class BulkFilterConfig(BaseModel):
    """Filters applied to CRM records before selection."""

    min_score: float | None = None
    max_score: float | None = None
    industries: list[str] = Field(default_factory=list)
    has_website: bool | None = None
    has_existing_research: bool | None = None
    exclude_ids: list[str] = Field(default_factory=list)


class SubjectItem(BaseModel):
    """A CRM business record queued for research."""

    id: str
    name: str
    website: str | None = None
    industry: str | None = None
    email: str | None = None
    score: float | None = None
    has_existing_research: bool = False

    def to_subject(self) -> Subject:
        return Subject(name=self.name, industry=self.industry or "", website=self.website or None, id=self.id)


class BulkItemResult(BaseModel):
    """Outcome of one item in a batch."""

    subject_id: str
    subject_name: str
    success: bool
    payload: dict[str, Any] | None = None
    confidence: float | None = None
    cost: float = 0.0
    execution_time_ms: int = 0
    saved_to_crm: bool = False
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BulkItemError(BaseModel):
    """A recorded error. Warnings never flip an item to failed."""

    subject_id: str
    subject_name: str
    stage: Literal["research", "save_to_crm"]
    severity: Literal["error", "warning"] = "error"
    error: str
    retryable: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class BulkProgress(BaseModel):
    """Progress event emitted by the orchestrator loop."""

    session_id: str
    current_subject_id: str | None = None
    current_subject_name: str | None = None
    processed: int
    total: int
    percent_complete: int
    elapsed_ms: int
    estimated_remaining_ms: int
    current_cost: float


class BulkCostEstimate(BaseModel):
    subject_count: int
    depth: str
    min_cost: float
    max_cost: float
    avg_cost_per_subject: float
    min_time_minutes: int
    max_time_minutes: int
    avg_time_per_subject_seconds: int


def _new_session_id() -> str:
    return f"bulk_{uuid.uuid4().hex[:12]}"


class BulkSession(BaseModel):
    """A pausable, checkpointed batch of subjects researched sequentially."""

    id: str = Field(default_factory=_new_session_id)
    name: str
    depth: str = "standard"
    angle: str | None = None
    filters: BulkFilterConfig = Field(default_factory=BulkFilterConfig)
    selection_strategy: SelectionStrategy = SelectionStrategy.CUSTOM
    subjects: list[SubjectItem] = Field(default_factory=list)

    status: BulkStatus = BulkStatus.DRAFT
    processed_count: int = 0
    total_count: int = 0
    current_index: int = 0

    results: dict[str, BulkItemResult] = Field(default_factory=dict)
    errors: list[BulkItemError] = Field(default_factory=list)

    estimated_cost: float = 0.0
    actual_cost: float = 0.0

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    total_elapsed_ms: int = 0

    success_count: int = 0
    failure_count: int = 0
    saved_to_crm_count: int = 0

    @classmethod
    def create(
        cls,
        name: str,
        depth: str = "standard",
        angle: str | None = None,
        filters: BulkFilterConfig | None = None,
        selection_strategy: SelectionStrategy = SelectionStrategy.CUSTOM,
    ) -> "BulkSession":
        """Create an empty draft session."""
        return cls(
            name=name,
            depth=depth,
            angle=angle,
            filters=filters or BulkFilterConfig(),
            selection_strategy=selection_strategy,
        )

    def select(self, subjects: list[SubjectItem]) -> None:
        """Attach the subjects to research and move the session to ready.

        Results are keyed by subject id, so a repeated id keeps only its first
        occurrence.

        Raises:
            SessionStateError: If research has already started.
        """
        from .selection import estimate_cost

        if self.status not in (BulkStatus.DRAFT, BulkStatus.READY):
            raise SessionStateError(f"Cannot change subjects of a session in status '{self.status.value}'")

        unique: dict[str, SubjectItem] = {}
        for subject in subjects:
            unique.setdefault(subject.id, subject)
        self.subjects = list(unique.values())
        self.total_count = len(self.subjects)
        self.current_index = 0
        self.estimated_cost = estimate_cost(self.total_count, self.depth).avg_cost_per_subject * self.total_count
        self.status = BulkStatus.READY

    @property
    def remaining(self) -> int:
        return max(self.total_count - self.current_index, 0)

    @property
    def percent_complete(self) -> int:
        if self.total_count <= 0:
            return 0
        return round(self.processed_count / self.total_count * 100)

    @property
    def is_resumable(self) -> bool:
        return self.status == BulkStatus.PAUSED

    @property
    def is_terminal(self) -> bool:
        return self.status in (BulkStatus.RESEARCH_COMPLETE, BulkStatus.CANCELLED)

    def summary(self) -> dict[str, Any]:
        """Compact view without per-item payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "depth": self.depth,
            "angle": self.angle,
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "current_index": self.current_index,
            "percent_complete": self.percent_complete,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "saved_to_crm_count": self.saved_to_crm_count,
            "estimated_cost": round(self.estimated_cost, 2),
            "actual_cost": round(self.actual_cost, 4),
            "total_elapsed_ms": self.total_elapsed_ms,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "paused_at": self.paused_at.isoformat() if self.paused_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
