"""Bulk research sessions: selection, persistence and the pausable batch loop."""

from .models import (
    BulkCostEstimate,
    BulkFilterConfig,
    BulkItemError,
    BulkItemResult,
    BulkProgress,
    BulkSession,
    BulkStatus,
    SelectionStrategy,
    SubjectItem,
)
from .orchestrator import BulkOrchestrator, SessionControl, cancel_session
from .selection import (
    apply_selection_strategy,
    create_session_from_crm,
    estimate_cost,
    filter_subjects,
    format_cost,
    format_duration,
    unique_industries,
)
from .store import SessionStore, get_session_store

__all__ = [
    "BulkCostEstimate",
    "BulkFilterConfig",
    "BulkItemError",
    "BulkItemResult",
    "BulkOrchestrator",
    "BulkProgress",
    "BulkSession",
    "BulkStatus",
    "SelectionStrategy",
    "SessionControl",
    "SessionStore",
    "SubjectItem",
    "apply_selection_strategy",
    "cancel_session",
    "create_session_from_crm",
    "estimate_cost",
    "filter_subjects",
    "format_cost",
    "format_duration",
    "get_session_store",
    "unique_industries",
]
