"""Sequential, pausable, checkpointed execution of bulk research sessions."""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ..exceptions import (
    ConfigurationError,
    CRMError,
    ItemPersistenceFailure,
    ItemResearchFailure,
    SessionNotFoundError,
    SessionStateError,
)
from ..observability import bind_session_context, clear_session_context, get_session_logger
from .models import BulkItemError, BulkItemResult, BulkProgress, BulkSession, BulkStatus, SubjectItem
from .selection import DEFAULT_SECONDS_PER_SUBJECT
from .store import SessionStore

if TYPE_CHECKING:
    from ..crm import CRMClient
    from ..research.engine import SubjectResearcher, SubjectResearchResult

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL = 5


async def cancel_session(store: SessionStore, session_id: str) -> BulkSession:
    """Mark a stored session cancelled. Cancelled sessions cannot be resumed.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionStateError: If the session already finished or was cancelled.
    """
    session = await store.get(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session not found: {session_id}")
    if session.is_terminal:
        raise SessionStateError(f"Session {session_id} is already {session.status.value}")

    session.status = BulkStatus.CANCELLED
    session.completed_at = datetime.now(UTC)
    await store.save(session)
    logger.info(f"Cancelled session {session_id}")
    return session


class SessionControl:
    """Pause/cancel token for one running session.

    The orchestrator checks the token before each item, so a request takes
    effect at the next item boundary and never interrupts an item midway.
    """

    def __init__(self):
        self.pause_requested = False
        self.cancel_requested = False

    def request_pause(self) -> None:
        self.pause_requested = True

    def request_cancel(self) -> None:
        self.cancel_requested = True

    def is_set(self) -> bool:
        return self.pause_requested or self.cancel_requested

    def clear(self) -> None:
        self.pause_requested = False
        self.cancel_requested = False


class BulkOrchestrator:
    """Drives a bulk session through its subjects one at a time."""

    def __init__(
        self,
        researcher: "SubjectResearcher",
        store: SessionStore,
        crm: "CRMClient | None" = None,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        on_progress: Callable[[BulkProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.researcher = researcher
        self.store = store
        self.crm = crm
        self.checkpoint_interval = max(checkpoint_interval, 1)
        self.on_progress = on_progress
        self._clock = clock

    async def run(self, session: BulkSession, control: SessionControl | None = None) -> BulkSession:
        """Start a ready session.

        Raises:
            SessionStateError: If the session is not ready.
            ConfigurationError: If credentials are missing mid-run (session is left paused).
        """
        if session.status != BulkStatus.READY:
            raise SessionStateError(f"Session {session.id} cannot start from status '{session.status.value}'")
        return await self._execute(session, control or SessionControl())

    async def resume(self, session_id: str, control: SessionControl | None = None) -> BulkSession:
        """Continue a paused session from its persisted index.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionStateError: If the session is not paused.
        """
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        if session.status != BulkStatus.PAUSED:
            raise SessionStateError(f"Session is not paused (status: {session.status.value})")

        logger.info(f"Resuming session {session_id} from item {session.current_index + 1}/{session.total_count}")
        return await self._execute(session, control or SessionControl())

    async def cancel(self, session_id: str) -> BulkSession:
        """Cancel a session that is not currently running in this process."""
        return await cancel_session(self.store, session_id)

    def _progress(self, session: BulkSession, item: SubjectItem | None, elapsed_ms: int) -> BulkProgress:
        if session.processed_count > 0:
            avg_ms = elapsed_ms / session.processed_count
        else:
            avg_ms = DEFAULT_SECONDS_PER_SUBJECT * 1000
        return BulkProgress(
            session_id=session.id,
            current_subject_id=item.id if item else None,
            current_subject_name=item.name if item else None,
            processed=session.processed_count,
            total=session.total_count,
            percent_complete=session.percent_complete,
            elapsed_ms=elapsed_ms,
            estimated_remaining_ms=int(avg_ms * session.remaining),
            current_cost=round(session.actual_cost, 4),
        )

    def _emit(self, progress: BulkProgress) -> None:
        if self.on_progress:
            self.on_progress(progress)

    async def _execute(self, session: BulkSession, control: SessionControl) -> BulkSession:
        bind_session_context(session.id)
        session_logger = get_session_logger(__name__)

        start = self._clock()
        base_elapsed_ms = session.total_elapsed_ms

        def elapsed_ms() -> int:
            return base_elapsed_ms + int((self._clock() - start) * 1000)

        session.status = BulkStatus.RESEARCHING
        session.started_at = session.started_at or datetime.now(UTC)
        session.paused_at = None
        session.total_count = len(session.subjects)
        await self.store.save(session)

        session_logger.info("bulk_session_running", start_index=session.current_index, total=session.total_count)
        self._emit(self._progress(session, None, elapsed_ms()))

        try:
            for i in range(session.current_index, session.total_count):
                if control.cancel_requested:
                    session.current_index = i
                    session.status = BulkStatus.CANCELLED
                    session.completed_at = datetime.now(UTC)
                    session.total_elapsed_ms = elapsed_ms()
                    await self.store.save(session)
                    session_logger.info("bulk_session_cancelled", index=i)
                    return session

                if control.pause_requested:
                    session.current_index = i
                    session.status = BulkStatus.PAUSED
                    session.paused_at = datetime.now(UTC)
                    session.total_elapsed_ms = elapsed_ms()
                    control.clear()
                    await self.store.save(session)
                    session_logger.info("bulk_session_paused", index=i)
                    return session

                item = session.subjects[i]
                bind_session_context(session.id, item.id)

                try:
                    await self._process_item(session, item)
                except ConfigurationError as e:
                    session.current_index = i
                    session.status = BulkStatus.PAUSED
                    session.paused_at = datetime.now(UTC)
                    session.total_elapsed_ms = elapsed_ms()
                    await self.store.save(session)
                    session_logger.error("bulk_session_configuration_error", error=str(e))
                    raise

                session.processed_count += 1
                session.current_index = i + 1

                if session.processed_count % self.checkpoint_interval == 0:
                    await self.store.save(session)

                self._emit(self._progress(session, item, elapsed_ms()))

            session.status = BulkStatus.RESEARCH_COMPLETE
            session.completed_at = datetime.now(UTC)
            session.total_elapsed_ms = elapsed_ms()
            await self.store.save(session)
            session_logger.info(
                "bulk_session_complete",
                success=session.success_count,
                failed=session.failure_count,
                cost=round(session.actual_cost, 4),
                elapsed_ms=session.total_elapsed_ms,
            )
            return session
        except Exception as e:
            if session.status == BulkStatus.RESEARCHING:
                session.status = BulkStatus.PAUSED
                session.paused_at = datetime.now(UTC)
                session.total_elapsed_ms = elapsed_ms()
                try:
                    await self.store.save(session)
                except Exception as save_error:
                    session_logger.warning("bulk_session_checkpoint_failed", error=str(save_error))
                session_logger.error("bulk_session_interrupted", index=session.current_index, error=str(e))
            raise
        finally:
            clear_session_context()

    async def _research_item(self, session: BulkSession, item: SubjectItem) -> "SubjectResearchResult":
        try:
            return await self.researcher.research(item.to_subject(), depth=session.depth, angle=session.angle)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ItemResearchFailure(str(e)) from e

    async def _save_to_crm(self, item: SubjectItem, payload: dict) -> None:
        try:
            await self.crm.update_business_research(item.id, json.dumps(payload))
        except CRMError as e:
            raise ItemPersistenceFailure(str(e)) from e

    async def _process_item(self, session: BulkSession, item: SubjectItem) -> None:
        """Research one item and record its outcome on the session.

        Research failures are isolated to the item. CRM failures are recorded
        as warnings. Only ConfigurationError propagates.
        """
        item_start = self._clock()
        logger.info(f"Processing {session.current_index + 1}/{session.total_count}: {item.name}")

        try:
            result = await self._research_item(session, item)
        except ItemResearchFailure as e:
            logger.error(f"Research failed for {item.name}: {e}")
            session.errors.append(
                BulkItemError(subject_id=item.id, subject_name=item.name, stage="research", severity="error", error=str(e))
            )
            session.failure_count += 1
            session.results[item.id] = BulkItemResult(
                subject_id=item.id,
                subject_name=item.name,
                success=False,
                execution_time_ms=int((self._clock() - item_start) * 1000),
                error=str(e),
            )
            return

        payload = result.to_payload()
        item_result = BulkItemResult(
            subject_id=item.id,
            subject_name=item.name,
            success=True,
            payload=payload,
            confidence=round(result.confidence.overall, 2),
            cost=result.cost,
            execution_time_ms=int((self._clock() - item_start) * 1000),
        )
        session.results[item.id] = item_result
        session.actual_cost += result.cost
        session.success_count += 1

        if self.crm is not None:
            try:
                await self._save_to_crm(item, payload)
                item_result.saved_to_crm = True
                session.saved_to_crm_count += 1
            except ItemPersistenceFailure as e:
                logger.warning(f"Failed to save research to CRM for {item.name}: {e}")
                session.errors.append(
                    BulkItemError(
                        subject_id=item.id,
                        subject_name=item.name,
                        stage="save_to_crm",
                        severity="warning",
                        error=str(e),
                        retryable=True,
                    )
                )

        logger.info(f"Completed {item.name} in {item_result.execution_time_ms}ms, cost: ${result.cost:.2f}")
