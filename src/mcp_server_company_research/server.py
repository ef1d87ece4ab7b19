"""MCP server exposing company research and bulk sessions as tools."""

import asyncio
import json
import logging
import os
import sys
import time
from collections.abc import Awaitable, Callable


def _configure_stdio_logging() -> None:
    """Configure logging for stdio MCP mode - all logs MUST go to stderr.

    In stdio mode, stdout is reserved exclusively for JSON-RPC messages.
    Any logging or print() to stdout corrupts the protocol stream.
    """
    os.environ.setdefault("BROWSER_USE_LOGGING_LEVEL", "warning")

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [stderr_handler]
    root.setLevel(logging.WARNING)

    for logger_name in ["httpx", "httpcore", "asyncio", "aiosqlite", "browser_use", "openai", "anthropic"]:
        dep_logger = logging.getLogger(logger_name)
        dep_logger.setLevel(logging.WARNING)
        dep_logger.handlers = [stderr_handler]
        dep_logger.propagate = False


# Configure logging BEFORE importing browser_use and other noisy dependencies
_configure_stdio_logging()

# ruff: noqa: E402 - Intentional late imports after logging configuration
from fastmcp import FastMCP

from .bulk import (
    BulkFilterConfig,
    BulkOrchestrator,
    BulkProgress,
    BulkSession,
    BulkStatus,
    SelectionStrategy,
    SessionControl,
    cancel_session,
    create_session_from_crm,
    estimate_cost,
    get_session_store,
    unique_industries,
)
from .config import settings
from .crm import CRMClient
from .exceptions import CompanyResearchError, ConfigurationError, SessionNotFoundError
from .observability import setup_structured_logging
from .research.engine import SubjectResearcher
from .research.models import Subject
from .utils import save_research_result

logger = logging.getLogger("mcp_server_company_research")
logger.setLevel(getattr(logging, settings.server.logging_level.upper()))


def _error(message: str) -> str:
    return json.dumps({"success": False, "error": message}, indent=2)


def _crm_for_bulk() -> CRMClient | None:
    """CRM client for write-back, or None when write-back is disabled or not configured."""
    if not settings.bulk.save_to_crm:
        return None
    try:
        return CRMClient.from_settings(settings.crm)
    except ConfigurationError as e:
        logger.warning(f"CRM write-back disabled: {e}")
        return None


def serve() -> FastMCP:
    """Create and configure the MCP server."""
    setup_structured_logging()

    server = FastMCP("mcp_server_company_research")

    # Registry of bulk sessions running in this server process
    running: dict[str, tuple[asyncio.Task, SessionControl]] = {}
    last_progress: dict[str, BulkProgress] = {}

    def _start_background(
        session_id: str,
        researcher: SubjectResearcher,
        drive: Callable[[BulkOrchestrator, SessionControl], Awaitable[BulkSession]],
    ) -> None:
        control = SessionControl()
        crm = _crm_for_bulk()
        orchestrator = BulkOrchestrator(
            researcher,
            get_session_store(),
            crm=crm,
            checkpoint_interval=settings.bulk.checkpoint_interval,
            on_progress=lambda progress: last_progress.__setitem__(progress.session_id, progress),
        )

        async def _drive() -> None:
            try:
                session = await drive(orchestrator, control)
                logger.info(f"Session {session_id} stopped with status {session.status.value}")
            except Exception as e:
                logger.error(f"Session {session_id} failed: {e}")
            finally:
                await researcher.aclose()
                if crm is not None:
                    await crm.aclose()
                running.pop(session_id, None)

        running[session_id] = (asyncio.create_task(_drive()), control)

    @server.tool()
    async def research_company(
        company_name: str,
        website: str | None = None,
        industry: str = "",
        depth: str | None = None,
        angle: str | None = None,
        save_result: bool = False,
    ) -> str:
        """
        Research one company: staged web evidence, pain point hypotheses, and a confidence breakdown.

        Args:
            company_name: Company to research
            website: Company website (scraped first when provided)
            industry: Industry label used in queries and hypotheses
            depth: quick, standard or deep (default from settings)
            angle: Research angle id (e.g. margin_analytics); omit to cover every angle
            save_result: Save the JSON result to the results directory

        Returns:
            JSON research payload, or a JSON error
        """
        try:
            researcher = SubjectResearcher.from_settings(settings)
        except ConfigurationError as e:
            return _error(str(e))

        subject = Subject(name=company_name, industry=industry, website=website)
        try:
            async with researcher:
                result = await researcher.research(
                    subject,
                    depth=depth or settings.pipeline.depth,
                    angle=angle or settings.pipeline.angle,
                    scrape_website=settings.pipeline.scrape_website,
                )
        except (CompanyResearchError, ValueError) as e:
            logger.error(f"Research failed for {company_name}: {e}")
            return _error(str(e))

        payload = result.to_payload()
        if save_result or settings.server.results_dir:
            payload["saved_to"] = str(save_research_result(payload, company_name, settings.get_results_dir()))
        return json.dumps(payload, indent=2)

    @server.tool()
    async def bulk_create_session(
        name: str,
        strategy: str = "first_10",
        depth: str = "standard",
        angle: str | None = None,
        min_score: float | None = None,
        max_score: float | None = None,
        industries: list[str] | None = None,
        has_website: bool | None = None,
        has_existing_research: bool | None = None,
        exclude_ids: list[str] | None = None,
        custom_ids: list[str] | None = None,
        query: str | None = None,
    ) -> str:
        """
        Create a bulk research session from CRM business records.

        Args:
            name: Session name
            strategy: first_5/10/25/50/100, top_10/25/50_by_score, or custom
            depth: standard or deep
            angle: Research angle id applied to every subject
            min_score: Minimum CRM score
            max_score: Maximum CRM score
            industries: Keep records whose industry contains any of these
            has_website: Only records with a website
            has_existing_research: Filter on whether research was already saved
            exclude_ids: Record ids to skip
            custom_ids: Record ids to pick when strategy is custom
            query: CRM search query

        Returns:
            JSON session summary with a cost estimate
        """
        try:
            selection = SelectionStrategy(strategy)
        except ValueError:
            return _error(f"Unknown strategy '{strategy}'. Use one of: {', '.join(s.value for s in SelectionStrategy)}")

        filters = BulkFilterConfig(
            min_score=min_score,
            max_score=max_score,
            industries=industries or [],
            has_website=has_website,
            has_existing_research=has_existing_research,
            exclude_ids=exclude_ids or [],
        )
        try:
            async with CRMClient.from_settings(settings.crm) as crm:
                session = await create_session_from_crm(crm, name, depth, angle, filters, selection, custom_ids, query)
        except CompanyResearchError as e:
            return _error(str(e))

        await get_session_store().save(session)
        return json.dumps(
            {
                "success": True,
                "session": session.summary(),
                "industries": unique_industries(session.subjects),
                "estimate": estimate_cost(session.total_count, session.depth).model_dump(),
            },
            indent=2,
        )

    @server.tool()
    async def bulk_start(session_id: str) -> str:
        """
        Start researching a ready bulk session in the background.

        Args:
            session_id: Session to start

        Returns:
            JSON with success status
        """
        if session_id in running:
            return _error(f"Session {session_id} is already running")

        session = await get_session_store().get(session_id)
        if session is None:
            return _error(f"Session not found: {session_id}")
        if session.status != BulkStatus.READY:
            return _error(f"Session cannot start from status '{session.status.value}'")

        try:
            researcher = SubjectResearcher.from_settings(settings)
        except ConfigurationError as e:
            return _error(str(e))

        _start_background(session_id, researcher, lambda orchestrator, control: orchestrator.run(session, control))
        return json.dumps({"success": True, "session_id": session_id, "status": BulkStatus.RESEARCHING.value}, indent=2)

    @server.tool()
    async def bulk_pause(session_id: str) -> str:
        """
        Request a pause. The session stops before its next subject.

        Args:
            session_id: Running session to pause

        Returns:
            JSON with success status
        """
        entry = running.get(session_id)
        if entry is None:
            return _error(f"Session {session_id} is not running")
        entry[1].request_pause()
        return json.dumps({"success": True, "session_id": session_id, "message": "Pause requested"}, indent=2)

    @server.tool()
    async def bulk_resume(session_id: str) -> str:
        """
        Resume a paused bulk session in the background.

        Args:
            session_id: Paused session to resume

        Returns:
            JSON with success status
        """
        if session_id in running:
            return _error(f"Session {session_id} is already running")

        session = await get_session_store().get(session_id)
        if session is None:
            return _error(f"Session not found: {session_id}")
        if session.status != BulkStatus.PAUSED:
            return _error(f"Session is not paused (status: {session.status.value})")

        try:
            researcher = SubjectResearcher.from_settings(settings)
        except ConfigurationError as e:
            return _error(str(e))

        _start_background(session_id, researcher, lambda orchestrator, control: orchestrator.resume(session_id, control))
        return json.dumps({"success": True, "session_id": session_id, "status": BulkStatus.RESEARCHING.value}, indent=2)

    @server.tool()
    async def bulk_cancel(session_id: str) -> str:
        """
        Cancel a bulk session. Cancelled sessions cannot be resumed.

        Args:
            session_id: Session to cancel

        Returns:
            JSON with success status
        """
        entry = running.get(session_id)
        if entry is not None:
            entry[1].request_cancel()
            return json.dumps({"success": True, "session_id": session_id, "message": "Cancel requested"}, indent=2)

        try:
            session = await cancel_session(get_session_store(), session_id)
        except CompanyResearchError as e:
            return _error(str(e))
        return json.dumps({"success": True, "session_id": session_id, "status": session.status.value}, indent=2)

    @server.tool()
    async def bulk_status(session_id: str, include_results: bool = False) -> str:
        """
        Get a bulk session's progress, errors, and optionally per-subject results.

        Args:
            session_id: Session to inspect
            include_results: Include per-subject result summaries

        Returns:
            JSON session status
        """
        session = await get_session_store().get(session_id)
        if session is None:
            return _error(str(SessionNotFoundError(f"Session not found: {session_id}")))

        data = {
            "session": session.summary(),
            "running": session_id in running,
            "errors": [e.model_dump(mode="json") for e in session.errors],
        }
        progress = last_progress.get(session_id)
        if progress is not None:
            data["progress"] = progress.model_dump()
        if include_results:
            data["results"] = [r.model_dump(mode="json", exclude={"payload"}) for r in session.results.values()]
        return json.dumps(data, indent=2)

    @server.tool()
    async def bulk_list(status: str | None = None, limit: int = 20) -> str:
        """
        List bulk sessions, newest first.

        Args:
            status: Only sessions with this status
            limit: Maximum number of sessions

        Returns:
            JSON list of session summaries
        """
        try:
            status_filter = BulkStatus(status) if status else None
        except ValueError:
            return _error(f"Unknown status '{status}'")

        sessions = await get_session_store().list_sessions(status=status_filter, limit=limit)
        return json.dumps({"sessions": [s.summary() for s in sessions], "count": len(sessions)}, indent=2)

    @server.tool()
    async def health_check() -> str:
        """
        Health check endpoint with system stats and running bulk sessions.

        Returns:
            JSON object with server health status and running sessions
        """
        import psutil

        process = psutil.Process()
        memory_info = process.memory_info()

        return json.dumps(
            {
                "status": "healthy",
                "uptime_seconds": round(time.time() - _server_start_time, 1),
                "memory_mb": round(memory_info.rss / 1024 / 1024, 1),
                "running_sessions": len(running),
                "sessions": [
                    {
                        "session_id": session_id,
                        "progress": last_progress[session_id].model_dump() if session_id in last_progress else None,
                    }
                    for session_id in running
                ],
            },
            indent=2,
        )

    return server


# Track server start time for uptime calculation
_server_start_time = time.time()


server_instance = serve()


def main() -> None:
    """Entry point for MCP server."""
    transport = settings.server.transport

    if transport == "stdio":
        logger.info(f"Starting company research server (provider: {settings.llm.provider}, transport: stdio)")
        server_instance.run()
    elif transport in ("streamable-http", "sse"):
        logger.info(f"Starting company research server (provider: {settings.llm.provider}, transport: {transport})")
        logger.info(f"HTTP server at http://{settings.server.host}:{settings.server.port}/mcp")
        server_instance.run(transport=transport, host=settings.server.host, port=settings.server.port)
    else:
        raise ValueError(f"Unknown transport: {transport}")


if __name__ == "__main__":
    main()
