"""CLI interface for company research and bulk sessions."""

import asyncio
import json
import signal
from typing import Optional

import typer

from .bulk import (
    BulkFilterConfig,
    BulkOrchestrator,
    BulkSession,
    BulkStatus,
    SelectionStrategy,
    SessionControl,
    cancel_session,
    create_session_from_crm,
    estimate_cost,
    format_cost,
    format_duration,
    get_session_store,
)
from .config import CONFIG_FILE, settings
from .crm import CRMClient
from .exceptions import CompanyResearchError, ConfigurationError
from .observability import setup_structured_logging
from .research.engine import SubjectResearcher
from .research.models import Subject
from .utils import save_research_result

app = typer.Typer(help="Company research CLI: staged web research, pain point hypotheses and bulk sessions")


def _print_session(session: BulkSession) -> None:
    print(f"Session: {session.id} ({session.name})")
    print(f"Status: {session.status.value}")
    print(f"Progress: {session.processed_count}/{session.total_count} ({session.percent_complete}%)")
    print(f"Succeeded: {session.success_count}  Failed: {session.failure_count}  Saved to CRM: {session.saved_to_crm_count}")
    print(f"Cost: {format_cost(session.actual_cost)} (estimated {format_cost(session.estimated_cost)})")
    print(f"Elapsed: {format_duration(session.total_elapsed_ms)}")


async def _drive_session(session_id: str, resume: bool) -> BulkSession:
    """Run or resume a session in the foreground. Ctrl+C pauses at the next subject."""
    setup_structured_logging()
    control = SessionControl()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, control.request_pause)

    crm = None
    if settings.bulk.save_to_crm:
        try:
            crm = CRMClient.from_settings(settings.crm)
        except ConfigurationError as e:
            print(f"Warning: CRM write-back disabled: {e}")

    try:
        async with SubjectResearcher.from_settings(settings) as researcher:
            orchestrator = BulkOrchestrator(
                researcher,
                get_session_store(),
                crm=crm,
                checkpoint_interval=settings.bulk.checkpoint_interval,
                on_progress=lambda p: print(
                    f"[{p.processed}/{p.total}] {p.percent_complete}% {p.current_subject_name or ''} "
                    f"cost {format_cost(p.current_cost)}, ~{format_duration(p.estimated_remaining_ms)} left"
                ),
            )
            if resume:
                return await orchestrator.resume(session_id, control)

            session = await get_session_store().get(session_id)
            if session is None:
                raise CompanyResearchError(f"Session not found: {session_id}")
            return await orchestrator.run(session, control)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if crm is not None:
            await crm.aclose()


@app.command()
def research(
    company: str = typer.Argument(..., help="Company to research"),
    website: str = typer.Option(None, "--website", "-w", help="Company website"),
    industry: str = typer.Option("", "--industry", "-i", help="Industry label"),
    depth: str = typer.Option(None, "--depth", "-d", help="quick, standard or deep"),
    angle: str = typer.Option(None, "--angle", "-a", help="Research angle id; omit to cover every angle"),
    save: bool = typer.Option(False, "--save", "-s", help="Save the JSON result to the results directory"),
    no_scrape: bool = typer.Option(False, "--no-scrape", help="Skip the website stage"),
) -> None:
    """Research one company and print the JSON result."""

    async def _research() -> str:
        try:
            researcher = SubjectResearcher.from_settings(settings)
        except ConfigurationError as e:
            return f"Error: {e}"

        async with researcher:
            try:
                result = await researcher.research(
                    Subject(name=company, industry=industry, website=website),
                    depth=depth or settings.pipeline.depth,
                    angle=angle or settings.pipeline.angle,
                    scrape_website=settings.pipeline.scrape_website and not no_scrape,
                )
            except (CompanyResearchError, ValueError) as e:
                return f"Error: {e}"

        payload = result.to_payload()
        if save:
            payload["saved_to"] = str(save_research_result(payload, company))
        return json.dumps(payload, indent=2)

    print(asyncio.run(_research()))


@app.command("bulk-create")
def bulk_create(
    name: str = typer.Argument(..., help="Session name"),
    strategy: SelectionStrategy = typer.Option(SelectionStrategy.FIRST_10, "--strategy", help="Selection strategy"),
    depth: str = typer.Option("standard", "--depth", "-d", help="standard or deep"),
    angle: str = typer.Option(None, "--angle", "-a", help="Research angle id"),
    min_score: Optional[float] = typer.Option(None, "--min-score", help="Minimum CRM score"),
    max_score: Optional[float] = typer.Option(None, "--max-score", help="Maximum CRM score"),
    industry: Optional[list[str]] = typer.Option(None, "--industry", "-i", help="Industry filter (repeatable)"),
    has_website: Optional[bool] = typer.Option(None, "--has-website/--any-website", help="Only records with a website"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", help="Record id to skip (repeatable)"),
    custom_id: Optional[list[str]] = typer.Option(None, "--id", help="Record id for the custom strategy (repeatable)"),
    query: str = typer.Option(None, "--query", "-q", help="CRM search query"),
) -> None:
    """Create a bulk session from CRM records."""
    filters = BulkFilterConfig(
        min_score=min_score,
        max_score=max_score,
        industries=industry or [],
        has_website=has_website,
        exclude_ids=exclude or [],
    )

    async def _create() -> BulkSession:
        async with CRMClient.from_settings(settings.crm) as crm:
            session = await create_session_from_crm(crm, name, depth, angle, filters, strategy, custom_id, query)
        await get_session_store().save(session)
        return session

    try:
        session = asyncio.run(_create())
    except CompanyResearchError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    estimate = estimate_cost(session.total_count, session.depth)
    _print_session(session)
    print(
        f"Estimate: {format_cost(estimate.min_cost)} - {format_cost(estimate.max_cost)}, "
        f"{estimate.min_time_minutes}-{estimate.max_time_minutes} minutes"
    )


@app.command("bulk-run")
def bulk_run(session_id: str = typer.Argument(..., help="Session to run")) -> None:
    """Run a ready session in the foreground. Ctrl+C pauses it."""
    try:
        session = asyncio.run(_drive_session(session_id, resume=False))
    except CompanyResearchError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)
    _print_session(session)


@app.command("bulk-resume")
def bulk_resume(session_id: str = typer.Argument(..., help="Session to resume")) -> None:
    """Resume a paused session in the foreground. Ctrl+C pauses it again."""
    try:
        session = asyncio.run(_drive_session(session_id, resume=True))
    except CompanyResearchError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)
    _print_session(session)


@app.command("bulk-cancel")
def bulk_cancel(session_id: str = typer.Argument(..., help="Session to cancel")) -> None:
    """Cancel a session that is not running."""
    try:
        session = asyncio.run(cancel_session(get_session_store(), session_id))
    except CompanyResearchError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)
    print(f"Cancelled {session.id}")


@app.command("bulk-list")
def bulk_list(
    status: Optional[BulkStatus] = typer.Option(None, "--status", help="Only sessions with this status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of sessions"),
) -> None:
    """List bulk sessions, newest first."""
    sessions = asyncio.run(get_session_store().list_sessions(status=status, limit=limit))
    if not sessions:
        print("No sessions")
        return
    for session in sessions:
        print(
            f"{session.id}  {session.status.value:<18} {session.processed_count:>4}/{session.total_count:<4} "
            f"{format_cost(session.actual_cost):>8}  {session.name}"
        )


@app.command("bulk-show")
def bulk_show(
    session_id: str = typer.Argument(..., help="Session to show"),
    results: bool = typer.Option(False, "--results", "-r", help="Show per-subject results"),
) -> None:
    """Show a session's progress and errors."""
    session = asyncio.run(get_session_store().get(session_id))
    if session is None:
        print(f"Error: Session not found: {session_id}")
        raise typer.Exit(1)

    _print_session(session)
    for error in session.errors:
        print(f"  [{error.severity}] {error.subject_name} ({error.stage}): {error.error}")
    if results:
        for result in session.results.values():
            outcome = f"confidence {result.confidence}" if result.success else f"failed: {result.error}"
            print(f"  {result.subject_name}: {outcome}, {format_cost(result.cost)}")


@app.command()
def config(save: bool = typer.Option(False, "--save", help="Persist the effective settings (without keys) to the config file")) -> None:
    """Show current configuration."""
    if save:
        print(f"Saved: {settings.save()}")
    print(f"Provider: {settings.llm.provider}")
    print(f"Model: {settings.llm.model_name}")
    print(f"Base URL: {settings.llm.base_url or '(default)'}")
    print(f"Search API: {settings.search.base_url} (key {'set' if settings.search.get_api_key() else 'missing'})")
    print(f"Depth: {settings.pipeline.depth}")
    print(f"Angle: {settings.pipeline.angle or '(all)'}")
    print(f"CRM: {'configured' if settings.crm.get_api_key() and settings.crm.get_location_id() else 'not configured'}")
    print(f"Checkpoint interval: {settings.bulk.checkpoint_interval}")
    print(f"Database: {settings.get_database_path()}")
    print(f"Config file: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
