"""Tests for the async SQLite session store."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from mcp_server_company_research.bulk import BulkItemResult, BulkSession, BulkStatus, SessionStore, SubjectItem


@pytest.fixture
def store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "nested" / "sessions.db")


def make_session(name: str, created_at: datetime | None = None) -> BulkSession:
    session = BulkSession.create(name, angle="sales_growth")
    session.select([SubjectItem(id="rec_1", name="Acme", website="acme.com", score=72.5)])
    if created_at:
        session.created_at = created_at
    return session


class TestSessionStore:
    """Round trips, listing and deletion."""

    @pytest.mark.anyio
    async def test_save_and_get(self, store):
        session = make_session("Round trip")
        session.results["rec_1"] = BulkItemResult(subject_id="rec_1", subject_name="Acme", success=True, payload={"a": 1}, cost=0.4)

        await store.save(session)
        loaded = await store.get(session.id)

        assert loaded.model_dump() == session.model_dump()
        assert loaded.subjects[0].score == 72.5
        assert loaded.results["rec_1"].payload == {"a": 1}

    @pytest.mark.anyio
    async def test_creates_parent_directory(self, store, tmp_path):
        await store.initialize()
        assert (tmp_path / "nested" / "sessions.db").exists()

    @pytest.mark.anyio
    async def test_save_is_upsert(self, store):
        session = make_session("Upsert")
        await store.save(session)

        session.status = BulkStatus.PAUSED
        session.current_index = 1
        await store.save(session)

        sessions = await store.list_sessions()
        assert len(sessions) == 1
        assert sessions[0].status == BulkStatus.PAUSED
        assert sessions[0].current_index == 1

    @pytest.mark.anyio
    async def test_get_missing(self, store):
        assert await store.get("bulk_missing") is None

    @pytest.mark.anyio
    async def test_list_newest_first_with_filter(self, store):
        base = datetime(2025, 1, 1, tzinfo=UTC)
        old = make_session("old", base)
        new = make_session("new", base + timedelta(days=1))
        new.status = BulkStatus.PAUSED
        await store.save(old)
        await store.save(new)

        assert [s.name for s in await store.list_sessions()] == ["new", "old"]
        assert [s.name for s in await store.list_sessions(status=BulkStatus.PAUSED)] == ["new"]
        assert len(await store.list_sessions(limit=1)) == 1

    @pytest.mark.anyio
    async def test_delete(self, store):
        session = make_session("gone")
        await store.save(session)

        assert await store.delete(session.id)
        assert not await store.delete(session.id)
        assert await store.get(session.id) is None

    @pytest.mark.anyio
    async def test_concurrent_initialize(self, store):
        await asyncio.gather(*(store.initialize() for _ in range(5)))
        assert store._initialized

    @pytest.mark.anyio
    async def test_sessions_are_independent(self, store):
        first = make_session("first")
        second = make_session("second")
        await store.save(first)
        await store.save(second)

        first.processed_count = 1
        await store.save(first)

        assert (await store.get(second.id)).processed_count == 0
