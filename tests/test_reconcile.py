"""
Reconciliation Tests - rebuilding a client view from the store

Run with:
    python -m pytest tests/test_reconcile.py -v
"""

from pathlib import Path

import pytest

from core.config import DatabaseConfig
from services.video_generation import (
    ClientView,
    GenerationCoordinator,
    GenerationRecord,
    GenerationStatus,
    SqliteGenerationStore,
    create_coordinator,
)


def record(job_id: str, status: GenerationStatus, created_at: int) -> GenerationRecord:
    return GenerationRecord(
        id=job_id,
        prompt=f"prompt {job_id}",
        params={},
        status=status,
        created_at=created_at,
    )


class TestReconcile:
    """Store is the source of truth for the client view."""

    @pytest.mark.asyncio
    async def test_empty_store_empty_view(self, coordinator):
        view = await coordinator.reconcile(ClientView())

        assert view == ClientView()

    @pytest.mark.asyncio
    async def test_remembered_terminal_job_is_adopted(self, coordinator, store):
        stale = record("a", GenerationStatus.PROCESSING, 1000)
        await store.create(record("a", GenerationStatus.COMPLETED, 1000).evolve(video_url="/api/videos/a.mp4"))

        view = await coordinator.reconcile(ClientView(current=stale, is_generating=True))

        assert view.current.status == GenerationStatus.COMPLETED
        assert view.current.video_url == "/api/videos/a.mp4"
        assert view.is_generating is False

    @pytest.mark.asyncio
    async def test_remembered_active_job_resumes(self, coordinator, store):
        await store.create(record("a", GenerationStatus.PROCESSING, 1000))

        view = await coordinator.reconcile(
            ClientView(current=record("a", GenerationStatus.QUEUED, 1000), is_generating=True)
        )

        assert view.current.status == GenerationStatus.PROCESSING
        assert view.is_generating is True

    @pytest.mark.asyncio
    async def test_remembered_job_gone(self, coordinator, store):
        await store.create(record("other", GenerationStatus.PROCESSING, 5000))

        view = await coordinator.reconcile(
            ClientView(current=record("deleted", GenerationStatus.PROCESSING, 1000), is_generating=True)
        )

        assert view == ClientView()

    @pytest.mark.asyncio
    async def test_picks_most_recent_active(self, coordinator, store):
        await store.create(record("old", GenerationStatus.QUEUED, 1000))
        await store.create(record("newest-done", GenerationStatus.COMPLETED, 9000))
        await store.create(record("recent", GenerationStatus.PROCESSING, 5000))

        view = await coordinator.reconcile(ClientView())

        assert view.current.id == "recent"
        assert view.is_generating is True

    @pytest.mark.asyncio
    async def test_tie_broken_by_id(self, coordinator, store):
        await store.create(record("job-a", GenerationStatus.QUEUED, 1000))
        await store.create(record("job-b", GenerationStatus.QUEUED, 1000))

        view = await coordinator.reconcile(ClientView())

        assert view.current.id == "job-b"

    @pytest.mark.asyncio
    async def test_idempotent(self, coordinator, store):
        await store.create(record("a", GenerationStatus.PROCESSING, 1000))

        once = await coordinator.reconcile(ClientView())
        twice = await coordinator.reconcile(once)

        assert once == twice

    @pytest.mark.asyncio
    async def test_reads_only(self, coordinator, store, provider):
        await store.create(record("a", GenerationStatus.PROCESSING, 1000))

        await coordinator.reconcile(ClientView())

        provider.fetch_status.assert_not_awaited()
        assert (await store.get("a")).status == GenerationStatus.PROCESSING


class TestAcrossRestarts:
    """A new process picks up what an earlier one recorded."""

    @pytest.mark.asyncio
    async def test_submit_then_reconcile_from_a_new_coordinator(self, tmp_path, provider, artifacts, config):
        path = tmp_path / "state" / "generations.db"
        first = GenerationCoordinator(SqliteGenerationStore(path), provider, artifacts, config)
        submitted = await first.submit({"prompt": "a cat walking"})

        second = GenerationCoordinator(SqliteGenerationStore(path), provider, artifacts, config)
        view = await second.reconcile(ClientView())

        assert view.is_generating is True
        assert view.current.id == submitted.id
        assert view.current.prompt == "a cat walking"
        assert view.current.estimated_time == submitted.estimated_time

        cancelled = await second.cancel(submitted.id)
        assert cancelled.status == GenerationStatus.CANCELLED
        assert (await first.store.get(submitted.id)).status == GenerationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_default_wiring_survives_restart(self, config, provider):
        config.database = DatabaseConfig(url="", sqlite_path="")

        first = await create_coordinator(config)
        first.provider = provider
        submitted = await first.submit({"prompt": "a cat walking"})
        await first.close()

        second = await create_coordinator(config)
        view = await second.reconcile(ClientView(current=submitted, is_generating=True))
        history = await second.history()
        await second.close()

        assert view.current.id == submitted.id
        assert view.is_generating is True
        assert [r.id for r in history] == [submitted.id]

    @pytest.mark.asyncio
    async def test_default_store_lives_in_state_dir(self, config):
        config.database = DatabaseConfig(url="", sqlite_path="")

        coordinator = await create_coordinator(config)
        await coordinator.close()

        assert isinstance(coordinator.store, SqliteGenerationStore)
        assert coordinator.store.db_path == Path(config.storage.state_dir) / "generations.db"
        assert coordinator.store.db_path.exists()

    @pytest.mark.asyncio
    async def test_sqlite_path_override(self, config, tmp_path):
        config.database = DatabaseConfig(url="", sqlite_path=str(tmp_path / "elsewhere" / "wan.db"))

        coordinator = await create_coordinator(config)
        await coordinator.close()

        assert coordinator.store.db_path == tmp_path / "elsewhere" / "wan.db"