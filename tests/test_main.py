"""
CLI Command Tests - exit status of the watch command

Run with:
    python -m pytest tests/test_main.py -v
"""

import pytest

import main
from cli import GenerationSession, ProgressMonitor, ViewCache
from services.video_generation import GenerationStatus, ProviderJob


@pytest.fixture
def use_session(monkeypatch, coordinator, tmp_path):
    """Route the CLI's session factory to the test coordinator."""
    monitor = ProgressMonitor()
    session = GenerationSession(coordinator, ViewCache(path=tmp_path / "view.json"), interval=0.01)

    async def open_session():
        await session.start()
        return session, monitor

    monkeypatch.setattr(main, "open_session", open_session)
    return session


class TestWatchCommand:
    """`main.py watch` succeeds only for a completed generation."""

    @pytest.mark.asyncio
    async def test_completed_generation_succeeds(self, use_session, coordinator, provider, video_b64):
        await coordinator.submit({"prompt": "a cat walking"})
        provider.fetch_status.return_value = ProviderJob(
            id="job-1",
            status=GenerationStatus.COMPLETED,
            raw_status="COMPLETED",
            video_base64=video_b64,
        )

        assert await main.watch_generation(None) is True

    @pytest.mark.asyncio
    async def test_failed_generation_fails(self, use_session, coordinator, provider):
        await coordinator.submit({"prompt": "a cat walking"})
        provider.fetch_status.return_value = ProviderJob(
            id="job-1",
            status=GenerationStatus.FAILED,
            raw_status="FAILED",
            error="out of memory",
        )

        assert await main.watch_generation(None) is False

    @pytest.mark.asyncio
    async def test_nothing_to_watch(self, use_session):
        assert await main.watch_generation(None) is True
