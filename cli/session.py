"""
Generation Session - the client side of the lifecycle.

A session owns one ClientView. On start it reconciles the cached view with
the store, then polls the watched generation on a fixed interval, one poll
at a time, until it reaches a terminal status or the session is torn down.
Tearing down only stops local polling; the provider job keeps running and a
later session resumes it through reconciliation.

Usage:
    session = GenerationSession(coordinator, ViewCache())
    await session.start()
    await session.submit({"prompt": "a cat walking"})
    record = await session.watch()
    await session.close()
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from core.errors import CancelError, GenerationNotFound
from services.video_generation import ClientView, GenerationCoordinator, GenerationRecord

from .view_cache import ViewCache

logger = logging.getLogger(__name__)


class GenerationSession:
    def __init__(
        self,
        coordinator: GenerationCoordinator,
        cache: ViewCache,
        interval: Optional[float] = None,
        on_update: Optional[Callable[[GenerationRecord], None]] = None,
    ):
        self.coordinator = coordinator
        self.cache = cache
        self.interval = interval if interval is not None else coordinator.config.polling.interval_seconds
        self.on_update = on_update

        self.view = ClientView()
        self._stopped = asyncio.Event()

    async def _set_view(self, view: ClientView) -> None:
        self.view = view
        await self.cache.save(view)

    async def start(self) -> ClientView:
        """Load the cached view and reconcile it with the store."""
        cached = await self.cache.load()
        await self._set_view(await self.coordinator.reconcile(cached))

        if self.view.is_generating:
            logger.info(f"Resuming generation {self.view.current.id}")
        return self.view

    async def submit(self, payload: Any) -> GenerationRecord:
        record = await self.coordinator.submit(payload)
        self._stopped.clear()
        await self._set_view(ClientView(current=record, is_generating=True))
        return record

    async def follow(self, job_id: str) -> GenerationRecord:
        """Switch the view to an existing generation."""
        record = await self.coordinator.poll(job_id)
        self._stopped.clear()
        await self._set_view(ClientView(current=record, is_generating=not record.is_terminal))
        return record

    async def watch(self) -> Optional[GenerationRecord]:
        """
        Poll the watched generation until it is terminal or the session stops.

        Returns the last known record, or None if there is nothing to watch
        (or the generation disappeared from the store).
        """
        while self.view.is_generating and not self._stopped.is_set():
            job_id = self.view.current.id

            try:
                record = await self.coordinator.poll(job_id)
            except GenerationNotFound:
                logger.info(f"Generation {job_id} no longer exists")
                await self._set_view(ClientView())
                return None

            await self._set_view(ClientView(current=record, is_generating=not record.is_terminal))
            if self.on_update:
                self.on_update(record)

            if record.is_terminal:
                return record

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        return self.view.current

    def stop(self) -> None:
        """Stop polling. Does not cancel the provider job."""
        self._stopped.set()

    async def cancel(self) -> GenerationRecord:
        """
        Cancel the watched generation.

        Local polling stops and the in-flight flag clears whether or not the
        cancellation succeeds; a failed cancellation is re-raised.
        """
        current = self.view.current
        if current is None:
            raise CancelError("No generation to cancel", error_code="NO_GENERATION")

        self.stop()

        try:
            record = await self.coordinator.cancel(current.id)
        except GenerationNotFound:
            await self._set_view(ClientView())
            raise
        except CancelError:
            await self._set_view(ClientView(current=current, is_generating=False))
            raise

        await self._set_view(ClientView(current=record, is_generating=False))
        return record

    async def close(self) -> None:
        self.stop()
        await self.cache.save(self.view)
