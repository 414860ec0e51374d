"""
Generation Lifecycle Coordinator

The single authority that turns provider state plus stored state into what
clients see. Three views of one job are kept consistent here:

- provider job state     (RunPodClient.fetch_status)
- persisted record       (GenerationStore, source of truth for clients)
- client view            (ClientView, rebuilt by reconcile())

Per-job state machine:

    queued -> processing -> completed | failed | cancelled

A provider-side completion only becomes a stored completion once the
artifact transfer has produced a stable video path; until then the record
keeps its pre-completion status and the next poll retries the transfer.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from core.config import Config, get_config
from core.errors import (
    ArtifactTransferError,
    CancelError,
    GenerationNotFound,
    ProviderError,
)

from .artifacts import ArtifactStore
from .client import RunPodClient
from .estimates import estimate_generation_time
from .models import (
    ClientView,
    GenerationRecord,
    GenerationStatus,
    ProviderJob,
    now_ms,
    validate_params,
)
from .store import GenerationStore, PostgresGenerationStore, SqliteGenerationStore

logger = logging.getLogger(__name__)


class GenerationCoordinator:
    """
    Usage:
        coordinator = GenerationCoordinator(store, provider, artifacts)

        record = await coordinator.submit({"prompt": "a cat walking"})
        record = await coordinator.poll(record.id)
        view = await coordinator.reconcile(ClientView())
    """

    def __init__(
        self,
        store: GenerationStore,
        provider: RunPodClient,
        artifacts: ArtifactStore,
        config: Optional[Config] = None,
    ):
        self.store = store
        self.provider = provider
        self.artifacts = artifacts
        self.config = config or get_config()

    def progress_for(self, status: GenerationStatus) -> Optional[int]:
        """Estimated progress for a status (None means keep the stored value)."""
        if status == GenerationStatus.QUEUED:
            return 0
        if status == GenerationStatus.PROCESSING:
            return self.config.polling.processing_progress
        if status == GenerationStatus.COMPLETED:
            return 100
        return None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, payload: Any) -> GenerationRecord:
        """
        Validate, enqueue with the provider, and record a queued generation.

        Raises:
            ValidationError: before any provider call; nothing is stored
            ProviderError: the provider refused the job; nothing is stored
        """
        params = validate_params(payload)
        estimated_time = estimate_generation_time(params, self.config.estimates)

        job = await self.provider.submit(params)

        record = GenerationRecord(
            id=job.id,
            prompt=params.prompt,
            params=params.persisted(),
            status=GenerationStatus.QUEUED,
            created_at=now_ms(),
            progress=0,
            estimated_time=estimated_time,
        )
        await self.store.create(record)

        logger.info(f"Generation {job.id} submitted (estimated {estimated_time}s)")
        return record

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self, job_id: str) -> GenerationRecord:
        """
        Refresh a generation from the provider and return the stored record.

        Terminal records are returned as-is without contacting the provider.
        Provider and transfer failures are logged and leave the record
        untouched; the next poll retries.

        Raises:
            GenerationNotFound: no record for this id
            UnknownProviderStatus: the provider's vocabulary drifted
        """
        record = await self.store.get(job_id)
        if record is None:
            raise GenerationNotFound(job_id)
        if record.is_terminal:
            return record

        try:
            job = await self.provider.fetch_status(job_id)
        except ProviderError as e:
            logger.warning(f"Status check for {job_id} failed, will retry: {e}")
            return record

        if job.status == GenerationStatus.COMPLETED:
            updated = await self._finalize_completion(record, job)
        elif job.status == GenerationStatus.FAILED:
            updated = await self.store.update(
                job_id,
                status=GenerationStatus.FAILED,
                error=job.error or "Generation failed",
                completed_at=now_ms(),
                execution_time=job.execution_time,
                delay_time=job.delay_time,
            )
            if updated:
                logger.info(f"Generation {job_id} failed: {updated.error}")
        else:
            updated = await self.store.update(
                job_id,
                status=job.status,
                progress=self.progress_for(job.status),
            )

        if updated is None:
            # Another writer moved the record first; report what is stored
            return await self.store.get(job_id) or record

        if updated.status != record.status:
            logger.info(f"Generation {job_id}: {record.status.value} -> {updated.status.value}")
        return updated

    async def _finalize_completion(
        self,
        record: GenerationRecord,
        job: ProviderJob,
    ) -> Optional[GenerationRecord]:
        if not job.video_base64:
            logger.warning(f"Generation {record.id} completed without a video payload, will retry")
            return record

        try:
            paths = await self.artifacts.save(record.id, job.video_base64, job.thumbnail_base64)
        except ArtifactTransferError as e:
            logger.warning(f"Artifact transfer for {record.id} failed, will retry: {e}")
            return record

        return await self.store.update(
            record.id,
            status=GenerationStatus.COMPLETED,
            progress=100,
            video_url=paths.video_url,
            thumbnail_url=paths.thumbnail_url,
            completed_at=now_ms(),
            execution_time=job.execution_time,
            delay_time=job.delay_time,
        )

    async def regenerate_thumbnail(self, job_id: str) -> GenerationRecord:
        """
        Rebuild a missing thumbnail for a completed generation.

        The thumbnail is fetched again from the provider's job output and
        attached without touching the video or the status. A record that
        already has a thumbnail is returned unchanged.

        Raises:
            GenerationNotFound: no record for this id
            ArtifactTransferError: the job is not completed, the provider has
                no thumbnail for it, or the image could not be processed
            ProviderError: the provider could not be reached
        """
        record = await self.store.get(job_id)
        if record is None:
            raise GenerationNotFound(job_id)
        if record.status != GenerationStatus.COMPLETED:
            raise ArtifactTransferError(
                f"Generation {job_id} is {record.status.value}, not completed",
                error_code="NOT_COMPLETED",
            )
        if record.thumbnail_url:
            return record

        job = await self.provider.fetch_status(job_id)
        if not job.thumbnail_base64:
            raise ArtifactTransferError(
                f"Provider returned no thumbnail for {job_id}",
                error_code="NO_THUMBNAIL",
            )

        thumbnail_url = await self.artifacts.save_thumbnail(job_id, job.thumbnail_base64)
        updated = await self.store.set_thumbnail(job_id, thumbnail_url)
        if updated is None:
            # Deleted meanwhile
            await self.artifacts.remove(job_id)
            raise GenerationNotFound(job_id)

        logger.info(f"Thumbnail regenerated for {job_id}")
        return updated

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, view: ClientView) -> ClientView:
        """
        Rebuild a client's view from the store after a reload.

        - remembered job, stored terminal     -> adopt it, not in flight
        - remembered job, stored in progress  -> adopt it, resume polling
        - remembered job, no longer stored    -> forget it
        - nothing remembered                  -> adopt the newest active job

        Reads only; running it repeatedly yields the same view.
        """
        if view.current is not None:
            stored = await self.store.get(view.current.id)
            if stored is None:
                logger.info(f"Forgetting generation {view.current.id}: no longer stored")
                return ClientView()
            return ClientView(current=stored, is_generating=not stored.is_terminal)

        active = await self.store.latest_active()
        if active is None:
            return ClientView()

        logger.info(f"Resuming active generation {active.id}")
        return ClientView(current=active, is_generating=True)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> GenerationRecord:
        """
        Cancel a queued or processing generation.

        Raises:
            GenerationNotFound: no record for this id
            CancelError: the job is already finished, or the provider
                refused; the stored status is unchanged either way
        """
        record = await self.store.get(job_id)
        if record is None:
            raise GenerationNotFound(job_id)
        if record.is_terminal:
            raise CancelError(
                f"Generation {job_id} is already {record.status.value}",
                error_code="NOT_CANCELLABLE",
            )

        try:
            await self.provider.cancel(job_id)
        except ProviderError as e:
            logger.warning(f"Cancel for {job_id} rejected: {e}")
            raise CancelError(f"Failed to cancel generation {job_id}: {e}") from e

        updated = await self.store.update(
            job_id,
            status=GenerationStatus.CANCELLED,
            completed_at=now_ms(),
        )
        if updated is None:
            # Finished on its own between our read and the provider call
            return await self.store.get(job_id) or record

        logger.info(f"Generation {job_id} cancelled")
        return updated

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def history(
        self,
        query: Optional[str] = None,
        status: Optional[GenerationStatus] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[GenerationRecord]:
        return await self.store.list(query=query, status=status, start=start, end=end)

    async def delete(self, job_id: str) -> bool:
        """Remove one generation and its files. Irreversible."""
        deleted = await self.store.delete(job_id)
        await self.artifacts.remove(job_id)
        return deleted

    async def purge(self) -> int:
        """Remove every generation and every stored file. Irreversible."""
        count = await self.store.purge()
        await self.artifacts.purge()
        return count

    async def healthy(self) -> bool:
        return await self.store.ping()

    async def close(self) -> None:
        await self.provider.close()
        await self.store.close()


def sqlite_path(config: Config) -> Path:
    """Local history database: SQLITE_PATH, else generations.db under STATE_DIR."""
    if config.database.sqlite_path:
        return Path(config.database.sqlite_path).expanduser()
    return Path(config.storage.state_dir).expanduser() / "generations.db"


async def create_coordinator(config: Optional[Config] = None) -> GenerationCoordinator:
    """Wire a coordinator from configuration."""
    config = config or get_config()

    for issue in config.validate():
        logger.warning(f"Configuration: {issue}")

    if config.database.url:
        store: GenerationStore = await PostgresGenerationStore.connect(config.database)
    else:
        store = SqliteGenerationStore(sqlite_path(config))

    return GenerationCoordinator(
        store=store,
        provider=RunPodClient(config.provider),
        artifacts=ArtifactStore(config.storage),
        config=config,
    )
