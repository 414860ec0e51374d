"""
Video Generation Service

Tracks Wan video generations on a RunPod serverless endpoint:
- RunPodClient: provider job API adapter
- GenerationStore: durable records (PostgreSQL or in-process)
- ArtifactStore: video and thumbnail files
- GenerationCoordinator: submission, polling, reconciliation, cancellation
"""

from .artifacts import ArtifactPaths, ArtifactStore
from .client import RunPodClient, map_provider_status
from .coordinator import GenerationCoordinator, create_coordinator
from .estimates import estimate_generation_time
from .models import (
    ClientView,
    GenerationParams,
    GenerationRecord,
    GenerationStatus,
    ProviderJob,
    validate_params,
)
from .store import (
    GenerationStore,
    InMemoryGenerationStore,
    PostgresGenerationStore,
    SqliteGenerationStore,
)

__all__ = [
    "ArtifactPaths",
    "ArtifactStore",
    "ClientView",
    "GenerationCoordinator",
    "GenerationParams",
    "GenerationRecord",
    "GenerationStatus",
    "GenerationStore",
    "InMemoryGenerationStore",
    "PostgresGenerationStore",
    "SqliteGenerationStore",
    "ProviderJob",
    "RunPodClient",
    "create_coordinator",
    "estimate_generation_time",
    "map_provider_status",
    "validate_params",
]
