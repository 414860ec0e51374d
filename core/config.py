"""
Configuration management for the Wan video generator.

Centralizes all configuration including:
- Provider credentials and endpoints
- Database connection
- Artifact storage and thumbnail settings
- Time-estimate constants and polling cadence
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ProviderConfig:
    """RunPod serverless endpoint configuration."""
    runpod_api_key: str = field(default_factory=lambda: os.getenv("RUNPOD_API_KEY", ""))
    runpod_endpoint_id: str = field(default_factory=lambda: os.getenv("RUNPOD_ENDPOINT_ID", ""))
    runpod_api_base: str = field(
        default_factory=lambda: os.getenv("RUNPOD_API_BASE", "https://api.runpod.ai/v2")
    )
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))
    )

    @property
    def endpoint_url(self) -> str:
        return f"{self.runpod_api_base.rstrip('/')}/{self.runpod_endpoint_id}"


@dataclass
class DatabaseConfig:
    """Database configuration."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 1
    pool_max_size: int = 5

    # Local database file used when no DATABASE_URL is set (empty: STATE_DIR/generations.db)
    sqlite_path: str = field(default_factory=lambda: os.getenv("SQLITE_PATH", ""))


@dataclass
class StorageConfig:
    """Storage configuration for generated artifacts."""
    video_dir: str = field(default_factory=lambda: os.getenv("VIDEO_STORAGE_DIR", "./data/videos"))
    public_path: str = "/api/videos"

    # Thumbnails are center-cropped to this exact size (16:9)
    thumbnail_width: int = 320
    thumbnail_height: int = 180
    thumbnail_quality: int = 85

    # Where the command-line client keeps its watched-generation cache
    state_dir: str = field(
        default_factory=lambda: os.getenv("STATE_DIR", os.path.expanduser("~/.wan-generator"))
    )


@dataclass
class FlowBaseline:
    """Step/frame counts that add no time to an estimate."""
    steps: int
    frames: int


@dataclass
class EstimateConfig:
    """
    Constants for the generation time estimate.

    estimate = base
             + resolution_seconds[resolution]
             + (steps - baseline.steps) * seconds_per_step
             + (frames - baseline.frames) * seconds_per_frame

    The same formula serves both flows; only the baselines differ.
    """
    base_seconds: int = 30
    resolution_seconds: dict[str, int] = field(default_factory=lambda: {
        "480p": 0,
        "720p": 30,
    })
    seconds_per_step: float = 2.0
    seconds_per_frame: float = 0.5

    image_baseline: FlowBaseline = field(default_factory=lambda: FlowBaseline(steps=20, frames=25))
    text_baseline: FlowBaseline = field(default_factory=lambda: FlowBaseline(steps=20, frames=17))


@dataclass
class PollingConfig:
    """Client polling cadence and progress heuristics."""
    interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("POLL_INTERVAL_SECONDS", "3"))
    )
    # Placeholder until the provider reports real progress
    processing_progress: int = 50


@dataclass
class Config:
    """Main configuration class."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    estimates: EstimateConfig = field(default_factory=EstimateConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)

    service_name: str = "wan-video-generator"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.provider.runpod_api_key:
            issues.append("RUNPOD_API_KEY not configured")

        if not self.provider.runpod_endpoint_id:
            issues.append("RUNPOD_ENDPOINT_ID not configured")

        if not self.database.url:
            issues.append("DATABASE_URL not configured (using local SQLite history)")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
