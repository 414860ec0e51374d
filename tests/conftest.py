"""Shared fixtures for the generation service tests."""

import base64
import io
import os
import struct
import sys
import zlib
from unittest.mock import AsyncMock

import pytest
from PIL import Image

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, StorageConfig
from services.video_generation import (
    ArtifactStore,
    GenerationCoordinator,
    GenerationStatus,
    InMemoryGenerationStore,
    ProviderJob,
    RunPodClient,
)


@pytest.fixture
def config(tmp_path):
    """Config isolated to a temp directory with fast polling."""
    config = Config()
    config.storage = StorageConfig(
        video_dir=str(tmp_path / "videos"),
        state_dir=str(tmp_path / "state"),
    )
    config.polling.interval_seconds = 0.01
    return config


@pytest.fixture
def store():
    return InMemoryGenerationStore()


@pytest.fixture
def provider():
    """Provider double; jobs start queued unless a test says otherwise."""
    provider = AsyncMock(spec=RunPodClient)
    provider.submit.return_value = ProviderJob(
        id="job-1",
        status=GenerationStatus.QUEUED,
        raw_status="IN_QUEUE",
    )
    provider.fetch_status.return_value = ProviderJob(
        id="job-1",
        status=GenerationStatus.PROCESSING,
        raw_status="IN_PROGRESS",
    )
    provider.circuit_status.return_value = {"service": "runpod", "state": "closed"}
    return provider


@pytest.fixture
def artifacts(config):
    return ArtifactStore(config.storage)


@pytest.fixture
def coordinator(store, provider, artifacts, config):
    return GenerationCoordinator(store, provider, artifacts, config)


@pytest.fixture
def video_b64():
    """Small opaque payload standing in for an MP4."""
    return base64.b64encode(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64).decode("ascii")


@pytest.fixture
def png_b64():
    """A 640x480 PNG (4:3) as base64."""
    buffer = io.BytesIO()
    Image.new("RGB", (640, 480), color=(200, 30, 30)).save(buffer, "PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def oversized_png_b64():
    """A PNG whose header claims 20000x20000 pixels, with almost no pixel data."""
    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))

    header = struct.pack(">IIBBBBB", 20000, 20000, 8, 2, 0, 0, 0)
    png = (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(b"\x00" * 64))
        + chunk(b"IEND", b"")
    )
    return base64.b64encode(png).decode("ascii")
