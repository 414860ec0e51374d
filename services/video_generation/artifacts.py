"""
Artifact Transfer

Moves a completed job's inline video (and optional still image) out of the
provider response into durable file storage:

    <video_dir>/<job_id>.mp4   served at <public_path>/<job_id>.mp4
    <video_dir>/<job_id>.jpg   served at <public_path>/<job_id>.jpg

Filenames come only from the job id. Thumbnails are best-effort: a failed
thumbnail never fails the video, and save_thumbnail() can be re-run alone.
"""

import asyncio
import base64
import binascii
import io
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
from PIL import Image, ImageOps, UnidentifiedImageError

from core.config import StorageConfig, get_config
from core.errors import ArtifactTransferError

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,", re.IGNORECASE)
JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

VIDEO_EXTENSION = ".mp4"
IMAGE_EXTENSION = ".jpg"
CONTENT_TYPES = {
    VIDEO_EXTENSION: "video/mp4",
    IMAGE_EXTENSION: "image/jpeg",
}


class InvalidArtifactName(ValueError):
    """A requested filename is outside what the store ever writes."""


def strip_data_url(payload: str) -> str:
    """Remove a leading data:<mime>;base64, prefix if present."""
    return DATA_URL_PREFIX.sub("", payload.strip(), count=1)


def decode_inline(payload: str) -> bytes:
    """
    Decode an inline base64 payload.

    Raises:
        ArtifactTransferError: if the payload is empty or not valid base64
    """
    encoded = "".join(strip_data_url(payload).split())
    if not encoded:
        raise ArtifactTransferError("Empty artifact payload", error_code="EMPTY_PAYLOAD")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ArtifactTransferError(
            f"Malformed base64 payload: {e}",
            error_code="DECODE_FAILED",
        ) from e


@dataclass
class ArtifactPaths:
    """Stable retrieval paths for a job's artifacts."""
    video_url: str
    thumbnail_url: Optional[str] = None


class ArtifactStore:
    """Durable file storage for generated videos and thumbnails."""

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or get_config().storage
        self.root = Path(self.config.video_dir)

    def filename_for(self, job_id: str, extension: str) -> str:
        if not JOB_ID_PATTERN.match(job_id or ""):
            raise ArtifactTransferError(
                f"Job id {job_id!r} cannot be used as a filename",
                error_code="INVALID_JOB_ID",
            )
        return f"{job_id}{extension}"

    def url_for(self, filename: str) -> str:
        return f"{self.config.public_path.rstrip('/')}/{filename}"

    async def _write_atomic(self, filename: str, data: bytes) -> Path:
        """Write to a temporary sibling and rename over the target."""
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        target = self.root / filename
        tmp = self.root / f".{filename}.{uuid.uuid4().hex}.tmp"

        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp, target)
        except OSError as e:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)
            raise ArtifactTransferError(
                f"Could not write {filename}: {e}",
                error_code="STORAGE_WRITE_FAILED",
            ) from e

        return target

    async def save(
        self,
        job_id: str,
        video_base64: str,
        image_base64: Optional[str] = None,
    ) -> ArtifactPaths:
        """
        Persist a completed job's video and, if given, its thumbnail.

        Raises:
            ArtifactTransferError: if the video cannot be decoded or written
        """
        filename = self.filename_for(job_id, VIDEO_EXTENSION)
        video = decode_inline(video_base64)

        path = await self._write_atomic(filename, video)
        logger.info(f"Video saved: {path} ({len(video) / 1024 / 1024:.1f} MB)")

        thumbnail_url = None
        if image_base64:
            try:
                thumbnail_url = await self.save_thumbnail(job_id, image_base64)
            except ArtifactTransferError as e:
                logger.warning(f"Thumbnail for {job_id} skipped: {e}")

        return ArtifactPaths(video_url=self.url_for(filename), thumbnail_url=thumbnail_url)

    async def save_thumbnail(self, job_id: str, image_base64: str) -> str:
        """
        Center-crop, resize and JPEG-encode a still image for a job.

        Raises:
            ArtifactTransferError: if the image cannot be decoded or written
        """
        filename = self.filename_for(job_id, IMAGE_EXTENSION)
        raw = decode_inline(image_base64)

        loop = asyncio.get_running_loop()
        try:
            jpeg = await loop.run_in_executor(None, self._render_thumbnail, raw)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ArtifactTransferError(
                f"Could not render thumbnail: {e}",
                error_code="THUMBNAIL_FAILED",
            ) from e

        await self._write_atomic(filename, jpeg)
        return self.url_for(filename)

    def _render_thumbnail(self, raw: bytes) -> bytes:
        size = (self.config.thumbnail_width, self.config.thumbnail_height)
        with Image.open(io.BytesIO(raw)) as image:
            thumb = ImageOps.fit(
                image.convert("RGB"),
                size,
                method=Image.Resampling.LANCZOS,
                centering=(0.5, 0.5),
            )
        buffer = io.BytesIO()
        thumb.save(buffer, "JPEG", quality=self.config.thumbnail_quality)
        return buffer.getvalue()

    def resolve(self, filename: str) -> tuple[Path, str]:
        """
        Map a public filename to its storage path and content type.

        Purely lexical: no filesystem access happens here.

        Raises:
            InvalidArtifactName: on traversal sequences or a disallowed extension
        """
        if not filename or ".." in filename or "/" in filename or "\\" in filename:
            raise InvalidArtifactName("Invalid filename")

        extension = Path(filename).suffix
        content_type = CONTENT_TYPES.get(extension)
        if content_type is None:
            raise InvalidArtifactName("Invalid file type")

        return self.root / filename, content_type

    async def remove(self, job_id: str) -> None:
        """Delete a job's artifacts, if any."""
        if not JOB_ID_PATTERN.match(job_id or ""):
            return
        for extension in CONTENT_TYPES:
            path = self.root / f"{job_id}{extension}"
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
                logger.info(f"Removed artifact {path}")

    async def purge(self) -> int:
        """Delete every stored artifact. Returns the number of files removed."""
        if not await aiofiles.os.path.isdir(self.root):
            return 0
        removed = 0
        for name in await aiofiles.os.listdir(self.root):
            if Path(name).suffix in CONTENT_TYPES:
                await aiofiles.os.remove(self.root / name)
                removed += 1
        logger.info(f"Purged {removed} artifact file(s) from {self.root}")
        return removed
