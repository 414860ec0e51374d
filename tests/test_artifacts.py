"""
Artifact Store Tests - decoding, atomic writes, thumbnails, safe retrieval

Run with:
    python -m pytest tests/test_artifacts.py -v
"""

import base64

import pytest
from PIL import Image

from core.errors import ArtifactTransferError
from services.video_generation.artifacts import InvalidArtifactName, decode_inline, strip_data_url


class TestDecoding:
    """Inline payload handling."""

    def test_strip_data_url(self):
        assert strip_data_url("data:video/mp4;base64,AAAA") == "AAAA"
        assert strip_data_url("AAAA") == "AAAA"

    def test_decode_with_prefix_and_whitespace(self):
        encoded = base64.b64encode(b"hello video").decode()
        payload = f"data:video/mp4;base64,{encoded[:4]}\n{encoded[4:]}"

        assert decode_inline(payload) == b"hello video"

    def test_malformed_base64(self):
        with pytest.raises(ArtifactTransferError) as exc_info:
            decode_inline("not*base64!")

        assert exc_info.value.error_code == "DECODE_FAILED"

    def test_empty_payload(self):
        with pytest.raises(ArtifactTransferError) as exc_info:
            decode_inline("data:video/mp4;base64,")

        assert exc_info.value.error_code == "EMPTY_PAYLOAD"


class TestSave:
    """Writing videos and thumbnails."""

    @pytest.mark.asyncio
    async def test_save_video(self, artifacts, video_b64):
        paths = await artifacts.save("job-1", video_b64)

        assert paths.video_url == "/api/videos/job-1.mp4"
        assert paths.thumbnail_url is None
        assert (artifacts.root / "job-1.mp4").read_bytes() == base64.b64decode(video_b64)
        assert not [p for p in artifacts.root.iterdir() if p.name.endswith(".tmp")]

    @pytest.mark.asyncio
    async def test_save_overwrites_on_retry(self, artifacts, video_b64):
        await artifacts.save("job-1", base64.b64encode(b"first").decode())
        await artifacts.save("job-1", video_b64)

        assert (artifacts.root / "job-1.mp4").read_bytes() == base64.b64decode(video_b64)

    @pytest.mark.asyncio
    async def test_thumbnail_center_cropped(self, artifacts, video_b64, png_b64):
        paths = await artifacts.save("job-1", video_b64, f"data:image/png;base64,{png_b64}")

        assert paths.thumbnail_url == "/api/videos/job-1.jpg"
        with Image.open(artifacts.root / "job-1.jpg") as thumb:
            assert thumb.format == "JPEG"
            assert thumb.size == (320, 180)

    @pytest.mark.asyncio
    async def test_bad_thumbnail_does_not_fail_video(self, artifacts, video_b64):
        garbage = base64.b64encode(b"definitely not an image").decode()

        paths = await artifacts.save("job-1", video_b64, garbage)

        assert paths.video_url == "/api/videos/job-1.mp4"
        assert paths.thumbnail_url is None
        assert not (artifacts.root / "job-1.jpg").exists()

    @pytest.mark.asyncio
    async def test_oversized_image_does_not_fail_video(self, artifacts, video_b64, oversized_png_b64):
        paths = await artifacts.save("job-1", video_b64, oversized_png_b64)

        assert paths.video_url == "/api/videos/job-1.mp4"
        assert paths.thumbnail_url is None
        assert (artifacts.root / "job-1.mp4").exists()
        assert not (artifacts.root / "job-1.jpg").exists()

    @pytest.mark.asyncio
    async def test_oversized_image_is_a_transfer_error(self, artifacts, oversized_png_b64):
        with pytest.raises(ArtifactTransferError) as exc_info:
            await artifacts.save_thumbnail("job-1", oversized_png_b64)

        assert exc_info.value.error_code == "THUMBNAIL_FAILED"

    @pytest.mark.asyncio
    async def test_malformed_video_writes_nothing(self, artifacts):
        with pytest.raises(ArtifactTransferError):
            await artifacts.save("job-1", "%%%not-base64%%%")

        assert not (artifacts.root / "job-1.mp4").exists()

    @pytest.mark.asyncio
    async def test_unsafe_job_id_rejected(self, artifacts, video_b64):
        with pytest.raises(ArtifactTransferError) as exc_info:
            await artifacts.save("../escape", video_b64)

        assert exc_info.value.error_code == "INVALID_JOB_ID"


class TestResolve:
    """Mapping public filenames to storage."""

    def test_allowed_types(self, artifacts):
        path, content_type = artifacts.resolve("job-1.mp4")
        assert path == artifacts.root / "job-1.mp4"
        assert content_type == "video/mp4"

        _, content_type = artifacts.resolve("job-1.jpg")
        assert content_type == "image/jpeg"

    @pytest.mark.parametrize("filename", ["../secret.mp4", "a/b.mp4", "..\\x.mp4", "..", ""])
    def test_traversal_rejected(self, artifacts, filename):
        with pytest.raises(InvalidArtifactName, match="Invalid filename"):
            artifacts.resolve(filename)

    @pytest.mark.parametrize("filename", ["job-1.png", "job-1.MP4", "job-1", "notes.txt"])
    def test_extension_allow_list(self, artifacts, filename):
        with pytest.raises(InvalidArtifactName, match="Invalid file type"):
            artifacts.resolve(filename)


class TestRemoval:
    """Deleting artifacts."""

    @pytest.mark.asyncio
    async def test_remove_and_purge(self, artifacts, video_b64, png_b64):
        await artifacts.save("job-1", video_b64, png_b64)
        await artifacts.save("job-2", video_b64)

        await artifacts.remove("job-1")
        assert not (artifacts.root / "job-1.mp4").exists()
        assert not (artifacts.root / "job-1.jpg").exists()
        assert (artifacts.root / "job-2.mp4").exists()

        assert await artifacts.purge() == 1
        assert list(artifacts.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_purge_without_directory(self, artifacts):
        assert await artifacts.purge() == 0
