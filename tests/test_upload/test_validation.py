"""
Tests for source file validation and object storage.
"""

import pytest

from screensync.common.exceptions import StorageError, ValidationError
from screensync.upload.storage import FilesystemObjectStorage
from screensync.upload.validation import find_ftyp, validate_upload
from tests.fakes import MP4_BYTES


def _validate(data: bytes, mime_type: str = "video/mp4") -> None:
    validate_upload(data, mime_type, min_bytes=1024, allowed_mime_types=["video/mp4", "video/quicktime"])


class TestValidateUpload:
    """Tests for pre-upload checks."""

    def test_valid_mp4(self) -> None:
        _validate(MP4_BYTES)
        _validate(MP4_BYTES, "Video/MP4; codecs=avc1")

    def test_mime_not_allowed(self) -> None:
        with pytest.raises(ValidationError, match="MIME type"):
            _validate(MP4_BYTES, "video/webm")

    def test_too_small(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _validate(MP4_BYTES[:512])
        assert exc_info.value.details == {"size_bytes": 512, "min_bytes": 1024}

    def test_missing_signature(self) -> None:
        with pytest.raises(ValidationError, match="ftyp"):
            _validate(b"\x00" * 2048)

    def test_find_ftyp(self) -> None:
        assert find_ftyp(MP4_BYTES) == 4
        assert find_ftyp(b"\x00" * 100 + b"ftyp") is None


class TestFilesystemObjectStorage:
    """Tests for the filesystem storage backend."""

    @pytest.mark.asyncio
    async def test_read(self, tmp_path) -> None:
        (tmp_path / "ads" / "1").mkdir(parents=True)
        (tmp_path / "ads" / "1" / "video.mp4").write_bytes(MP4_BYTES)
        storage = FilesystemObjectStorage(tmp_path)

        assert await storage.exists("ads/1/video.mp4")
        assert await storage.read("/ads/1/video.mp4") == MP4_BYTES

    @pytest.mark.asyncio
    async def test_missing_object(self, tmp_path) -> None:
        storage = FilesystemObjectStorage(tmp_path)

        assert not await storage.exists("ads/2/video.mp4")
        with pytest.raises(StorageError):
            await storage.read("ads/2/video.mp4")

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, tmp_path) -> None:
        storage = FilesystemObjectStorage(tmp_path / "root")

        with pytest.raises(StorageError, match="escapes"):
            await storage.read("../secrets.txt")
