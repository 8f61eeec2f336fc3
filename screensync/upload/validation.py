"""
Pre-upload checks on the source file.

A file failing these checks can never succeed remotely, so the worker
moves the job straight to PERMANENT_FAIL.
"""

from __future__ import annotations

from collections.abc import Iterable

from screensync.common.exceptions import ValidationError

# ISO base media files (mp4/mov) carry an "ftyp" box near the start
ISO_BMFF_TYPES = frozenset({"video/mp4", "video/quicktime"})
FTYP_SEARCH_BYTES = 64


def find_ftyp(data: bytes) -> int | None:
    """Offset of the ``ftyp`` signature within the first bytes, or None."""
    offset = data.find(b"ftyp", 0, FTYP_SEARCH_BYTES)
    return offset if offset >= 0 else None


def validate_upload(
    data: bytes,
    mime_type: str,
    *,
    min_bytes: int,
    allowed_mime_types: Iterable[str],
) -> None:
    """Raise ValidationError describing why ``data`` cannot be uploaded."""
    mime = (mime_type or "").split(";")[0].strip().lower()
    allowed = {m.lower() for m in allowed_mime_types}

    if mime not in allowed:
        raise ValidationError(
            f"MIME type {mime_type!r} is not allowed",
            {"mime_type": mime_type, "allowed": sorted(allowed)},
        )
    if len(data) < min_bytes:
        raise ValidationError(
            f"File is {len(data)} bytes, minimum is {min_bytes}",
            {"size_bytes": len(data), "min_bytes": min_bytes},
        )
    if mime in ISO_BMFF_TYPES and find_ftyp(data) is None:
        raise ValidationError(
            "File has no ftyp signature; not a playable MP4/MOV",
            {"mime_type": mime},
        )
