"""
Tagged-union decoders for remote platform payloads.

The remote API has drifted across versions, so each payload kind has an
ordered list of known shapes. ``decode_*`` tries them in order and returns
the value together with the name of the shape that matched; a payload that
matches no shape raises ``DecodeError`` (reported as PROTOCOL_ERROR).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from screensync.schemas.platform import (
    ListPage,
    MediaCreated,
    MediaStatus,
    PlaylistDetail,
    PlaylistItem,
    ScreenContent,
)

T = TypeVar("T")

# A shape returns None when it does not apply to the payload
Shape = tuple[str, Callable[[Any], Any]]


class DecodeError(ValueError):
    """Payload did not match any known shape."""

    def __init__(self, kind: str, payload: Any):
        self.kind = kind
        preview = repr(payload)
        super().__init__(f"unrecognized {kind} payload: {preview[:200]}")


@dataclass(frozen=True)
class Decoded(Generic[T]):
    value: T
    shape: str


def _decode(kind: str, shapes: list[Shape], payload: Any) -> Decoded:
    for name, fn in shapes:
        value = fn(payload)
        if value is not None:
            return Decoded(value=value, shape=name)
    raise DecodeError(kind, payload)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, str)) and str(value).strip():
        return str(value).strip()
    return None


# ---------------------------------------------------------------------------
# Playlist items
# ---------------------------------------------------------------------------

def _item(media_id: int | None, raw: dict) -> PlaylistItem | None:
    if media_id is None:
        return None
    return PlaylistItem(
        id=media_id,
        type=raw.get("type") or "media",
        duration=_as_int(raw.get("duration")),
        priority=_as_int(raw.get("priority")),
    )


def _items_with(extract: Callable[[dict], int | None]) -> Callable[[Any], list[PlaylistItem] | None]:
    def shape(payload: Any) -> list[PlaylistItem] | None:
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            return None
        raw_items = payload["items"]
        if not raw_items:
            return None
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                return None
            item = _item(extract(raw), raw)
            if item is None:
                return None
            items.append(item)
        return items

    return shape


def _items_empty(payload: Any) -> list[PlaylistItem] | None:
    if isinstance(payload, dict) and payload.get("items") in ([], None) and "items" in payload:
        return []
    return None


def _media_object_id(raw: dict) -> int | None:
    media = raw.get("media")
    return _as_int(media.get("id")) if isinstance(media, dict) else None


def _bare_list(payload: Any) -> list[PlaylistItem] | None:
    if not isinstance(payload, list):
        return None
    items = []
    for raw in payload:
        if isinstance(raw, dict):
            item = _item(_as_int(raw.get("media_id", raw.get("id"))), raw)
        else:
            item = _item(_as_int(raw), {})
        if item is None:
            return None
        items.append(item)
    return items


PLAYLIST_ITEM_SHAPES: list[Shape] = [
    ("items.empty", _items_empty),
    ("items.media_object", _items_with(_media_object_id)),
    ("items.media_int", _items_with(lambda raw: _as_int(raw.get("media")))),
    ("items.media_id", _items_with(lambda raw: _as_int(raw.get("media_id")))),
    ("items.id", _items_with(lambda raw: _as_int(raw.get("id")))),
    ("bare_list", _bare_list),
]


def decode_playlist_items(payload: Any) -> Decoded[list[PlaylistItem]]:
    return _decode("playlist_items", PLAYLIST_ITEM_SHAPES, payload)


def decode_playlist(payload: Any) -> Decoded[PlaylistDetail]:
    """Items plus the playlist name, when the shape carries one."""
    items = decode_playlist_items(payload)
    name = payload.get("name") if isinstance(payload, dict) else None
    return Decoded(
        value=PlaylistDetail(name=str(name) if name is not None else None, items=items.value),
        shape=items.shape,
    )


# ---------------------------------------------------------------------------
# Screen content
# ---------------------------------------------------------------------------

def _content_from(block: Any) -> ScreenContent | None:
    if not isinstance(block, dict):
        return None
    if "source_type" not in block and "source_id" not in block:
        return None
    return ScreenContent(
        source_type=block.get("source_type"),
        source_id=_as_id(block.get("source_id")),
        source_name=block.get("source_name"),
    )


def _screen_content(payload: Any) -> ScreenContent | None:
    if isinstance(payload, dict):
        return _content_from(payload.get("screen_content"))
    return None


def _screen_content_null(payload: Any) -> ScreenContent | None:
    if isinstance(payload, dict) and "screen_content" in payload and payload["screen_content"] is None:
        return ScreenContent(source_type=None, source_id=None)
    return None


def _content(payload: Any) -> ScreenContent | None:
    if isinstance(payload, dict):
        return _content_from(payload.get("content"))
    return None


def _flat(payload: Any) -> ScreenContent | None:
    return _content_from(payload)


def _default_playlist(payload: Any) -> ScreenContent | None:
    if not isinstance(payload, dict):
        return None
    playlist = payload.get("default_playlist")
    if isinstance(playlist, dict):
        playlist = playlist.get("id")
    playlist_id = _as_id(playlist)
    if playlist_id is None:
        return None
    return ScreenContent(source_type="playlist", source_id=playlist_id)


SCREEN_CONTENT_SHAPES: list[Shape] = [
    ("screen_content", _screen_content),
    ("screen_content.null", _screen_content_null),
    ("content", _content),
    ("flat", _flat),
    ("default_playlist", _default_playlist),
]


def decode_screen_content(payload: Any) -> Decoded[ScreenContent]:
    return _decode("screen_content", SCREEN_CONTENT_SHAPES, payload)


# ---------------------------------------------------------------------------
# Media status
# ---------------------------------------------------------------------------

def _file_size(payload: dict) -> int | None:
    for key in ("file_size", "filesize", "size"):
        if key in payload:
            return _as_int(payload[key])
    return None


def _status_field(field_name: str) -> Callable[[Any], MediaStatus | None]:
    def shape(payload: Any) -> MediaStatus | None:
        if not isinstance(payload, dict):
            return None
        status = payload.get(field_name)
        if not isinstance(status, str) or not status:
            return None
        return MediaStatus(
            media_id=_as_int(payload.get("id")) or 0,
            status=status.strip().lower(),
            file_size=_file_size(payload),
        )

    return shape


MEDIA_STATUS_SHAPES: list[Shape] = [
    ("status", _status_field("status")),
    ("processing_status", _status_field("processing_status")),
    ("state", _status_field("state")),
]


def decode_media_status(payload: Any) -> Decoded[MediaStatus]:
    return _decode("media_status", MEDIA_STATUS_SHAPES, payload)


# ---------------------------------------------------------------------------
# List pages
# ---------------------------------------------------------------------------

def _paginated(payload: Any) -> ListPage | None:
    if isinstance(payload, dict) and isinstance(payload.get("results"), list):
        return ListPage(results=payload["results"], next=payload.get("next"))
    return None


def _bare_page(payload: Any) -> ListPage | None:
    if isinstance(payload, list):
        return ListPage(results=payload, next=None)
    return None


LIST_PAGE_SHAPES: list[Shape] = [
    ("paginated", _paginated),
    ("bare_list", _bare_page),
]


def decode_list_page(payload: Any) -> Decoded[ListPage]:
    return _decode("list_page", LIST_PAGE_SHAPES, payload)


# ---------------------------------------------------------------------------
# Media create / upload URL
# ---------------------------------------------------------------------------

def _created_with(key: str, presigned: bool) -> Callable[[Any], MediaCreated | None]:
    def shape(payload: Any) -> MediaCreated | None:
        if not isinstance(payload, dict):
            return None
        media_id = _as_int(payload.get("id"))
        endpoint = payload.get(key)
        if media_id is None or not isinstance(endpoint, str) or not endpoint:
            return None
        return MediaCreated(media_id=media_id, upload_endpoint=endpoint, presigned=presigned)

    return shape


def _id_only(payload: Any) -> MediaCreated | None:
    if isinstance(payload, dict):
        media_id = _as_int(payload.get("id"))
        if media_id is not None:
            return MediaCreated(media_id=media_id)
    return None


MEDIA_CREATE_SHAPES: list[Shape] = [
    ("get_upload_url", _created_with("get_upload_url", presigned=False)),
    ("presign_url", _created_with("presign_url", presigned=True)),
    ("upload_url", _created_with("upload_url", presigned=True)),
    ("id_only", _id_only),
]


def decode_media_created(payload: Any) -> Decoded[MediaCreated]:
    return _decode("media_create", MEDIA_CREATE_SHAPES, payload)


def _url_key(key: str) -> Callable[[Any], str | None]:
    def shape(payload: Any) -> str | None:
        if isinstance(payload, dict):
            value = payload.get(key)
            if isinstance(value, str) and value.startswith("http"):
                return value
        return None

    return shape


def _bare_url(payload: Any) -> str | None:
    if isinstance(payload, str) and payload.startswith("http"):
        return payload
    return None


UPLOAD_URL_SHAPES: list[Shape] = [
    ("upload_url", _url_key("upload_url")),
    ("presign_url", _url_key("presign_url")),
    ("url", _url_key("url")),
    ("bare_string", _bare_url),
]


def decode_upload_url(payload: Any) -> Decoded[str]:
    return _decode("upload_url", UPLOAD_URL_SHAPES, payload)
