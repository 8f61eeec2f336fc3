"""
Tests for payload shape decoders.
"""

import pytest

from screensync.platform.decoders import (
    DecodeError,
    decode_list_page,
    decode_media_created,
    decode_media_status,
    decode_playlist,
    decode_playlist_items,
    decode_screen_content,
    decode_upload_url,
)


class TestPlaylistItems:
    """Playlist item lists in every known API shape."""

    @pytest.mark.parametrize(
        "payload,shape",
        [
            ({"items": [{"media": {"id": 5}}, {"media": {"id": "6"}}]}, "items.media_object"),
            ({"items": [{"media": 5}, {"media": 6}]}, "items.media_int"),
            ({"items": [{"media_id": 5}, {"media_id": 6}]}, "items.media_id"),
            ({"items": [{"id": 5}, {"id": 6}]}, "items.id"),
            ([5, "6"], "bare_list"),
            ([{"media_id": 5}, {"id": 6}], "bare_list"),
        ],
    )
    def test_shapes(self, payload, shape: str) -> None:
        decoded = decode_playlist_items(payload)
        assert decoded.shape == shape
        assert [item.id for item in decoded.value] == [5, 6]

    def test_empty(self) -> None:
        decoded = decode_playlist_items({"id": 1, "items": []})
        assert decoded.value == []
        assert decoded.shape == "items.empty"

    def test_item_fields_kept(self) -> None:
        decoded = decode_playlist_items(
            {"items": [{"media": {"id": 5}, "type": "media", "duration": "20", "priority": 3}]}
        )
        item = decoded.value[0]
        assert (item.duration, item.priority) == (20, 3)

    @pytest.mark.parametrize(
        "payload",
        [{"items": [{"media": None}]}, {"name": "x"}, "oops", [True]],
    )
    def test_unrecognized(self, payload) -> None:
        with pytest.raises(DecodeError):
            decode_playlist_items(payload)

    def test_playlist_name_kept(self) -> None:
        named = decode_playlist({"id": 7, "name": "EVZ | ADS | SCREEN | 101", "items": [{"media": 5}]})
        unnamed = decode_playlist([5, 6])

        assert named.value.name == "EVZ | ADS | SCREEN | 101"
        assert [item.id for item in named.value.items] == [5]
        assert named.shape == "items.media_int"
        assert unnamed.value.name is None
        assert unnamed.shape == "bare_list"


class TestScreenContent:
    """Screen content blocks."""

    def test_screen_content(self) -> None:
        decoded = decode_screen_content({"screen_content": {"source_type": "playlist", "source_id": 12}})
        assert decoded.value.source_type == "playlist"
        assert decoded.value.source_id == "12"

    def test_null_content(self) -> None:
        decoded = decode_screen_content({"id": 1, "screen_content": None})
        assert decoded.value.source_type is None
        assert decoded.shape == "screen_content.null"

    def test_content_and_flat(self) -> None:
        assert decode_screen_content({"content": {"source_type": "layout", "source_id": 3}}).shape == "content"
        assert decode_screen_content({"source_type": "layout", "source_id": 3}).shape == "flat"

    def test_default_playlist(self) -> None:
        decoded = decode_screen_content({"id": 1, "default_playlist": {"id": 99}})
        assert decoded.value.source_type == "playlist"
        assert decoded.value.source_id == "99"

    def test_unrecognized(self) -> None:
        with pytest.raises(DecodeError):
            decode_screen_content({"id": 1, "name": "lobby"})


class TestMedia:
    """Media status, creation and upload URL payloads."""

    def test_status_variants(self) -> None:
        assert decode_media_status({"id": 1, "status": "Ready", "file_size": 10}).value.status == "ready"
        decoded = decode_media_status({"processing_status": "processing", "size": "0"})
        assert decoded.shape == "processing_status"
        assert decoded.value.file_size == 0
        assert decode_media_status({"state": "failed"}).value.status == "failed"

    def test_status_unrecognized(self) -> None:
        with pytest.raises(DecodeError):
            decode_media_status({"id": 1})

    def test_created_variants(self) -> None:
        api = decode_media_created({"id": 7, "get_upload_url": "https://api/media/7/upload/"})
        presigned = decode_media_created({"id": "7", "presign_url": "https://bucket/7"})
        bare = decode_media_created({"id": 7})

        assert (api.value.presigned, presigned.value.presigned) == (False, True)
        assert bare.value.upload_endpoint is None
        assert presigned.value.media_id == 7

    def test_upload_url_variants(self) -> None:
        assert decode_upload_url({"upload_url": "https://b/1"}).value == "https://b/1"
        assert decode_upload_url({"url": "https://b/2"}).shape == "url"
        assert decode_upload_url("https://b/3").shape == "bare_string"
        with pytest.raises(DecodeError):
            decode_upload_url({"upload_url": "/relative"})

    def test_list_pages(self) -> None:
        page = decode_list_page({"results": [{"id": 1}], "next": "https://api/?offset=1"})
        assert page.value.next is not None
        assert decode_list_page([{"id": 1}]).value.next is None
