"""
Client for the remote signage-platform API.

Every call returns a ``PlatformResult``; HTTP outcomes are classified into
``ErrorCode`` values instead of being raised. Transient failures (429, 5xx,
transport errors) are retried with exponential backoff through the
injected clock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx
import orjson
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from screensync.common.clock import Clock, SystemClock
from screensync.common.config import PlatformSettings, get_settings
from screensync.common.exceptions import ErrorCode, PlatformError
from screensync.common.logger import get_logger
from screensync.common.metrics import record_platform_call
from screensync.common.utils import Timer, truncate
from screensync.platform.decoders import (
    Decoded,
    DecodeError,
    decode_list_page,
    decode_media_created,
    decode_media_status,
    decode_playlist,
    decode_playlist_items,
    decode_screen_content,
    decode_upload_url,
)
from screensync.schemas.platform import (
    MediaCreated,
    PlatformResult,
    PlaylistItem,
    PlaylistSummary,
)

logger = get_logger(__name__)


def _is_transient(result: PlatformResult) -> bool:
    """Rate limiting and server-side failures are worth another attempt."""
    return result.status is not None and (result.status == 429 or result.status >= 500)


@dataclass(frozen=True)
class PlatformToken:
    """API token in ``label:secret`` form. The secret never appears in repr."""

    label: str
    secret: str = field(repr=False)

    @classmethod
    def parse(cls, raw: str | None) -> "PlatformToken":
        if not raw or ":" not in raw:
            raise PlatformError(ErrorCode.AUTH_INVALID, "token must have the form label:secret")
        label, _, secret = raw.partition(":")
        label, secret = label.strip(), secret.strip()
        if not label:
            raise PlatformError(ErrorCode.AUTH_INVALID, "token label is empty")
        if not secret:
            raise PlatformError(ErrorCode.AUTH_INVALID, "token secret is empty")
        return cls(label=label, secret=secret)

    @property
    def header(self) -> str:
        return f"Token {self.label}:{self.secret}"


class PlatformClient:
    """
    Retrying async client for the remote platform.

    Concurrency is bounded by a semaphore shared by all calls of one client.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        timeout_s: float = 15.0,
        max_retries: int = 3,
        retry_base_delay_s: float = 1.0,
        max_concurrency: int = 5,
        error_body_limit: int = 500,
        page_size: int = 100,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_base_delay_s = retry_base_delay_s
        self.error_body_limit = error_body_limit
        self.page_size = page_size
        self.clock = clock or SystemClock()

        self._token: PlatformToken | None = None
        self._token_error: str | None = None
        try:
            self._token = PlatformToken.parse(token)
        except PlatformError as e:
            self._token_error = e.message
            logger.warning("Platform token invalid", reason=e.message)

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "screensync/0.3"},
        )

    @classmethod
    def from_settings(
        cls,
        platform_settings: PlatformSettings | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PlatformClient":
        cfg = platform_settings or get_settings().platform
        return cls(
            cfg.base_url,
            cfg.auth_token,
            timeout_s=cfg.timeout_s,
            max_retries=cfg.max_retries,
            retry_base_delay_s=cfg.retry_base_delay_s,
            max_concurrency=cfg.max_concurrency,
            error_body_limit=cfg.error_body_limit,
            page_size=cfg.page_size,
            clock=clock,
            transport=transport,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "PlatformClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def auth_configured(self) -> bool:
        return self._token is not None

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> PlatformResult:
        """Perform one API call with retries and classify the outcome."""
        if self._token is None:
            logger.error(
                "Platform request refused",
                method=method,
                path=path,
                auth_present=False,
                code=ErrorCode.AUTH_INVALID.value,
            )
            return PlatformResult.failure(
                ErrorCode.AUTH_INVALID, self._token_error or "token missing"
            )

        headers = {"Authorization": self._token.header}
        attempts = 0

        async def send() -> PlatformResult:
            nonlocal attempts
            attempts += 1
            return await self._send(method, path, body, params, headers, attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_base_delay_s),
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(_is_transient)
            ),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self.clock.sleep,
        )
        try:
            return await retrying(send)
        except httpx.TimeoutException as e:
            return PlatformResult.failure(ErrorCode.API_ERROR, f"timeout: {e}")
        except httpx.TransportError as e:
            return PlatformResult.failure(
                ErrorCode.API_ERROR, f"transport error: {type(e).__name__}: {e}"
            )

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str],
        attempt: int,
    ) -> PlatformResult:
        """One HTTP exchange; transport errors are raised for the retry policy."""
        error: httpx.TransportError | None = None
        with Timer() as timer:
            async with self._semaphore:
                try:
                    response = await self._http.request(
                        method, path, json=body, params=params, headers=headers
                    )
                except httpx.TransportError as e:
                    error = e
                    result = PlatformResult.failure(ErrorCode.API_ERROR, type(e).__name__)
                except httpx.RequestError as e:
                    result = PlatformResult.failure(
                        ErrorCode.API_ERROR, f"request error: {type(e).__name__}: {e}"
                    )
                else:
                    result = self._classify(response)

        outcome = "ok" if result.ok else result.code.value
        log = logger.info if result.ok else logger.warning
        log(
            "Platform request",
            method=method,
            path=path,
            auth_present=True,
            status=result.status,
            outcome=outcome,
            attempt=attempt,
            duration_ms=round(timer.elapsed_ms, 1),
        )
        record_platform_call(method, outcome, timer.elapsed_s)

        if error is not None:
            raise error
        return result

    def _classify(self, response: httpx.Response) -> PlatformResult:
        status = response.status_code

        if status in (401, 403):
            return PlatformResult.failure(
                ErrorCode.AUTH_ERROR, f"authentication rejected (HTTP {status})", status=status
            )
        if status == 404:
            return PlatformResult.failure(ErrorCode.NOT_FOUND, "remote object not found", status=status)
        if not 200 <= status < 300:
            body = truncate(response.text, self.error_body_limit)
            return PlatformResult.failure(
                ErrorCode.API_ERROR, f"HTTP {status}", status=status, body=body
            )

        if status == 204 or not response.content:
            return PlatformResult.success(status, None)

        content_type = response.headers.get("content-type", "").lower()
        text = response.text
        if text.lstrip().startswith("<") or (content_type and "json" not in content_type):
            return PlatformResult.failure(
                ErrorCode.PROTOCOL_ERROR,
                f"expected JSON, got {content_type or 'unknown content type'}",
                status=status,
                body=truncate(text, self.error_body_limit),
            )
        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError:
            return PlatformResult.failure(
                ErrorCode.PROTOCOL_ERROR,
                "response body is not valid JSON",
                status=status,
                body=truncate(text, self.error_body_limit),
            )
        return PlatformResult.success(status, data)

    def _decoded(self, result: PlatformResult, decoder: Any, kind: str) -> PlatformResult:
        """Run a shape decoder over a successful result."""
        if not result.ok:
            return result
        try:
            decoded: Decoded = decoder(result.data)
        except DecodeError as e:
            logger.warning("Platform payload not recognized", kind=kind, error=str(e))
            return PlatformResult.failure(
                ErrorCode.PROTOCOL_ERROR, str(e), status=result.status
            )
        logger.debug("Platform payload decoded", kind=kind, shape=decoded.shape)
        return PlatformResult.success(result.status, decoded.value)

    # ------------------------------------------------------------------
    # Playlists
    # ------------------------------------------------------------------

    async def list_playlists(self, search: str | None = None) -> PlatformResult:
        """All playlists (optionally filtered by search), following pagination."""
        playlists: list[PlaylistSummary] = []
        offset = 0
        status = None

        while True:
            params: dict[str, Any] = {"limit": self.page_size, "offset": offset}
            if search:
                params["search"] = search
            page_result = self._decoded(
                await self.request("/playlists/", params=params), decode_list_page, "list_page"
            )
            if not page_result.ok:
                return page_result
            status = page_result.status
            page = page_result.data

            for raw in page.results:
                if isinstance(raw, dict) and raw.get("id") is not None:
                    playlists.append(PlaylistSummary(id=str(raw["id"]), name=str(raw.get("name", ""))))

            if not page.next or len(page.results) < self.page_size:
                break
            offset += self.page_size

        return PlatformResult.success(status or 200, playlists)

    async def find_playlist_by_name(self, name: str) -> PlatformResult:
        """Exact-name lookup; ``data`` is the summary or None."""
        result = await self.list_playlists(search=name)
        if not result.ok:
            return result
        matches = [p for p in result.data if p.name == name]
        if len(matches) > 1:
            logger.warning(
                "Duplicate playlists with canonical name",
                name=name,
                playlist_ids=[p.id for p in matches],
            )
        match = min(matches, key=lambda p: int(p.id) if p.id.isdigit() else 0) if matches else None
        return PlatformResult.success(result.status or 200, match)

    async def create_playlist(self, name: str, description: str | None = None) -> PlatformResult:
        body = {"name": name, "type": "regular", "items": [], "description": description or ""}
        result = await self.request("/playlists/", method="POST", body=body)
        if not result.ok:
            return result
        if not isinstance(result.data, dict) or result.data.get("id") is None:
            return PlatformResult.failure(
                ErrorCode.PROTOCOL_ERROR, "playlist create response has no id", status=result.status
            )
        return PlatformResult.success(
            result.status, PlaylistSummary(id=str(result.data["id"]), name=result.data.get("name", name))
        )

    async def get_playlist_items(self, playlist_id: str) -> PlatformResult:
        result = await self.request(f"/playlists/{playlist_id}/")
        return self._decoded(result, decode_playlist_items, "playlist_items")

    async def get_playlist(self, playlist_id: str) -> PlatformResult:
        """Playlist name and items; ``data`` is a ``PlaylistDetail``."""
        result = await self.request(f"/playlists/{playlist_id}/")
        return self._decoded(result, decode_playlist, "playlist")

    async def replace_playlist_items(
        self, playlist_id: str, items: list[PlaylistItem]
    ) -> PlatformResult:
        """Full-replace PATCH of a playlist's ordered items."""
        body = {"items": [item.to_payload() for item in items]}
        return await self.request(f"/playlists/{playlist_id}/", method="PATCH", body=body)

    # ------------------------------------------------------------------
    # Screens
    # ------------------------------------------------------------------

    async def get_screen_content(self, player_id: str) -> PlatformResult:
        result = await self.request(f"/screens/{player_id}/")
        return self._decoded(result, decode_screen_content, "screen_content")

    async def set_screen_content(
        self, player_id: str, source_type: str, source_id: str
    ) -> PlatformResult:
        source: Any = int(source_id) if str(source_id).isdigit() else source_id
        body = {"screen_content": {"source_type": source_type, "source_id": source}}
        return await self.request(f"/screens/{player_id}/", method="PATCH", body=body)

    async def push_screen(self, player_id: str) -> PlatformResult:
        return await self.request(f"/screens/{player_id}/push/", method="POST")

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def create_media(self, name: str, file_extension: str = "mp4") -> PlatformResult:
        body = {
            "name": name,
            "media_origin": {"type": "video", "source": "local", "format": None},
            "file_extension": file_extension,
        }
        result = await self.request("/media/", method="POST", body=body)
        return self._decoded(result, decode_media_created, "media_create")

    async def get_upload_url(self, created: MediaCreated) -> PlatformResult:
        """Resolve the presigned PUT target for a freshly created media record."""
        if created.upload_endpoint and created.presigned:
            return PlatformResult.success(200, created.upload_endpoint)

        endpoint = created.upload_endpoint or f"/media/{created.media_id}/upload/"
        if endpoint.startswith("http"):
            endpoint = self._api_path(endpoint)
        result = await self.request(endpoint)
        return self._decoded(result, decode_upload_url, "upload_url")

    async def put_binary(self, url: str, data: bytes, content_type: str) -> PlatformResult:
        """Unauthenticated PUT of the file bytes to a presigned URL."""
        host = urlsplit(url).netloc or "unknown"
        with Timer() as timer:
            async with self._semaphore:
                try:
                    response = await self._http.put(
                        url,
                        content=data,
                        headers={"Content-Type": content_type, "Content-Length": str(len(data))},
                    )
                except httpx.TransportError as e:
                    result = PlatformResult.failure(
                        ErrorCode.API_ERROR, f"upload transport error: {type(e).__name__}: {e}"
                    )
                else:
                    if response.status_code in (200, 201, 204):
                        result = PlatformResult.success(response.status_code, None)
                    else:
                        result = PlatformResult.failure(
                            ErrorCode.API_ERROR,
                            f"PUT to presigned URL failed: HTTP {response.status_code}",
                            status=response.status_code,
                            body=truncate(response.text, self.error_body_limit),
                        )

        outcome = "ok" if result.ok else result.code.value
        logger.info(
            "Platform binary upload",
            host=host,
            bytes=len(data),
            status=result.status,
            outcome=outcome,
            duration_ms=round(timer.elapsed_ms, 1),
        )
        record_platform_call("PUT", outcome, timer.elapsed_s)
        return result

    async def complete_upload(self, media_id: int, name: str | None = None) -> PlatformResult:
        body = {"name": name} if name else None
        return await self.request(f"/media/{media_id}/upload/complete/", method="POST", body=body)

    async def get_media(self, media_id: int) -> PlatformResult:
        """Canonical media fetch; the authority on whether the object exists."""
        return await self.request(f"/media/{media_id}/")

    async def get_media_status(self, media_id: int) -> PlatformResult:
        result = await self.request(f"/media/{media_id}/status/")
        if result.code == ErrorCode.NOT_FOUND:
            # Older API versions expose status only on the media object
            result = await self.get_media(media_id)
        decoded = self._decoded(result, decode_media_status, "media_status")
        if decoded.ok and not decoded.data.media_id:
            decoded.data.media_id = media_id
        return decoded

    async def check_auth(self) -> PlatformResult:
        """Cheap authenticated call used by the auth diagnostics endpoint."""
        result = await self.request("/screens/", params={"limit": 1})
        if not result.ok:
            return result
        return PlatformResult.success(result.status, {"ok": True, "label": self._token.label})

    def _api_path(self, url: str) -> str:
        """Turn an absolute API URL into a path relative to the base URL."""
        base_path = urlsplit(self.base_url).path.rstrip("/")
        path = urlsplit(url).path
        if base_path and path.startswith(base_path):
            path = path[len(base_path):]
        query = urlsplit(url).query
        return f"{path}?{query}" if query else path

