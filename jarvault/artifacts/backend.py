"""HTTP client for the external build backend.

The backend compiles plugins and keeps its own copy of every JAR. This
service falls back to it whenever the local store has no artifact.

Uses httpx for async HTTP calls. Network failures are translated at this
boundary:

  httpx.TimeoutException      → BackendTimeout      (408)
  other httpx.TransportError  → BackendUnavailable  (503)
  no BACKEND_API_URL set      → BackendUnavailable  (503)

JSON helpers return None for a definitive 404 so callers can tell
"the backend has nothing" apart from "the backend is down".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import httpx

from jarvault.core.config import Settings
from jarvault.core.errors import (
    ArtifactNotFound,
    ArtifactTooLarge,
    BackendTimeout,
    BackendUnavailable,
)
from jarvault.core.middleware import get_request_id

logger = logging.getLogger(__name__)

USER_AGENT = "jarvault-proxy/1.0"

# Response headers relayed verbatim from a proxied download.
RELAYED_HEADERS = (
    "content-type",
    "content-length",
    "content-encoding",
    "content-disposition",
    "content-range",
    "accept-ranges",
    "etag",
    "last-modified",
)


def _path(*segments: str) -> str:
    return "/".join(quote(segment, safe="") for segment in segments)


@dataclass
class BackendDownload:
    """An open streaming response from the backend. Call `aclose()` when done."""

    status_code: int
    headers: httpx.Headers
    _response: httpx.Response
    _client: httpx.AsyncClient

    @property
    def ok(self) -> bool:
        return self._response.is_success

    def relayed_headers(self) -> dict[str, str]:
        return {
            name: self.headers[name] for name in RELAYED_HEADERS if name in self.headers
        }

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        """Undecoded body, for relaying with the original Content-Encoding."""
        async for chunk in self._response.aiter_raw():
            yield chunk

    async def aread_text(self) -> str:
        try:
            await self._response.aread()
        except httpx.TimeoutException as exc:
            raise BackendTimeout() from exc
        except httpx.TransportError as exc:
            raise BackendUnavailable() from exc
        return self._response.text

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


class BackendClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        download_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendClient":
        return cls(
            settings.backend_api_url,
            timeout=settings.backend_timeout_seconds,
            download_timeout=settings.backend_download_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        if not self.configured:
            raise BackendUnavailable("Backend API not configured")
        headers = {"User-Agent": USER_AGENT}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=self._transport,
        )

    async def _get_json(self, path: str) -> Optional[Any]:
        async with self._client(self.timeout) as client:
            try:
                response = await client.get(path, headers={"Accept": "application/json"})
            except httpx.TimeoutException as exc:
                logger.warning("Backend GET %s timed out: %s", path, exc)
                raise BackendTimeout("Request to backend timed out") from exc
            except httpx.TransportError as exc:
                logger.warning("Backend GET %s failed: %s", path, exc)
                raise BackendUnavailable() from exc

        if response.status_code == 404:
            return None
        if not response.is_success:
            logger.warning("Backend GET %s returned %d", path, response.status_code)
            raise BackendUnavailable(f"Backend returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise BackendUnavailable("Backend returned invalid JSON") from exc

    async def get_download_info(self, user_id: str, plugin_name: str) -> Optional[dict]:
        data = await self._get_json(f"/plugin/download-info/{_path(user_id, plugin_name)}")
        return data if isinstance(data, dict) else None

    async def jar_exists(self, user_id: str, plugin_name: str) -> bool:
        data = await self._get_json(f"/plugin/jar-exists/{_path(user_id, plugin_name)}")
        return bool(isinstance(data, dict) and data.get("exists"))

    async def list_plugins(self, user_id: str) -> list[dict]:
        data = await self._get_json(f"/plugin/list/{_path(user_id)}")
        if isinstance(data, dict):
            data = data.get("plugins")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def open_download(
        self,
        user_id: str,
        plugin_name: str,
        range_header: Optional[str] = None,
    ) -> BackendDownload:
        """Start a streaming download. The caller owns the returned stream."""
        client = self._client(self.download_timeout)
        headers = {"Accept": "application/java-archive, application/octet-stream, */*"}
        if range_header:
            headers["Range"] = range_header
        path = f"/plugin/download/{_path(user_id, plugin_name)}"
        try:
            response = await client.send(client.build_request("GET", path, headers=headers), stream=True)
        except httpx.TimeoutException as exc:
            await client.aclose()
            logger.warning("Backend download %s timed out: %s", path, exc)
            raise BackendTimeout() from exc
        except httpx.TransportError as exc:
            await client.aclose()
            logger.warning("Backend download %s failed: %s", path, exc)
            raise BackendUnavailable() from exc

        return BackendDownload(
            status_code=response.status_code,
            headers=response.headers,
            _response=response,
            _client=client,
        )

    async def fetch_binary(
        self,
        user_id: str,
        plugin_name: str,
        max_bytes: Optional[int] = None,
    ) -> bytes:
        """Download a whole JAR into memory (integrity checks and syncs).

        Aborts with ArtifactTooLarge as soon as more than `max_bytes`
        have been received.
        """
        download = await self.open_download(user_id, plugin_name)
        chunks: list[bytes] = []
        received = 0
        try:
            if download.status_code == 404:
                raise ArtifactNotFound(
                    "JAR file not available from backend",
                    hint="Please compile your plugin first",
                )
            if not download.ok:
                raise BackendUnavailable(f"Backend returned {download.status_code}")
            async for chunk in download.aiter_bytes():
                received += len(chunk)
                if max_bytes is not None and received > max_bytes:
                    raise ArtifactTooLarge(f"JAR file exceeds the {max_bytes} byte limit")
                chunks.append(chunk)
        except httpx.TimeoutException as exc:
            raise BackendTimeout() from exc
        except httpx.TransportError as exc:
            raise BackendUnavailable() from exc
        finally:
            await download.aclose()
        return b"".join(chunks)
