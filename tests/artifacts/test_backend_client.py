"""Tests for the build backend HTTP client, using httpx.MockTransport."""

import httpx
import pytest

from jarvault.artifacts.backend import USER_AGENT, BackendClient
from jarvault.core.errors import (
    ArtifactNotFound,
    ArtifactTooLarge,
    BackendTimeout,
    BackendUnavailable,
)
from tests.conftest import BACKEND_URL, make_jar


def _client(handler) -> BackendClient:
    return BackendClient(BACKEND_URL, transport=httpx.MockTransport(handler))


class TestConfiguration:
    def test_empty_base_url_is_unconfigured(self) -> None:
        assert BackendClient("").configured is False
        assert BackendClient(BACKEND_URL + "/").base_url == BACKEND_URL

    async def test_unconfigured_client_raises_backend_unavailable(self) -> None:
        with pytest.raises(BackendUnavailable) as exc_info:
            await BackendClient("").get_download_info("u", "p")
        assert exc_info.value.message == "Backend API not configured"
        assert exc_info.value.status_code == 503


class TestJsonEndpoints:
    async def test_download_info(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"available": True, "fileSize": 10})

        data = await _client(handler).get_download_info("user-1", "SuperPlugin")
        assert data == {"available": True, "fileSize": 10}
        assert seen[0].url.path == "/plugin/download-info/user-1/SuperPlugin"
        assert seen[0].headers["user-agent"] == USER_AGENT

    async def test_path_segments_are_escaped(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"exists": True})

        await _client(handler).jar_exists("user 1", "a/b")
        assert seen[0].url.raw_path.decode() == "/plugin/jar-exists/user%201/a%2Fb"

    async def test_404_means_nothing_there(self) -> None:
        client = _client(lambda request: httpx.Response(404, json={"error": "nope"}))
        assert await client.get_download_info("u", "p") is None
        assert await client.jar_exists("u", "p") is False
        assert await client.list_plugins("u") == []

    async def test_jar_exists_reads_flag(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"exists": True}))
        assert await client.jar_exists("u", "p") is True

    async def test_list_accepts_wrapped_or_bare_list(self) -> None:
        wrapped = _client(
            lambda request: httpx.Response(200, json={"plugins": [{"pluginName": "A"}, "junk"]})
        )
        bare = _client(lambda request: httpx.Response(200, json=[{"pluginName": "B"}]))
        assert await wrapped.list_plugins("u") == [{"pluginName": "A"}]
        assert await bare.list_plugins("u") == [{"pluginName": "B"}]

    async def test_server_error_is_unavailable(self) -> None:
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(BackendUnavailable):
            await client.get_download_info("u", "p")

    async def test_invalid_json_is_unavailable(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(BackendUnavailable):
            await client.get_download_info("u", "p")

    async def test_timeout_maps_to_backend_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(BackendTimeout) as exc_info:
            await _client(handler).get_download_info("u", "p")
        assert exc_info.value.status_code == 408

    async def test_connection_error_maps_to_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendUnavailable):
            await _client(handler).jar_exists("u", "p")


class TestDownloads:
    async def test_open_download_streams_and_forwards_range(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                206,
                content=b"PK\x03",
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Range": "bytes 0-2/100",
                    "X-Internal": "hidden",
                },
            )

        download = await _client(handler).open_download("u", "p", range_header="bytes=0-2")
        try:
            assert download.status_code == 206
            assert download.ok
            relayed = download.relayed_headers()
            assert relayed["content-range"] == "bytes 0-2/100"
            assert "x-internal" not in relayed
            body = b"".join([chunk async for chunk in download.aiter_raw()])
            assert body == b"PK\x03"
        finally:
            await download.aclose()
        assert seen[0].headers["range"] == "bytes=0-2"
        assert seen[0].url.path == "/plugin/download/u/p"

    async def test_open_download_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(BackendTimeout):
            await _client(handler).open_download("u", "p")

    async def test_fetch_binary(self) -> None:
        data = make_jar(64)
        client = _client(lambda request: httpx.Response(200, content=data))
        assert await client.fetch_binary("u", "p") == data

    async def test_fetch_binary_missing(self) -> None:
        client = _client(lambda request: httpx.Response(404, text="not found"))
        with pytest.raises(ArtifactNotFound):
            await client.fetch_binary("u", "p")

    async def test_fetch_binary_server_error(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(BackendUnavailable):
            await client.fetch_binary("u", "p")

    async def test_fetch_binary_enforces_size_cap(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=make_jar(64)))
        assert await client.fetch_binary("u", "p", max_bytes=68) == make_jar(64)
        with pytest.raises(ArtifactTooLarge):
            await client.fetch_binary("u", "p", max_bytes=67)

    async def test_error_body_read_timeout_maps_to_backend_timeout(self) -> None:
        class StalledStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                raise httpx.ReadTimeout("stalled")
                yield b""  # makes this an async generator

        client = _client(lambda request: httpx.Response(502, stream=StalledStream()))
        download = await client.open_download("u", "p")
        try:
            with pytest.raises(BackendTimeout):
                await download.aread_text()
        finally:
            await download.aclose()
