"""Tests for remote document stores."""

import json
import tempfile
from pathlib import Path

import httpx
import pytest

from marksync.core.remote_store import (
    REMOTE_DOCUMENT_NAME,
    DriveFolderRemoteStore,
    HttpRemoteStore,
    RemoteStoreError,
    build_remote_store,
)
from marksync.models.config import AppConfig, EnvSettings
from marksync.models.folder import Folder
from marksync.models.snapshot import BookmarkData


def _http_store(handler, token="t0ken"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRemoteStore("https://sync.example.com/u/1/", token=token, client=client)


class TestDriveFolderRemoteStore:
    """Test the cloud drive folder store."""

    @pytest.mark.asyncio
    async def test_empty_folder_fetches_none(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = DriveFolderRemoteStore(Path(temp_dir))
            assert await store.fetch() is None

    @pytest.mark.asyncio
    async def test_push_then_fetch(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = DriveFolderRemoteStore(Path(temp_dir))
            folder = Folder(name="Work")

            await store.push(BookmarkData(folders=[folder]))

            path = Path(temp_dir) / REMOTE_DOCUMENT_NAME
            assert json.loads(path.read_text(encoding="utf-8"))["folders"][0]["name"] == "Work"
            fetched = await store.fetch()
            assert fetched.folders[0] == folder

    @pytest.mark.asyncio
    async def test_missing_folder_is_permanent_failure(self):
        store = DriveFolderRemoteStore(Path("/nonexistent/drive"))

        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch()

        assert exc_info.value.failure_type == "unavailable"
        assert not exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_invalid_document(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            (Path(temp_dir) / REMOTE_DOCUMENT_NAME).write_text("{not json", encoding="utf-8")
            store = DriveFolderRemoteStore(Path(temp_dir))

            with pytest.raises(RemoteStoreError) as exc_info:
                await store.fetch()
            assert exc_info.value.failure_type == "invalid_document"

    def test_describe(self):
        store = DriveFolderRemoteStore(Path("/drive"))
        assert store.describe().endswith(REMOTE_DOCUMENT_NAME)


class TestHttpRemoteStore:
    """Test the HTTP document store against a mock transport."""

    @pytest.mark.asyncio
    async def test_fetch_sends_bearer_token(self):
        seen = {}
        document = BookmarkData(folders=[Folder(name="Work")])

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, text=document.model_dump_json())

        store = _http_store(handler)
        fetched = await store.fetch()

        assert seen["url"] == "https://sync.example.com/u/1/bookmarks.json"
        assert seen["auth"] == "Bearer t0ken"
        assert fetched.folders[0].name == "Work"

    @pytest.mark.asyncio
    async def test_fetch_404_means_empty_remote(self):
        store = _http_store(lambda request: httpx.Response(404))
        assert await store.fetch() is None

    @pytest.mark.asyncio
    async def test_push_puts_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        store = _http_store(handler)
        await store.push(BookmarkData(folders=[Folder(name="Work")]))

        assert seen["method"] == "PUT"
        assert seen["body"]["folders"][0]["name"] == "Work"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,failure_type,transient",
        [
            (401, "authentication", False),
            (403, "authentication", False),
            (429, "ratelimit", True),
            (500, "server_error", True),
            (503, "server_error", True),
            (400, "invalid_request", False),
        ],
    )
    async def test_status_classification(self, status, failure_type, transient):
        store = _http_store(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch()

        assert exc_info.value.failure_type == failure_type
        assert exc_info.value.is_transient is transient

    @pytest.mark.asyncio
    async def test_network_errors_are_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = _http_store(handler)
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch()

        assert exc_info.value.failure_type == "network"
        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [httpx.RemoteProtocolError, httpx.LocalProtocolError, httpx.ProxyError],
    )
    async def test_other_transport_errors_are_transient(self, error):
        """Test a server dropping the connection mid-response is retried like a network error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise error("peer closed connection", request=request)

        store = _http_store(handler)
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.fetch()

        assert exc_info.value.failure_type == "network"
        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_timeouts_are_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        store = _http_store(handler)
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.push(BookmarkData())

        assert exc_info.value.failure_type == "timeout"

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        store = HttpRemoteStore("https://sync.example.com", client=client)

        await store.close()
        assert not client.is_closed
        await client.aclose()


class TestBuildRemoteStore:
    def test_none(self):
        assert build_remote_store(AppConfig(data_dir="/data")) is None

    def test_drive_folder(self):
        config = AppConfig(data_dir="/data", remote_provider="drive_folder", remote_path="/drive")
        assert isinstance(build_remote_store(config), DriveFolderRemoteStore)

    def test_http_uses_env_token(self):
        config = AppConfig(
            data_dir="/data", remote_provider="http", remote_url="https://sync.example.com"
        )
        store = build_remote_store(config, EnvSettings(marksync_remote_token="abc"))

        assert isinstance(store, HttpRemoteStore)
        assert store.token == "abc"
