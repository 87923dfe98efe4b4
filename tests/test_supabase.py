"""Tests for the Supabase storage and metadata adapters (httpx MockTransport)."""
import json

import httpx
import pytest

from mediaqueue.config import SupabaseSettings
from mediaqueue.errors import AuthorizationFailure, TransientNetworkFailure, ValidationFailure
from mediaqueue.protocols import IMetadataRecorder, IPartialStorageBackend, IStorageBackend, PutOptions
from mediaqueue.services import (
    ChunkedSupabaseStorage,
    SupabaseClient,
    SupabaseMetadataRepository,
    SupabaseStorage,
)
from mediaqueue.services.storage import chunk_key
from mediaqueue.services.supabase_client import raise_for_status

SETTINGS = SupabaseSettings(url="https://project.supabase.test/", service_key="service-key")


class FakeSupabase:
    """Records requests and serves stored objects back."""

    def __init__(self):
        self.requests = []
        self.objects = {}
        self.status = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status is not None:
            return httpx.Response(self.status, json={"message": "nope"})
        path = request.url.path
        if request.method == "POST" and path.startswith("/storage/v1/object/"):
            self.objects[path] = request.content
            return httpx.Response(200, json={"Key": path})
        if request.method == "GET" and path in self.objects:
            return httpx.Response(200, content=self.objects[path])
        if request.method == "DELETE":
            for prefix in json.loads(request.content)["prefixes"]:
                self.objects.pop(f"{path}/{prefix}", None)
            return httpx.Response(200, json=[])
        if request.method == "POST" and path.startswith("/rest/v1/"):
            return httpx.Response(201)
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def backend():
    return FakeSupabase()


@pytest.fixture
def client(backend):
    return SupabaseClient(SETTINGS, transport=httpx.MockTransport(backend))


async def stream(*chunks):
    for chunk in chunks:
        yield chunk


class TestRaiseForStatus:
    @pytest.mark.parametrize("status, error", [
        (401, AuthorizationFailure),
        (403, AuthorizationFailure),
        (408, TransientNetworkFailure),
        (429, TransientNetworkFailure),
        (503, TransientNetworkFailure),
        (400, ValidationFailure),
        (409, ValidationFailure),
        (413, ValidationFailure),
    ])
    def test_status_mapping(self, status, error):
        response = httpx.Response(status, json={"message": "detail"})
        with pytest.raises(error, match=f"Upload a.jpg failed with {status}: detail"):
            raise_for_status(response, "Upload a.jpg")

    def test_success_passes(self):
        raise_for_status(httpx.Response(200), "Upload")

    def test_plain_text_body(self):
        with pytest.raises(ValidationFailure, match="bad body"):
            raise_for_status(httpx.Response(400, text="bad body"), "Upload")


class TestSupabaseClient:
    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = SupabaseClient(SETTINGS)
        with pytest.raises(RuntimeError, match="async with"):
            await client.request("GET", "/", "Ping")

    @pytest.mark.asyncio
    async def test_sends_credentials(self, client, backend):
        async with client:
            await client.request("POST", "/rest/v1/media_files", "Insert", json={})
        request = backend.requests[0]
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert str(request.url).startswith("https://project.supabase.test/rest/v1/")

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with SupabaseClient(SETTINGS, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransientNetworkFailure, match="connection refused"):
                await client.request("GET", "/storage/v1/object/x", "Download x")


class TestSupabaseStorage:
    @pytest.mark.asyncio
    async def test_put_object(self, client, backend):
        storage = SupabaseStorage(client)
        options = PutOptions(cache_control="3600", upsert=False, content_type="image/jpeg")

        async with client:
            await storage.put_object("msg-1/a b.jpg", stream(b"ab", b"cd"), 4, options)

        request = backend.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/storage/v1/object/birthday-media/msg-1/a b.jpg"
        assert request.headers["cache-control"] == "max-age=3600"
        assert request.headers["x-upsert"] == "false"
        assert request.headers["content-type"] == "image/jpeg"
        assert request.content == b"abcd"

    @pytest.mark.asyncio
    async def test_conflict_is_fatal(self, client, backend):
        backend.status = 409
        storage = SupabaseStorage(client)
        async with client:
            with pytest.raises(ValidationFailure):
                await storage.put_object("k.jpg", stream(b"x"), 1, PutOptions())

    @pytest.mark.asyncio
    async def test_public_url(self, client):
        storage = SupabaseStorage(client, bucket="media")
        assert storage.get_public_url("msg-1/a.jpg") == (
            "https://project.supabase.test/storage/v1/object/public/media/msg-1/a.jpg"
        )

    def test_protocols(self, client):
        assert isinstance(SupabaseStorage(client), IStorageBackend)
        assert not isinstance(SupabaseStorage(client), IPartialStorageBackend)
        assert isinstance(ChunkedSupabaseStorage(client), IPartialStorageBackend)


class TestChunkedSupabaseStorage:
    @pytest.mark.asyncio
    async def test_parts_are_assembled_and_removed(self, client, backend):
        storage = ChunkedSupabaseStorage(client)
        options = PutOptions(content_type="video/mp4")

        async with client:
            await storage.put_part("msg-1/v.mp4", 0, b"hello ", options)
            await storage.put_part("msg-1/v.mp4", 1, b"world", options)
            await storage.complete_parts("msg-1/v.mp4", 2, options)

        prefix = "/storage/v1/object/birthday-media/"
        assert backend.objects == {prefix + "msg-1/v.mp4": b"hello world"}
        part_request = backend.requests[0]
        assert part_request.url.path == prefix + chunk_key("msg-1/v.mp4", 0)
        assert part_request.headers["x-upsert"] == "true"
        assert backend.requests[-1].method == "DELETE"

    def test_chunk_key(self):
        assert chunk_key("a/b.mp4", 7) == "a/b.mp4.chunk.0007"


class TestSupabaseMetadataRepository:
    @pytest.mark.asyncio
    async def test_inserts_row(self, client, backend):
        repository = SupabaseMetadataRepository(client)
        assert isinstance(repository, IMetadataRecorder)

        async with client:
            await repository.record_media_metadata(
                owner_id="msg-1",
                file_name="a.jpg",
                media_kind="image",
                size_bytes=1234,
                storage_key="msg-1/123-abc.jpg",
                url="https://cdn/a.jpg",
            )

        request = backend.requests[0]
        assert request.url.path == "/rest/v1/media_files"
        assert request.headers["prefer"] == "return=minimal"
        assert json.loads(request.content) == {
            "message_id": "msg-1",
            "file_name": "a.jpg",
            "file_type": "image",
            "file_size": 1234,
            "storage_path": "msg-1/123-abc.jpg",
        }

    def test_optional_url_column(self, client):
        repository = SupabaseMetadataRepository(client, table="uploads", owner_column="post_id", url_column="url")
        row = repository.build_row("p1", "a.jpg", "image", 1, "p1/a.jpg", "https://cdn/a.jpg")
        assert row["post_id"] == "p1"
        assert row["url"] == "https://cdn/a.jpg"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, client, backend):
        backend.status = 401
        repository = SupabaseMetadataRepository(client)
        async with client:
            with pytest.raises(AuthorizationFailure):
                await repository.record_media_metadata("m", "a.jpg", "image", 1, "m/a.jpg", "u")
