"""Shared stubs for queue tests: deterministic in-memory storage and recorder."""
import asyncio
from typing import Optional

import pytest

from mediaqueue.config import QueueConfig
from mediaqueue.errors import ValidationFailure


class FakeStorage:
    """Whole-object storage. Optionally fails, blocks, or stores and then stalls each put."""

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.failures = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Semaphore] = None
        self.stall_after_store = 0
        self.upserts = []

    async def put_object(self, key, content, size, options):
        self.put_calls.append(key)
        self.upserts.append(options.upsert)
        data = bytearray()
        async for chunk in content:
            data.extend(chunk)
        if self.fail_with is not None:
            raise self.fail_with
        if self.failures:
            raise self.failures.pop(0)
        if self.gate is not None:
            await self.gate.acquire()
        if key in self.objects and not options.upsert:
            raise ValidationFailure(f"{key} already exists")
        self.objects[key] = bytes(data)
        if self.stall_after_store:
            # Stored, but the response never arrives.
            self.stall_after_store -= 1
            await asyncio.sleep(3600)

    def get_public_url(self, key):
        return f"https://cdn.example.test/{key}"


class FakePartialStorage(FakeStorage):
    """Storage acknowledging parts one by one. Parts from gate_from on block on part_gate."""

    def __init__(self):
        super().__init__()
        self.parts = {}
        self.part_calls = []
        self.part_gate: Optional[asyncio.Semaphore] = None
        self.gate_from = 0
        self.completed = []

    async def put_part(self, key, index, data, options):
        self.part_calls.append(index)
        if self.part_gate is not None and index >= self.gate_from:
            await self.part_gate.acquire()
        self.parts[(key, index)] = data

    async def complete_parts(self, key, part_count, options):
        self.completed.append(key)
        self.objects[key] = b"".join(self.parts[(key, i)] for i in range(part_count))


class FakeRecorder:
    """Metadata recorder that remembers every call."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.records = []
        self.fail_with = fail_with

    async def record_media_metadata(self, owner_id, file_name, media_kind, size_bytes, storage_key, url):
        if self.fail_with is not None:
            raise self.fail_with
        self.records.append({
            "owner_id": owner_id,
            "file_name": file_name,
            "media_kind": media_kind,
            "size_bytes": size_bytes,
            "storage_key": storage_key,
            "url": url,
        })


async def fixed_keys(owner_id, payload):
    """Deterministic key: owner/filename."""
    return f"{owner_id}/{payload.path.name}"


async def _wait_until(predicate, timeout: float = 5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def partial_storage():
    return FakePartialStorage()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def key_factory():
    return fixed_keys


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fast_config():
    """No backoff, no throttling, no compression, two slots."""
    return QueueConfig(
        max_concurrent_uploads=2,
        max_attempts=2,
        backoff_base=0,
        progress_interval=0,
        compression_enabled=False,
        attempt_timeout=5.0,
    )


@pytest.fixture
def make_file(tmp_path):
    """Create a file of the given size filled with a repeating pattern."""
    def _make(name: str, size: int = 1024):
        path = tmp_path / name
        pattern = bytes(range(256))
        path.write_bytes((pattern * (size // 256 + 1))[:size])
        return path
    return _make
