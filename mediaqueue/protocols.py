"""
Protocols (Interfaces) for the collaborators the queue depends on.

Storage, metadata recording and compression are injected, so the queue can
run against the Supabase adapters or any in-memory stub.
"""
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from .models import Payload, SourceFile


@dataclass(frozen=True)
class PutOptions:
    """Per-object upload options."""
    cache_control: str = "3600"
    upsert: bool = False
    content_type: Optional[str] = None


@runtime_checkable
class IStorageBackend(Protocol):
    """Object storage: one put per attempt, public URL per stored object."""

    async def put_object(
        self,
        key: str,
        content: AsyncIterator[bytes],
        size: int,
        options: PutOptions,
    ) -> None:
        """Store the streamed content under key. Raises classified UploadErrors."""
        ...

    def get_public_url(self, key: str) -> str:
        """Durable public address of a stored object."""
        ...


@runtime_checkable
class IPartialStorageBackend(Protocol):
    """Storage that acknowledges parts individually, enabling byte-preserving resume."""

    async def put_part(self, key: str, index: int, data: bytes, options: PutOptions) -> None:
        ...

    async def complete_parts(self, key: str, part_count: int, options: PutOptions) -> None:
        ...


@runtime_checkable
class IMetadataRecorder(Protocol):
    """Records the association between an uploaded object and its owner."""

    async def record_media_metadata(
        self,
        owner_id: str,
        file_name: str,
        media_kind: str,
        size_bytes: int,
        storage_key: str,
        url: str,
    ) -> None:
        ...


@runtime_checkable
class ICompressor(Protocol):
    """Shrinks a payload; raises CompressionFailure when it cannot."""

    async def compress(self, source: SourceFile) -> Payload:
        ...
