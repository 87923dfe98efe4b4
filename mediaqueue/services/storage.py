"""
Storage Service - Single Responsibility: put objects into the media bucket.

SupabaseStorage implements IStorageBackend; ChunkedSupabaseStorage adds
IPartialStorageBackend by storing parts as separate chunk objects and
assembling them once every part is acknowledged.
"""
from typing import AsyncIterator, Dict, List
from urllib.parse import quote
import logging

from ..protocols import PutOptions
from .supabase_client import SupabaseClient
logger = logging.getLogger(__name__)


def chunk_key(key: str, index: int) -> str:
    return f"{key}.chunk.{index:04d}"


class SupabaseStorage:
    """Object storage in a hosted bucket."""

    def __init__(self, client: SupabaseClient, bucket: str = None):
        self._client = client
        self._bucket = bucket or client.settings.bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def _object_path(self, key: str) -> str:
        return f"/storage/v1/object/{self._bucket}/{quote(key)}"

    @staticmethod
    def _headers(options: PutOptions, size: int = None) -> Dict[str, str]:
        headers = {
            "cache-control": f"max-age={options.cache_control}",
            "x-upsert": "true" if options.upsert else "false",
            "content-type": options.content_type or "application/octet-stream",
        }
        if size is not None:
            headers["content-length"] = str(size)
        return headers

    async def put_object(
        self,
        key: str,
        content: AsyncIterator[bytes],
        size: int,
        options: PutOptions,
    ) -> None:
        """Stream content into the bucket under key."""
        await self._client.request(
            "POST",
            self._object_path(key),
            f"Upload {key}",
            headers=self._headers(options, size),
            content=content,
        )
        logger.debug(f"[storage] Stored {self._bucket}/{key} ({size} bytes)")

    def get_public_url(self, key: str) -> str:
        return f"{self._client.settings.base_url}/storage/v1/object/public/{self._bucket}/{quote(key)}"

    async def download(self, key: str) -> bytes:
        response = await self._client.request("GET", self._object_path(key), f"Download {key}")
        return response.content

    async def remove(self, keys: List[str]) -> None:
        if not keys:
            return
        await self._client.request(
            "DELETE",
            f"/storage/v1/object/{self._bucket}",
            f"Remove {len(keys)} objects",
            json={"prefixes": keys},
        )


class ChunkedSupabaseStorage(SupabaseStorage):
    """Storage with per-part acknowledgment for byte-preserving resume."""

    async def put_part(self, key: str, index: int, data: bytes, options: PutOptions) -> None:
        part_options = PutOptions(
            cache_control=options.cache_control,
            upsert=True,
            content_type="application/octet-stream",
        )
        part = chunk_key(key, index)
        await self._client.request(
            "POST",
            self._object_path(part),
            f"Upload part {index} of {key}",
            headers=self._headers(part_options, len(data)),
            content=data,
        )

    async def complete_parts(self, key: str, part_count: int, options: PutOptions) -> None:
        """
        Download every part, upload the concatenation, then remove the parts.

        The whole object is held in memory while it is assembled, which suits
        photos and short clips but not multi-gigabyte payloads.
        """
        parts = [chunk_key(key, index) for index in range(part_count)]
        blobs = []
        for part in parts:
            blobs.append(await self.download(part))
        data = b"".join(blobs)

        await self._client.request(
            "POST",
            self._object_path(key),
            f"Assemble {key}",
            headers=self._headers(options, len(data)),
            content=data,
        )
        logger.debug(f"[storage] Assembled {key} from {part_count} parts ({len(data)} bytes)")

        try:
            await self.remove(parts)
        except Exception as e:
            # The object is complete; leftover parts only cost space.
            logger.warning(f"[storage] Failed to clean up parts of {key}: {e}")
