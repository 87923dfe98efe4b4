"""
Metadata Repository - Single Responsibility: persist media rows to the REST API.

Implements IMetadataRecorder (Repository Pattern).
"""
from typing import Any, Dict, Optional

from .supabase_client import SupabaseClient


class SupabaseMetadataRepository:
    """
    Repository for media file rows.

    Row layout: {owner_column, file_name, file_type, file_size, storage_path}
    plus url_column when configured.
    """

    def __init__(
        self,
        client: SupabaseClient,
        table: Optional[str] = None,
        owner_column: str = "message_id",
        url_column: Optional[str] = None,
    ):
        self._client = client
        self._table = table or client.settings.media_table
        self._owner_column = owner_column
        self._url_column = url_column

    def build_row(
        self,
        owner_id: str,
        file_name: str,
        media_kind: str,
        size_bytes: int,
        storage_key: str,
        url: str,
    ) -> Dict[str, Any]:
        row = {
            self._owner_column: owner_id,
            "file_name": file_name,
            "file_type": media_kind,
            "file_size": size_bytes,
            "storage_path": storage_key,
        }
        if self._url_column:
            row[self._url_column] = url
        return row

    async def record_media_metadata(
        self,
        owner_id: str,
        file_name: str,
        media_kind: str,
        size_bytes: int,
        storage_key: str,
        url: str,
    ) -> None:
        await self._client.request(
            "POST",
            f"/rest/v1/{self._table}",
            f"Insert {self._table} row for {file_name}",
            headers={"Prefer": "return=minimal"},
            json=self.build_row(owner_id, file_name, media_kind, size_bytes, storage_key, url),
        )
