"""
Metadata Linker - Single Responsibility: record where an upload landed.

Runs after a task completes. A failure here never reverts the task; it is
kept as an orphan and published so the caller can reconcile.
"""
from typing import Callable, List, Optional
import asyncio
import logging

from ..errors import MetadataLinkFailure, TransientNetworkFailure
from ..models import LinkWarning, TaskSnapshot
from ..protocols import IMetadataRecorder
logger = logging.getLogger(__name__)


class MetadataLinker:
    """Links completed uploads to their owning record."""

    def __init__(
        self,
        recorder: Optional[IMetadataRecorder],
        max_attempts: int = 3,
        backoff: float = 0.5,
    ):
        self._recorder = recorder
        self._max_attempts = max_attempts
        self._backoff = backoff
        self.orphans: List[LinkWarning] = []

    async def link(
        self,
        task: TaskSnapshot,
        on_warning: Optional[Callable[[LinkWarning], None]] = None,
    ) -> bool:
        """
        Record metadata for a completed task.

        Returns True when recorded (or when no recorder is configured).
        """
        if self._recorder is None:
            return True

        try:
            await self._record(task)
        except Exception as e:
            failure = e if isinstance(e, MetadataLinkFailure) else MetadataLinkFailure(str(e) or type(e).__name__, cause=e)
            warning = LinkWarning(
                task_id=task.task_id,
                owner_id=task.owner_id,
                storage_key=task.storage_key or "",
                url=task.remote_location or "",
                message=failure.message,
            )
            self.orphans.append(warning)
            logger.warning(f"Uploaded {task.filename} but could not link it to {task.owner_id}: {failure.message}")
            if on_warning:
                on_warning(warning)
            return False

        logger.debug(f"Linked {task.storage_key} to {task.owner_id}")
        return True

    async def _record(self, task: TaskSnapshot) -> None:
        for attempt in range(self._max_attempts):
            try:
                await self._recorder.record_media_metadata(
                    owner_id=task.owner_id,
                    file_name=task.filename,
                    media_kind=task.media_kind,
                    size_bytes=task.transfer_size,
                    storage_key=task.storage_key,
                    url=task.remote_location,
                )
                return
            except TransientNetworkFailure:
                if attempt < self._max_attempts - 1:
                    await asyncio.sleep(self._backoff * (attempt + 1))
                    continue
                raise
