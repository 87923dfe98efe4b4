"""
Upload queue - coordinates compression, transfer and linking for many files.

All task state lives here and is only changed through the public methods and
the runners they start. Observers get TaskSnapshot / QueueStats copies.
"""
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union
import asyncio
import inspect
import itertools
import logging
import time

from ..config import QueueConfig
from ..errors import CompressionFailure, TaskNotFoundError, TransferAborted, UploadError
from ..models import (
    ErrorInfo,
    LinkWarning,
    Payload,
    QueueStats,
    SourceFile,
    TaskSnapshot,
    TaskStatus,
    UploadTask,
    format_file_size,
)
from ..protocols import ICompressor, IMetadataRecorder, IStorageBackend
from ..services.compression import CompressionService
from ..services.metadata_linker import MetadataLinker
from ..services.transfer import TransferWorker
from ..telemetry import SpeedTracker, compute_stats
from ..utils.cancellation import AbortReason, CancelToken
from ..utils.events import EventEmitter
from .scheduler import PendingQueue
logger = logging.getLogger(__name__)

FileInput = Union[str, Path, SourceFile]
Validator = Callable[[SourceFile], None]


class UploadQueue:
    """
    Queue Manager with bounded concurrency.

    Usage:
        async with UploadQueue(storage, metadata) as queue:
            queue.on_task(lambda snap: print(snap.filename, snap.progress))
            queue.on_stats(lambda stats: print(stats.overall_progress))
            ids = queue.add_files(paths, owner_id="message-123")
            await queue.wait_for_completion()

    A worker slot is held from admission until the task's runner exits, so at
    most max_concurrent_uploads tasks are compressing or uploading at once.
    Freed slots go to the highest-priority pending task, FIFO among equals.
    Running transfers are never preempted.
    """

    def __init__(
        self,
        storage: IStorageBackend,
        metadata: Optional[IMetadataRecorder] = None,
        compressor: Optional[ICompressor] = None,
        config: Optional[QueueConfig] = None,
        validator: Optional[Validator] = None,
        worker: Optional[TransferWorker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or QueueConfig()
        self._clock = clock
        self._worker = worker or TransferWorker(storage, self._config, clock=clock)
        self._compressor = compressor or CompressionService(self._config)
        self._linker = MetadataLinker(metadata)
        self._validator = validator
        self._events = EventEmitter()

        self._tasks: Dict[str, UploadTask] = {}
        self._pending = PendingQueue()
        self._running: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancelToken] = {}
        self._trackers: Dict[str, SpeedTracker] = {}
        self._evicted: Set[str] = set()
        self._link_tasks: Set[asyncio.Task] = set()
        self._abandoned: Set[asyncio.Future] = set()
        self._sequence = itertools.count()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def linker(self) -> MetadataLinker:
        return self._linker

    # Subscriptions

    def on_task(self, callback: Callable[[TaskSnapshot], None]) -> Callable[[], None]:
        """Called with a TaskSnapshot on every task change."""
        return self._events.on("task", callback)

    def on_stats(self, callback: Callable[[QueueStats], None]) -> Callable[[], None]:
        """Called with fresh QueueStats on every change."""
        return self._events.on("stats", callback)

    def on_warning(self, callback: Callable[[LinkWarning], None]) -> Callable[[], None]:
        """Called when an uploaded object could not be linked to its owner."""
        return self._events.on("warning", callback)

    # Controls

    def add_files(self, files: Iterable[FileInput], owner_id: str, priority: int = 0) -> List[str]:
        """
        Create one pending task per file and schedule them.

        Args:
            files: Paths or SourceFile objects (non-empty)
            owner_id: Logical record the files belong to
            priority: Higher is admitted first

        Returns:
            Task ids, in the order of files
        """
        if self._closed:
            raise RuntimeError("UploadQueue is closed")
        files = list(files)
        if not files:
            raise ValueError("files must not be empty")
        if not owner_id:
            raise ValueError("owner_id is required")

        # Stat everything first so a missing file adds nothing.
        sources = [f if isinstance(f, SourceFile) else SourceFile.from_path(f) for f in files]

        task_ids = []
        for source in sources:
            task = UploadTask(
                source=source,
                owner_id=str(owner_id),
                priority=priority,
                sequence=next(self._sequence),
            )
            self._tasks[task.id] = task
            self._trackers[task.id] = SpeedTracker(self._config.speed_window)
            self._pending.push(task)
            task_ids.append(task.id)
            self._publish(task)

        total = sum(s.size for s in sources)
        logger.info(f"Queued {len(sources)} files for {owner_id} ({format_file_size(total)}, priority {priority})")
        self._schedule()
        return task_ids

    def pause(self, task_id: str) -> bool:
        """Pause an uploading task. Returns False (no-op) from any other state."""
        task = self._get(task_id)
        if task.status != TaskStatus.UPLOADING:
            logger.info(f"Not pausing {task.filename}: task is {task.status.value}")
            return False

        task.status = TaskStatus.PAUSED
        token = self._tokens.get(task.id)
        if token:
            token.abort(AbortReason.PAUSE)
        logger.info(f"Paused {task.filename}")
        self._publish(task)
        return True

    def resume(self, task_id: str) -> bool:
        """Re-admit a paused task at its original priority."""
        task = self._get(task_id)
        if task.status != TaskStatus.PAUSED:
            logger.info(f"Not resuming {task.filename}: task is {task.status.value}")
            return False

        task.status = TaskStatus.PENDING
        self._pending.push(task)
        logger.info(f"Resumed {task.filename}")
        self._publish(task)
        self._schedule()
        return True

    def cancel(self, task_id: str) -> bool:
        """
        Abort and evict a non-terminal task.

        Idempotent: cancelling an already evicted task returns False.
        """
        if task_id in self._evicted:
            logger.debug(f"Task {task_id} already cancelled or removed")
            return False
        task = self._get(task_id)
        if task.status in (TaskStatus.COMPLETE, TaskStatus.ERROR):
            logger.info(f"Not cancelling {task.filename}: task is {task.status.value}")
            return False

        self._evict(task, TaskStatus.CANCELLED)
        logger.info(f"Cancelled {task.filename}")
        self._schedule()
        return True

    def remove(self, task_id: str) -> bool:
        """Evict a task in any state, aborting it if it is running."""
        if task_id in self._evicted:
            return False
        task = self._get(task_id)
        final = task.status if task.status in (TaskStatus.COMPLETE, TaskStatus.ERROR) else TaskStatus.CANCELLED
        self._evict(task, final)
        self._schedule()
        return True

    def retry_failed(self) -> List[str]:
        """Re-admit every retryable failed task at elevated priority."""
        retried = []
        for task in self._tasks.values():
            if task.status != TaskStatus.ERROR or task.error is None or not task.error.retryable:
                continue
            task.status = TaskStatus.PENDING
            task.error = None
            task.progress = 0
            task.bytes_transferred = 0
            task.session = None
            task.storage_key = None
            task.priority = task.base_priority + self._config.retry_priority_boost
            self._pending.push(task)
            retried.append(task.id)
            self._publish(task)

        if retried:
            logger.info(f"Retrying {len(retried)} failed uploads")
        self._schedule()
        return retried

    def clear_completed(self) -> int:
        """Evict completed and failed tasks. Returns how many were removed."""
        finished = [t for t in self._tasks.values() if t.status in (TaskStatus.COMPLETE, TaskStatus.ERROR)]
        for task in finished:
            self._tasks.pop(task.id, None)
            self._trackers.pop(task.id, None)
            self._evicted.add(task.id)
            task.release()
        if finished:
            self._publish_stats()
        return len(finished)

    def pause_all(self) -> List[str]:
        return [t.id for t in list(self._tasks.values()) if t.status == TaskStatus.UPLOADING and self.pause(t.id)]

    def resume_all(self) -> List[str]:
        return [t.id for t in list(self._tasks.values()) if t.status == TaskStatus.PAUSED and self.resume(t.id)]

    def cancel_all(self) -> List[str]:
        return [
            t.id for t in list(self._tasks.values())
            if t.status not in (TaskStatus.COMPLETE, TaskStatus.ERROR) and self.cancel(t.id)
        ]

    # Reads

    def get_task(self, task_id: str) -> TaskSnapshot:
        return self._get(task_id).snapshot()

    def tasks(self, status: Optional[TaskStatus] = None) -> List[TaskSnapshot]:
        return [t.snapshot() for t in self._tasks.values() if status is None or t.status == status]

    def stats(self) -> QueueStats:
        return compute_stats(self._tasks.values(), self._clock())

    def has_active_uploads(self) -> bool:
        if self._running:
            return True
        return any(t.status in (TaskStatus.PENDING, TaskStatus.COMPRESSING, TaskStatus.UPLOADING)
                   for t in self._tasks.values())

    async def wait_for_completion(self, timeout: Optional[float] = None) -> QueueStats:
        """
        Wait until nothing is pending or running, then for metadata links.

        Paused tasks do not block completion, nor do pending tasks once the
        queue is closed.
        """
        if timeout is None:
            await self._idle.wait()
        else:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        await self._settle_background()
        return self.stats()

    async def close(self) -> None:
        """Stop admitting, pause running transfers and wait for runners to exit."""
        self._closed = True
        for task_id, token in list(self._tokens.items()):
            task = self._tasks.get(task_id)
            if task is not None and task.status.is_active:
                task.status = TaskStatus.PAUSED
                self._publish(task)
            token.abort(AbortReason.PAUSE)
        if self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)
        self._update_idle()
        await self._settle_background()

    async def _settle_background(self) -> None:
        """Wait for background work left behind by finished runs."""
        while self._link_tasks or self._abandoned:
            await asyncio.gather(*self._link_tasks, *self._abandoned, return_exceptions=True)
        await self._events.drain()

    # Scheduling

    def _get(self, task_id: str) -> UploadTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _schedule(self) -> None:
        deferred = []
        while not self._closed and len(self._running) < self._config.max_concurrent_uploads:
            task = self._pending.pop(self._tasks.get)
            if task is None:
                break
            if task.id in self._running:
                # Resumed before its previous run finished unwinding.
                deferred.append(task)
                continue
            self._admit(task)
        for task in deferred:
            self._pending.push(task)
        self._update_idle()

    def _admit(self, task: UploadTask) -> None:
        token = CancelToken()
        self._tokens[task.id] = token
        task.status = TaskStatus.COMPRESSING if task.payload is None else TaskStatus.UPLOADING
        self._running[task.id] = asyncio.get_running_loop().create_task(self._run(task, token))
        logger.debug(f"Admitted {task.filename} ({len(self._running)}/{self._config.max_concurrent_uploads} slots)")
        self._publish(task)

    def _update_idle(self) -> None:
        # A closed queue admits nothing, so pending tasks no longer count.
        busy = bool(self._running) if self._closed else self.has_active_uploads()
        if busy:
            self._idle.clear()
        else:
            self._idle.set()

    # Task runner

    async def _run(self, task: UploadTask, token: CancelToken) -> None:
        current = asyncio.current_task()
        try:
            await self._execute(task, token)
        except TransferAborted:
            self._on_aborted(task, token)
        except Exception as e:
            if token.aborted:
                self._on_aborted(task, token)
            else:
                if not isinstance(e, UploadError):
                    logger.exception(f"Unexpected error uploading {task.filename}")
                self._on_failed(task, e)
        finally:
            if self._running.get(task.id) is current:
                del self._running[task.id]
            if self._tokens.get(task.id) is token:
                del self._tokens[task.id]
            if task.id not in self._tasks:
                task.release()
            self._schedule()
            self._publish_stats()

    async def _execute(self, task: UploadTask, token: CancelToken) -> None:
        if task.payload is None:
            if self._validator is not None:
                result = self._validator(task.source)
                if inspect.isawaitable(result):
                    await token.guard(result)
            task.payload = await self._prepare_payload(task, token)
            task.transfer_size = task.payload.size

        if task.storage_key is None:
            task.storage_key = await token.guard(self._worker.build_key(task.owner_id, task.payload))
        if task.session is None:
            task.session = self._worker.new_session(task.storage_key, task.payload)

        token.raise_if_aborted()
        self._start_run(task)

        async def on_progress(bytes_sent: int) -> None:
            self._on_progress(task, token, bytes_sent)

        url = await self._worker.transfer(task.payload, task.session, on_progress, token)
        token.raise_if_aborted()
        self._complete(task, url)

    async def _prepare_payload(self, task: UploadTask, token: CancelToken) -> Payload:
        # Encoders run in threads and cannot be interrupted, so an aborted
        # compression is left to finish and its output discarded.
        compression = asyncio.ensure_future(self._compressor.compress(task.source))
        try:
            return await token.guard(asyncio.shield(compression))
        except CompressionFailure as e:
            logger.warning(f"Compression failed for {task.filename}, uploading original: {e.message}")
            return Payload.from_source(task.source)
        except TransferAborted:
            self._abandoned.add(compression)
            compression.add_done_callback(self._discard_abandoned)
            raise

    def _discard_abandoned(self, compression: asyncio.Future) -> None:
        self._abandoned.discard(compression)
        if compression.cancelled() or compression.exception() is not None:
            return
        payload = compression.result()
        payload.discard()
        logger.debug(f"Discarded abandoned compression output {payload.path}")

    def _percent(self, task: UploadTask) -> int:
        if task.transfer_size <= 0:
            return 99
        return min(99, task.bytes_transferred * 100 // task.transfer_size)

    def _start_run(self, task: UploadTask) -> None:
        now = self._clock()
        tracker = self._trackers[task.id]
        tracker.reset()
        task.status = TaskStatus.UPLOADING
        task.bytes_transferred = task.session.acknowledged_bytes
        task.run_started_at = now
        task.run_start_bytes = task.bytes_transferred
        task.speed = None
        task.eta_seconds = None
        task.progress = max(task.progress, self._percent(task))
        tracker.add(now, task.bytes_transferred)
        logger.info(
            f"Uploading {task.filename} -> {task.storage_key} ({format_file_size(task.transfer_size)}"
            + (f", resuming at {format_file_size(task.bytes_transferred)})" if task.bytes_transferred else ")")
        )
        self._publish(task)

    def _on_progress(self, task: UploadTask, token: CancelToken, bytes_sent: int) -> None:
        if token.aborted or task.status != TaskStatus.UPLOADING:
            return
        now = self._clock()
        tracker = self._trackers[task.id]
        task.bytes_transferred = min(bytes_sent, task.transfer_size)
        tracker.add(now, task.bytes_transferred)
        task.speed = tracker.speed
        task.eta_seconds = tracker.eta(task.transfer_size, task.bytes_transferred)
        task.progress = max(task.progress, self._percent(task))
        self._publish(task)

    def _complete(self, task: UploadTask, url: str) -> None:
        task.status = TaskStatus.COMPLETE
        task.progress = 100
        task.bytes_transferred = task.transfer_size
        task.remote_location = url
        task.error = None
        task.speed = None
        task.eta_seconds = None
        task.run_started_at = None
        snapshot = task.snapshot()
        task.release()
        logger.info(f"Uploaded {task.filename} -> {url}")
        self._publish(task)

        link = asyncio.get_running_loop().create_task(self._linker.link(snapshot, on_warning=self._publish_warning))
        self._link_tasks.add(link)
        link.add_done_callback(self._link_tasks.discard)

    def _on_aborted(self, task: UploadTask, token: CancelToken) -> None:
        if task.id not in self._tasks:
            return
        task.bytes_transferred = task.session.acknowledged_bytes if task.session else 0
        task.run_started_at = None
        task.speed = None
        task.eta_seconds = None
        self._trackers[task.id].reset()
        if task.status.is_active:
            # Aborted before pause() could mark it, e.g. by close().
            task.status = TaskStatus.PAUSED
        logger.info(f"Stopped {task.filename} ({token.reason.value if token.reason else 'aborted'}), "
                    f"{format_file_size(task.bytes_transferred)} retained")
        self._publish(task)

    def _on_failed(self, task: UploadTask, exc: BaseException) -> None:
        if task.id not in self._tasks:
            return
        info = ErrorInfo.from_exception(exc)
        task.status = TaskStatus.ERROR
        task.error = info
        task.attempts += 1
        task.bytes_transferred = task.session.acknowledged_bytes if task.session else 0
        task.run_started_at = None
        task.speed = None
        task.eta_seconds = None
        if not info.retryable:
            task.release()
        logger.error(
            f"Upload failed for {task.filename} ({info.kind}, {'retryable' if info.retryable else 'fatal'}): {info.message}"
        )
        self._publish(task)

    def _evict(self, task: UploadTask, final_status: TaskStatus) -> None:
        token = self._tokens.get(task.id)
        if token:
            token.abort(AbortReason.CANCEL)
        self._tasks.pop(task.id, None)
        self._trackers.pop(task.id, None)
        self._evicted.add(task.id)
        if task.id not in self._running:
            task.release()
        self._events.emit_nowait("task", task.snapshot(final_status))
        self._publish_stats()

    # Publishing

    def _publish(self, task: UploadTask) -> None:
        self._events.emit_nowait("task", task.snapshot())
        self._publish_stats()

    def _publish_stats(self) -> None:
        if self._events.listener_count("stats"):
            self._events.emit_nowait("stats", self.stats())

    def _publish_warning(self, warning: LinkWarning) -> None:
        self._events.emit_nowait("warning", warning)
