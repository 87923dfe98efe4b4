"""
Models for the upload queue.

Snapshots handed to callers are frozen dataclasses; the mutable UploadTask
never leaves the queue.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union
import mimetypes
import uuid

from .errors import UploadError


class TaskStatus(Enum):
    """Upload task status."""
    PENDING = "pending"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"  # only carried by the final event of an evicted task

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.COMPRESSING, TaskStatus.UPLOADING)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.ERROR, TaskStatus.CANCELLED)


@dataclass(frozen=True)
class ErrorInfo:
    """Why a task ended in error, and whether retry_failed may re-admit it."""
    message: str
    kind: str
    retryable: bool

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        if isinstance(exc, UploadError):
            return cls(message=exc.message, kind=exc.kind, retryable=exc.retryable)
        return cls(message=str(exc) or type(exc).__name__, kind="unexpected", retryable=False)


def media_kind(media_type: str) -> str:
    """'image' for image/* types, 'video' for everything else."""
    return "image" if media_type.startswith("image/") else "video"


@dataclass(frozen=True)
class SourceFile:
    """A user-selected local file."""
    path: Path
    media_type: str
    size: int

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def kind(self) -> str:
        return media_kind(self.media_type)

    @classmethod
    def from_path(cls, path: Union[str, Path], media_type: Optional[str] = None) -> "SourceFile":
        path = Path(path)
        if media_type is None:
            media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(path=path, media_type=media_type, size=path.stat().st_size)


@dataclass(frozen=True)
class Payload:
    """The bytes actually sent: the source itself or a compressed copy."""
    path: Path
    media_type: str
    size: int
    temporary: bool = False

    @classmethod
    def from_source(cls, source: SourceFile) -> "Payload":
        return cls(path=source.path, media_type=source.media_type, size=source.size)

    def discard(self) -> None:
        """Delete the file if it is a temporary copy."""
        if self.temporary:
            self.path.unlink(missing_ok=True)


@dataclass
class UploadTask:
    """Mutable lifecycle record for one file. Owned by UploadQueue."""
    source: Optional[SourceFile]
    owner_id: str
    priority: int
    sequence: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    filename: str = ""
    media_type: str = "application/octet-stream"
    original_size: int = 0
    transfer_size: int = 0
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    bytes_transferred: int = 0
    base_priority: int = 0
    payload: Optional[Payload] = None
    storage_key: Optional[str] = None
    session: Optional[object] = None  # TransferSession, kept across pause/resume
    remote_location: Optional[str] = None
    error: Optional[ErrorInfo] = None
    speed: Optional[float] = None
    eta_seconds: Optional[float] = None
    attempts: int = 0
    run_started_at: Optional[float] = None
    run_start_bytes: int = 0

    def __post_init__(self):
        if self.source is not None:
            self.filename = self.filename or self.source.filename
            self.media_type = self.source.media_type
            self.original_size = self.source.size
            self.transfer_size = self.transfer_size or self.source.size
        self.base_priority = self.priority

    def release(self) -> None:
        """Drop the source reference and any temporary payload."""
        if self.payload is not None:
            self.payload.discard()
            self.payload = None
        self.source = None
        self.session = None

    def snapshot(self, status: Optional[TaskStatus] = None) -> "TaskSnapshot":
        return TaskSnapshot(
            task_id=self.id,
            filename=self.filename,
            owner_id=self.owner_id,
            media_type=self.media_type,
            status=status or self.status,
            progress=self.progress,
            priority=self.priority,
            original_size=self.original_size,
            transfer_size=self.transfer_size,
            bytes_transferred=self.bytes_transferred,
            storage_key=self.storage_key,
            remote_location=self.remote_location,
            error=self.error,
            speed=self.speed,
            eta_seconds=self.eta_seconds,
        )


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable view of a task, also the per-task event payload."""
    task_id: str
    filename: str
    owner_id: str
    media_type: str
    status: TaskStatus
    progress: int
    priority: int
    original_size: int
    transfer_size: int
    bytes_transferred: int
    storage_key: Optional[str] = None
    remote_location: Optional[str] = None
    error: Optional[ErrorInfo] = None
    speed: Optional[float] = None
    eta_seconds: Optional[float] = None

    @property
    def media_kind(self) -> str:
        return media_kind(self.media_type)


@dataclass(frozen=True)
class QueueStats:
    """Queue-wide aggregate, derived from the task collection."""
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    active_files: int = 0
    pending_files: int = 0
    paused_files: int = 0
    original_size: int = 0
    total_size: int = 0
    uploaded_size: int = 0
    overall_progress: int = 0
    average_speed: float = 0.0
    estimated_time_remaining: Optional[float] = None


@dataclass(frozen=True)
class LinkWarning:
    """Published when an uploaded object could not be linked to its owner."""
    task_id: str
    owner_id: str
    storage_key: str
    url: str
    message: str


def format_file_size(size: int) -> str:
    """Human readable size for log lines."""
    value = float(max(size, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while value >= 1024.0 and unit_idx < len(units) - 1:
        value /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(value)} {units[unit_idx]}"
    return f"{value:.2f} {units[unit_idx]}"
