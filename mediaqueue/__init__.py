"""
mediaqueue - concurrent media upload queue.

Accepts many files, compresses them, uploads them to object storage with
bounded concurrency and reports live progress, speed and ETA, with pause,
resume, cancel and retry.

Usage:
    from mediaqueue import UploadQueue, QueueConfig, SupabaseSettings
    from mediaqueue.services import (
        SupabaseClient, SupabaseStorage, SupabaseMetadataRepository,
    )

    settings = SupabaseSettings.from_env()
    async with SupabaseClient(settings) as client:
        storage = SupabaseStorage(client)
        metadata = SupabaseMetadataRepository(client)
        async with UploadQueue(storage, metadata, config=QueueConfig.from_env()) as queue:
            queue.on_stats(lambda stats: print(f"{stats.overall_progress}%"))
            queue.add_files(paths, owner_id=message_id)
            await queue.wait_for_completion()
"""
from .config import QueueConfig, SupabaseSettings, load_env_file
from .errors import (
    AuthorizationFailure,
    CompressionFailure,
    MetadataLinkFailure,
    TaskNotFoundError,
    TransferAborted,
    TransientNetworkFailure,
    UploadError,
    ValidationFailure,
)
from .models import (
    ErrorInfo,
    LinkWarning,
    Payload,
    QueueStats,
    SourceFile,
    TaskSnapshot,
    TaskStatus,
)
from .orchestrator import UploadQueue
from .protocols import PutOptions

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadQueue",
    "QueueConfig",
    "SupabaseSettings",
    "load_env_file",
    # Models
    "ErrorInfo",
    "LinkWarning",
    "Payload",
    "PutOptions",
    "QueueStats",
    "SourceFile",
    "TaskSnapshot",
    "TaskStatus",
    # Errors
    "UploadError",
    "ValidationFailure",
    "AuthorizationFailure",
    "TransientNetworkFailure",
    "CompressionFailure",
    "MetadataLinkFailure",
    "TransferAborted",
    "TaskNotFoundError",
]
