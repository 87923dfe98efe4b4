"""Queue orchestration: scheduling and task runners."""
from .queue_manager import UploadQueue
from .scheduler import PendingQueue

__all__ = ["UploadQueue", "PendingQueue"]
