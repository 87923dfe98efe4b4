"""
Telemetry: per-task speed samples and queue-wide statistics.

compute_stats is recomputed from scratch on every event so pause, resume,
cancel and retry can never leave partial increments behind.
"""
from collections import deque
from typing import Deque, Iterable, Optional, Tuple

from .models import QueueStats, TaskStatus, UploadTask


class SpeedTracker:
    """Sliding window of (timestamp, bytes_sent) samples for one task run."""

    def __init__(self, window: int = 5):
        self._samples: Deque[Tuple[float, int]] = deque(maxlen=window)

    def reset(self) -> None:
        self._samples.clear()

    def add(self, timestamp: float, bytes_sent: int) -> None:
        self._samples.append((timestamp, bytes_sent))

    @property
    def speed(self) -> Optional[float]:
        """Bytes per second over the window, None until it can be measured."""
        if len(self._samples) < 2:
            return None
        (t0, b0), (t1, b1) = self._samples[0], self._samples[-1]
        elapsed = t1 - t0
        if elapsed <= 0:
            return None
        return (b1 - b0) / elapsed

    def eta(self, total_bytes: int, bytes_sent: int) -> Optional[float]:
        """Seconds remaining; None when speed is unknown or not positive."""
        speed = self.speed
        if speed is None or speed <= 0:
            return None
        return max(total_bytes - bytes_sent, 0) / speed


def compute_stats(tasks: Iterable[UploadTask], now: float) -> QueueStats:
    """
    Fold the task collection into QueueStats.

    Overall progress is bytes uploaded over total bytes, not a mean of
    percentages. Average speed is the bytes moved by every uploading task in
    its current run divided by the time since the oldest of those runs began.
    """
    total_files = completed = failed = active = pending = paused = 0
    original_size = total_size = uploaded_size = 0
    moved = 0
    oldest_start: Optional[float] = None

    for task in tasks:
        total_files += 1
        original_size += task.original_size
        total_size += task.transfer_size
        uploaded_size += task.bytes_transferred

        status = task.status
        if status == TaskStatus.COMPLETE:
            completed += 1
        elif status == TaskStatus.ERROR:
            failed += 1
        elif status == TaskStatus.PENDING:
            pending += 1
        elif status == TaskStatus.PAUSED:
            paused += 1
        elif status.is_active:
            active += 1

        if status == TaskStatus.UPLOADING and task.run_started_at is not None:
            moved += max(task.bytes_transferred - task.run_start_bytes, 0)
            if oldest_start is None or task.run_started_at < oldest_start:
                oldest_start = task.run_started_at

    average_speed = 0.0
    if oldest_start is not None and now > oldest_start:
        average_speed = moved / (now - oldest_start)

    remaining = max(total_size - uploaded_size, 0)
    eta = remaining / average_speed if average_speed > 0 else None
    overall = uploaded_size * 100 // total_size if total_size > 0 else 0

    return QueueStats(
        total_files=total_files,
        completed_files=completed,
        failed_files=failed,
        active_files=active,
        pending_files=pending,
        paused_files=paused,
        original_size=original_size,
        total_size=total_size,
        uploaded_size=uploaded_size,
        overall_progress=overall,
        average_speed=average_speed,
        estimated_time_remaining=eta,
    )
