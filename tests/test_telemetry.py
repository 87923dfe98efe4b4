"""Tests for speed tracking and queue statistics."""
import pytest

from mediaqueue.models import TaskStatus, UploadTask
from mediaqueue.telemetry import SpeedTracker, compute_stats


def make_task(size, status=TaskStatus.PENDING, sent=0, transfer_size=None):
    task = UploadTask(source=None, owner_id="o", priority=0, sequence=0, filename="f.bin")
    task.original_size = size
    task.transfer_size = transfer_size if transfer_size is not None else size
    task.status = status
    task.bytes_transferred = sent
    return task


class TestSpeedTracker:
    def test_unknown_until_two_samples(self):
        tracker = SpeedTracker()
        assert tracker.speed is None
        tracker.add(0.0, 0)
        assert tracker.speed is None
        assert tracker.eta(100, 0) is None

    def test_speed_and_eta(self):
        tracker = SpeedTracker()
        tracker.add(0.0, 0)
        tracker.add(2.0, 1000)
        assert tracker.speed == 500
        assert tracker.eta(3000, 1000) == 4

    def test_window_drops_old_samples(self):
        tracker = SpeedTracker(window=2)
        tracker.add(0.0, 0)
        tracker.add(1.0, 100)
        tracker.add(2.0, 1100)
        assert tracker.speed == 1000

    def test_zero_speed_has_no_eta(self):
        tracker = SpeedTracker()
        tracker.add(0.0, 500)
        tracker.add(1.0, 500)
        assert tracker.speed == 0
        assert tracker.eta(1000, 500) is None

    def test_reset(self):
        tracker = SpeedTracker()
        tracker.add(0.0, 0)
        tracker.add(1.0, 10)
        tracker.reset()
        assert tracker.speed is None


class TestComputeStats:
    def test_empty_queue(self):
        stats = compute_stats([], now=10.0)
        assert stats.total_files == 0
        assert stats.overall_progress == 0
        assert stats.average_speed == 0
        assert stats.estimated_time_remaining is None

    def test_counts_by_status(self):
        tasks = [
            make_task(100, TaskStatus.COMPLETE, sent=100),
            make_task(100, TaskStatus.ERROR),
            make_task(100, TaskStatus.PENDING),
            make_task(100, TaskStatus.PAUSED, sent=40),
            make_task(100, TaskStatus.COMPRESSING),
            make_task(100, TaskStatus.UPLOADING, sent=10),
        ]
        stats = compute_stats(tasks, now=0.0)
        assert stats.total_files == 6
        assert stats.completed_files == 1
        assert stats.failed_files == 1
        assert stats.pending_files == 1
        assert stats.paused_files == 1
        assert stats.active_files == 2
        assert stats.uploaded_size == 150

    def test_progress_is_byte_weighted(self):
        tasks = [
            make_task(900, TaskStatus.COMPLETE, sent=900),
            make_task(100, TaskStatus.PENDING),
        ]
        assert compute_stats(tasks, now=0.0).overall_progress == 90

    def test_progress_uses_transfer_size(self):
        task = make_task(1000, TaskStatus.UPLOADING, sent=100, transfer_size=200)
        stats = compute_stats([task], now=0.0)
        assert stats.original_size == 1000
        assert stats.total_size == 200
        assert stats.overall_progress == 50

    def test_progress_rounds_down(self):
        task = make_task(1000, TaskStatus.UPLOADING, sent=999)
        assert compute_stats([task], now=0.0).overall_progress == 99

    def test_average_speed_from_current_runs(self):
        first = make_task(10_000, TaskStatus.UPLOADING, sent=3000)
        first.run_started_at = 0.0
        first.run_start_bytes = 1000
        second = make_task(10_000, TaskStatus.UPLOADING, sent=2000)
        second.run_started_at = 2.0
        paused = make_task(10_000, TaskStatus.PAUSED, sent=5000)

        stats = compute_stats([first, second, paused], now=4.0)

        assert stats.average_speed == pytest.approx(1000)
        assert stats.estimated_time_remaining == pytest.approx(20)

    def test_idle_queue_has_no_eta(self):
        stats = compute_stats([make_task(100, TaskStatus.PAUSED, sent=50)], now=5.0)
        assert stats.average_speed == 0
        assert stats.estimated_time_remaining is None
