"""Utilities for the upload queue."""
from .cancellation import AbortReason, CancelToken
from .events import EventEmitter

__all__ = ["AbortReason", "CancelToken", "EventEmitter"]
