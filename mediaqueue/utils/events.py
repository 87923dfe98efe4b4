from typing import Any, Callable, Dict, List
import asyncio
import logging
logger = logging.getLogger(__name__)


class EventEmitter:
    """Simple event emitter for queue events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._pending: set = set()

    def on(self, event_name: str, callback: Callable) -> Callable[[], None]:
        """Subscribe to an event. Returns a function that unsubscribes."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)
        return lambda: self.off(event_name, callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, []))

    async def emit(self, event_name: str, *args: Any, **kwargs: Any):
        """Emit an event to all listeners, awaiting coroutine listeners."""
        for callback in self._listeners.get(event_name, [])[:]:  # Copy list to avoid modification during iteration
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(*args, **kwargs)
                else:
                    callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")

    def emit_nowait(self, event_name: str, *args: Any, **kwargs: Any):
        """
        Emit without blocking the caller.

        Plain callbacks run immediately, in subscription order; coroutine
        callbacks are scheduled on the running loop in the same order.
        """
        for callback in self._listeners.get(event_name, [])[:]:
            if asyncio.iscoroutinefunction(callback):
                task = asyncio.get_running_loop().create_task(
                    self._run_async_listener(event_name, callback, *args, **kwargs)
                )
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
                continue
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}")

    async def drain(self):
        """Wait for scheduled coroutine listeners to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _run_async_listener(self, event_name: str, callback: Callable, *args: Any, **kwargs: Any):
        try:
            await callback(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in event listener for {event_name}: {e}")
