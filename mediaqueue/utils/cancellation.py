"""Cooperative cancellation for in-flight transfers."""
from enum import Enum
from typing import Awaitable, Optional, TypeVar
import asyncio

from ..errors import TransferAborted

T = TypeVar("T")


class AbortReason(Enum):
    PAUSE = "pause"
    CANCEL = "cancel"


class CancelToken:
    """
    One token per task run.

    The queue aborts it on pause or cancel; the worker checks it at every
    suspension point and raises TransferAborted there.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[AbortReason] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: AbortReason) -> None:
        """Request the run to stop. The first reason wins."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise TransferAborted(self.reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds, waking early with TransferAborted on abort."""
        self.raise_if_aborted()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise TransferAborted(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await the operation unless the token is aborted first.

        On abort the operation is cancelled and TransferAborted is raised.
        A result that arrives together with the abort is still returned.
        """
        self.raise_if_aborted()
        operation = asyncio.ensure_future(awaitable)
        aborted = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({operation, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            aborted.cancel()

        if operation in done:
            return operation.result()

        operation.cancel()
        await asyncio.gather(operation, return_exceptions=True)
        raise TransferAborted(self.reason)
