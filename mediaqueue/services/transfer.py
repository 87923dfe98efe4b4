"""
Transfer Worker - Single Responsibility: move one payload into object storage.

Two paths:
- whole object: one streamed put_object per attempt; an abort discards the
  attempt and the next run starts from byte 0.
- partial: the payload is cut into chunk_size parts, each acknowledged by the
  backend and recorded in the TransferSession; an abort keeps every
  acknowledged part and the next run continues after the last one.

Transient failures are retried inside the worker with exponential backoff;
the task only sees them once the attempt budget is spent.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional
import asyncio
import logging
import time

from ..config import QueueConfig
from ..errors import TransientNetworkFailure
from ..models import Payload
from ..protocols import IPartialStorageBackend, IStorageBackend, PutOptions
from ..utils.cancellation import CancelToken
from ..utils.hashing import blake3_file
logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]
KeyFactory = Callable[[str, Payload], Awaitable[str]]


@dataclass
class TransferSession:
    """What the backend has acknowledged for one destination key."""
    key: str
    part_size: int
    total_size: int
    partial: bool = False
    acknowledged_parts: int = 0
    complete: bool = False
    put_attempts: int = 0

    @property
    def part_count(self) -> int:
        return max(1, -(-self.total_size // self.part_size))

    @property
    def acknowledged_bytes(self) -> int:
        if self.complete:
            return self.total_size
        if not self.partial:
            return 0
        return min(self.acknowledged_parts * self.part_size, self.total_size)


class ProgressReporter:
    """
    Forwards bytes-sent values to a callback.

    Values are strictly increasing and reports are spaced at least
    `interval` seconds apart unless forced.
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        interval: float,
        start: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last_value = start
        self._last_time: Optional[float] = None
        self._unreported: Optional[int] = None

    @property
    def last_value(self) -> int:
        return self._last_value

    async def report(self, bytes_sent: int, force: bool = False) -> None:
        if bytes_sent <= self._last_value:
            return
        now = self._clock()
        if not force and self._last_time is not None and now - self._last_time < self._interval:
            self._unreported = bytes_sent
            return
        await self._send(bytes_sent, now)

    async def flush(self) -> None:
        if self._unreported is not None and self._unreported > self._last_value:
            await self._send(self._unreported, self._clock())

    async def _send(self, bytes_sent: int, now: float) -> None:
        self._last_value = bytes_sent
        self._last_time = now
        self._unreported = None
        if self._callback is not None:
            await self._callback(bytes_sent)


async def default_key_name(owner_id: str, payload: Payload) -> str:
    """Key as owner_id/{epoch_ms}-{blake3[:16]}{ext}."""
    digest = await blake3_file(payload.path)
    return f"{owner_id}/{int(time.time() * 1000)}-{digest[:16]}{payload.path.suffix.lower()}"


class TransferWorker:
    """
    Executes resumable transfers against an IStorageBackend.

    Usage:
        worker = TransferWorker(storage, config)
        key = await worker.build_key(owner_id, payload)
        session = worker.new_session(key, payload)
        url = await worker.transfer(payload, session, on_progress, token)
    """

    def __init__(
        self,
        storage: IStorageBackend,
        config: Optional[QueueConfig] = None,
        key_factory: Optional[KeyFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._storage = storage
        self._config = config or QueueConfig()
        self._key_factory = key_factory or default_key_name
        self._clock = clock

    @property
    def storage(self) -> IStorageBackend:
        return self._storage

    async def build_key(self, owner_id: str, payload: Payload) -> str:
        return await self._key_factory(owner_id, payload)

    def supports_partial(self, payload: Payload) -> bool:
        return isinstance(self._storage, IPartialStorageBackend) and payload.size > self._config.chunk_size

    def new_session(self, key: str, payload: Payload) -> TransferSession:
        return TransferSession(
            key=key,
            part_size=self._config.chunk_size,
            total_size=payload.size,
            partial=self.supports_partial(payload),
        )

    def _put_options(self, payload: Payload, upsert: Optional[bool] = None) -> PutOptions:
        return PutOptions(
            cache_control=self._config.cache_control,
            upsert=self._config.upsert if upsert is None else upsert,
            content_type=payload.media_type,
        )

    def _final_put_options(self, payload: Payload, session: TransferSession) -> PutOptions:
        # The key belongs to this task. A previous attempt, in this run or an
        # earlier one, may have stored the object before its response was lost.
        upsert = True if session.put_attempts else None
        session.put_attempts += 1
        return self._put_options(payload, upsert=upsert)

    async def transfer(
        self,
        payload: Payload,
        session: TransferSession,
        on_progress: Optional[ProgressCallback],
        token: CancelToken,
    ) -> str:
        """
        Transfer the payload to session.key and return its public URL.

        Raises:
            TransferAborted: pause or cancel requested
            TransientNetworkFailure: retry budget spent
            ValidationFailure / AuthorizationFailure: fatal backend refusal
        """
        reporter = ProgressReporter(
            on_progress,
            self._config.progress_interval,
            start=session.acknowledged_bytes,
            clock=self._clock,
        )

        if not session.complete:
            if session.partial:
                await self._transfer_parts(payload, session, reporter, token)
            else:
                await self._transfer_whole(payload, session, reporter, token)
            session.complete = True

        await reporter.report(payload.size, force=True)
        return self._storage.get_public_url(session.key)

    async def _transfer_whole(
        self,
        payload: Payload,
        session: TransferSession,
        reporter: ProgressReporter,
        token: CancelToken,
    ) -> None:
        def attempt():
            content = self._stream(payload.path, reporter, token)
            options = self._final_put_options(payload, session)
            return self._storage.put_object(session.key, content, payload.size, options)

        await self._with_retries(attempt, token, f"put {session.key}")

    async def _transfer_parts(
        self,
        payload: Payload,
        session: TransferSession,
        reporter: ProgressReporter,
        token: CancelToken,
    ) -> None:
        # Parts are overwritten on retry, so they are always upserted.
        options = self._put_options(payload, upsert=True)
        if session.acknowledged_parts:
            logger.info(
                f"Resuming {session.key}: {session.acknowledged_parts}/{session.part_count} parts already stored"
            )

        for index in range(session.acknowledged_parts, session.part_count):
            token.raise_if_aborted()
            offset = index * session.part_size
            data = await token.guard(asyncio.to_thread(_read_range, payload.path, offset, session.part_size))

            def attempt(index=index, data=data):
                return self._storage.put_part(session.key, index, data, options)

            await self._with_retries(attempt, token, f"part {index} of {session.key}")
            session.acknowledged_parts = index + 1
            await reporter.report(session.acknowledged_bytes, force=True)

        await self._with_retries(
            lambda: self._storage.complete_parts(
                session.key, session.part_count, self._final_put_options(payload, session)
            ),
            token,
            f"assemble {session.key}",
        )

    async def _stream(self, path: Path, reporter: ProgressReporter, token: CancelToken) -> AsyncIterator[bytes]:
        """Yield the file in read_size chunks, checking the token between chunks."""
        sent = 0
        with open(path, "rb") as f:
            while True:
                token.raise_if_aborted()
                chunk = await asyncio.to_thread(f.read, self._config.read_size)
                if not chunk:
                    break
                yield chunk
                sent += len(chunk)
                await reporter.report(sent)
        await reporter.flush()

    async def _with_retries(self, attempt: Callable[[], Awaitable[None]], token: CancelToken, what: str) -> None:
        max_attempts = self._config.max_attempts
        last_error: Optional[TransientNetworkFailure] = None

        for number in range(1, max_attempts + 1):
            token.raise_if_aborted()
            try:
                await token.guard(asyncio.wait_for(attempt(), timeout=self._config.attempt_timeout))
                return
            except asyncio.TimeoutError as e:
                last_error = TransientNetworkFailure(
                    f"{what} timed out after {self._config.attempt_timeout}s", cause=e
                )
            except TransientNetworkFailure as e:
                last_error = e

            if number < max_attempts:
                delay = self._config.backoff_delay(number)
                logger.warning(
                    f"{what} failed ({last_error.message}), retrying in {delay:.1f}s ({number}/{max_attempts})"
                )
                await token.sleep(delay)

        raise TransientNetworkFailure(
            f"{what} failed after {max_attempts} attempts: {last_error.message}",
            cause=last_error,
            attempts=max_attempts,
        ) from last_error


def _read_range(path: Path, offset: int, size: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(offset)
        return f.read(size)
