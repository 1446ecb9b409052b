from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

WriteFactory = Callable[[], Awaitable[object]]


class WriteQueue:
    """Applies one session's durable writes strictly in submission order.

    Callers snapshot whatever they write before submitting, so a slow write
    can never land after, and overwrite, a newer one. Failures are logged and
    the queue moves on: in-memory state stays authoritative.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._queue: asyncio.Queue[Tuple[str, WriteFactory, asyncio.Future]] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def submit(self, label: str, factory: WriteFactory) -> asyncio.Future:
        """Queue a write; the returned future resolves to True once it is stored."""
        done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((label, factory, done))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
        return done

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(self):
        """Wait until every write submitted so far has been attempted."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def _run(self):
        while not self._queue.empty():
            label, factory, done = self._queue.get_nowait()
            ok = False
            try:
                await factory()
                ok = True
            except PersistenceError as exc:
                logger.error("Session %s: %s not persisted: %s", self.session_id, label, exc.message)
            except Exception:
                logger.exception("Session %s: %s failed", self.session_id, label)
            if not done.done():
                done.set_result(ok)
