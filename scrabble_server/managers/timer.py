from __future__ import annotations
import asyncio
import logging
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class EvictionTimer:
    """One cancellable countdown per session id.

    `on_expire` runs synchronously on the event loop once the delay has
    elapsed, so a cancel issued before it runs always wins.
    """

    def __init__(self, on_expire: Callable[[str], None]):
        self._on_expire = on_expire
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, session_id: str, delay: float):
        # rescheduling replaces the outstanding countdown
        self.cancel(session_id)
        self._tasks[session_id] = asyncio.create_task(self._run(session_id, delay))
        logger.info("Session %s will be evicted in %ss unless someone joins", session_id, delay)

    def cancel(self, session_id: str) -> bool:
        task = self._tasks.pop(session_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Eviction of session %s cancelled", session_id)
        return True

    def pending(self, session_id: str) -> bool:
        return session_id in self._tasks

    def cancel_all(self):
        for session_id in list(self._tasks):
            self.cancel(session_id)

    async def _run(self, session_id: str, delay: float):
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._tasks.pop(session_id, None)
        self._on_expire(session_id)
