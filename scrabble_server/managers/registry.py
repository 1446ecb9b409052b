from __future__ import annotations
import asyncio
import logging
from typing import Dict, Iterator, Optional

from ..persistence.gateway import PersistenceGateway
from .session import SessionInstance
from .timer import EvictionTimer

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live session of this process and their idle eviction.

    Lookup, creation, cancellation and eviction are all synchronous, so a
    join and an expiring timer can never interleave halfway.
    """

    def __init__(self, sio, gateway: PersistenceGateway, rng=None):
        self.sio = sio
        self.gateway = gateway
        self.rng = rng
        self.timer = EvictionTimer(on_expire=self._evict)
        self._sessions: Dict[str, SessionInstance] = {}
        self._purges: Dict[str, asyncio.Task] = {}

    def get(self, session_id: str) -> Optional[SessionInstance]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> SessionInstance:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionInstance(session_id, self.sio, self.gateway, rng=self.rng)
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id)
        return session

    def count(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[SessionInstance]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def schedule_eviction(self, session_id: str, after: float):
        if session_id in self._sessions:
            self.timer.schedule(session_id, after)

    def cancel_eviction(self, session_id: str) -> bool:
        return self.timer.cancel(session_id)

    async def wait_for_purge(self, session_id: str):
        """Block until a purge of an evicted session with this id has finished."""
        task = self._purges.get(session_id)
        if task is not None:
            await asyncio.shield(task)

    async def close(self):
        self.timer.cancel_all()
        if self._purges:
            await asyncio.gather(*self._purges.values(), return_exceptions=True)

    def _evict(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.attached_count or session.pending_joins:
            logger.info("Session %s is in use again; eviction skipped", session_id)
            return
        del self._sessions[session_id]
        logger.info("Session %s evicted from memory after inactivity", session_id)
        self._purges[session_id] = asyncio.create_task(self._purge(session))

    async def _purge(self, session: SessionInstance):
        try:
            # queued behind the session's own writes so nothing lands after the delete
            await session.writes.submit('purge', lambda: self.gateway.delete_session(session.id))
        finally:
            if self._purges.get(session.id) is asyncio.current_task():
                del self._purges[session.id]
