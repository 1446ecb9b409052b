from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..config import Settings
from ..errors import GameError, InvalidActionError, NotFoundError, PersistenceError
from ..schemas import Identity, JoinRequest, MarkSeenRequest, PlayerAction
from .registry import SessionRegistry
from .session import SessionInstance

logger = logging.getLogger(__name__)


@dataclass
class ConnectionHandle:
    sid: str
    session_id: str
    player_id: str
    # None for spectators
    seat_index: Optional[int] = None
    # set once the join has seated (or admitted) the connection
    joined: bool = False
    # set when the connection goes away, possibly while its join is still running
    closed: bool = False


class ConnectionCoordinator:
    """Translates socket events into registry and session operations."""

    def __init__(self, sio, registry: SessionRegistry, settings=Settings):
        self.sio = sio
        self.registry = registry
        self.gateway = registry.gateway
        self.idle_eviction_seconds = settings.IDLE_EVICTION_SECONDS
        self.default_session_id = settings.DEFAULT_SESSION_ID
        self.handles: Dict[str, ConnectionHandle] = {}

    async def join(self, sid: str, data: Any):
        try:
            request = JoinRequest.model_validate(data or {})
        except ValidationError:
            await self._error(sid, 'Malformed join request.')
            return
        if not request.playerId:
            logger.warning("Client %s tried to join without a player id", sid)
            await self._error(sid, 'A player id is required to join a game.')
            return

        session_id = request.sessionId or self.default_session_id
        # registered before the first await so a disconnect can always find it
        handle = ConnectionHandle(sid, session_id, request.playerId)
        previous = self.handles.get(sid)
        self.handles[sid] = handle
        if previous is not None:
            previous.closed = True
            await self._leave(sid, previous)
        if handle.closed:
            return

        # lookup and cancel happen before the next await, so an eviction
        # can no longer fire for this session
        session = self.registry.get_or_create(session_id)
        self.registry.cancel_eviction(session_id)
        session.pending_joins += 1
        try:
            await self._join(handle, session)
        finally:
            session.pending_joins -= 1
        if handle.closed:
            await self._abandon(handle, session)

    async def _join(self, handle: ConnectionHandle, session: SessionInstance):
        sid = handle.sid
        await self.registry.wait_for_purge(session.id)
        await self.sio.enter_room(sid, session.id)
        identity = await self._identity(handle.player_id)

        async with session.lock:
            if handle.closed:
                logger.info("Client %s went away before joining %s", sid, session.id)
                return
            await session.load()
            handle.seat_index = session.seat_player(sid, handle.player_id, identity)
            handle.joined = True
            seat_index = handle.seat_index
            self.registry.cancel_eviction(session.id)

            session.ensure_game()
            session.freeze_ratings()
            session.persist_roster()

            await self.sio.emit('playerAssigned', seat_index, to=sid)
            await session.broadcast_state()
            await session.broadcast_chat_history()
            if session.connected_count < 2:
                logger.info("Session %s: waiting for players (%d connected)", session.id, session.connected_count)
                await session.broadcast_waiting()

    async def _identity(self, player_id: str) -> Identity:
        try:
            return await self.gateway.load_identity(player_id)
        except PersistenceError as exc:
            logger.error("Identity lookup for %s failed: %s", player_id, exc.message)
            return Identity(displayName=player_id)

    async def player_action(self, sid: str, data: Any):
        try:
            handle, session = self._resolve(sid)
            try:
                action = PlayerAction.model_validate(data)
            except ValidationError as exc:
                raise InvalidActionError('Malformed action.') from exc
            async with session.lock:
                await session.handle_action(handle.seat_index, handle.player_id, action)
        except GameError as exc:
            logger.warning("Action from %s rejected: %s", sid, exc.message)
            await self._error(sid, exc.message)

    async def mark_messages_seen(self, sid: str, data: Any):
        try:
            handle, session = self._resolve(sid)
            try:
                request = MarkSeenRequest.model_validate(data)
            except ValidationError as exc:
                raise InvalidActionError('Malformed read receipt.') from exc
            if request.sessionId and request.sessionId != session.id:
                raise InvalidActionError('You are not part of that game.')
            if handle.seat_index != request.seatIndex:
                raise InvalidActionError('You can only mark your own messages as seen.')
            async with session.lock:
                await session.mark_messages_seen(request.seatIndex)
        except GameError as exc:
            logger.warning("Read receipt from %s rejected: %s", sid, exc.message)
            await self._error(sid, exc.message)

    async def disconnect(self, sid: str):
        handle = self.handles.pop(sid, None)
        if handle is None:
            logger.info("Client %s disconnected without joining a game", sid)
            return
        handle.closed = True
        await self._leave(sid, handle)

    async def _abandon(self, handle: ConnectionHandle, session: SessionInstance):
        """Undo a join whose connection closed before it finished."""
        current = self.handles.get(handle.sid)
        if current is None or current.session_id != session.id:
            await self.sio.leave_room(handle.sid, session.id)
        if session.attached_count == 0 and self.registry.get(session.id) is session:
            self.registry.schedule_eviction(session.id, self.idle_eviction_seconds)

    async def _leave(self, sid: str, handle: ConnectionHandle):
        await self.sio.leave_room(sid, handle.session_id)
        session = self.registry.get(handle.session_id)
        if session is None:
            return

        async with session.lock:
            seat_index = session.detach(sid)
            if seat_index is not None:
                logger.info("Session %s: player %d (%s) disconnected", session.id, seat_index + 1, handle.player_id)
                session.persist_roster()

        if session.attached_count == 0:
            self.registry.schedule_eviction(session.id, self.idle_eviction_seconds)
        elif session.connected_count == 1:
            await session.broadcast_waiting()

    def _resolve(self, sid: str):
        handle = self.handles.get(sid)
        if handle is None:
            raise NotFoundError('You are not connected to any game.')
        if not handle.joined:
            raise NotFoundError('You have not finished joining the game yet.')
        session = self.registry.get(handle.session_id)
        if session is None:
            raise NotFoundError('This game no longer exists.')
        return handle, session

    async def _error(self, sid: str, message: str):
        await self.sio.emit('gameError', message, to=sid)
