import random
from collections import defaultdict

import pytest

from scrabble_server.managers.coordinator import ConnectionCoordinator
from scrabble_server.managers.registry import SessionRegistry
from scrabble_server.persistence.memory import MemoryGateway


class FakeSocketIO:
    """Stands in for socketio.AsyncServer and records who received what."""

    def __init__(self):
        self.rooms = defaultdict(set)
        self.sent = []

    async def emit(self, event, data=None, to=None, room=None, **kwargs):
        recipients = {to} if to is not None else set(self.rooms.get(room, ()))
        self.sent.append((event, data, frozenset(recipients)))

    async def enter_room(self, sid, room, namespace=None):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms[room].discard(sid)

    def received(self, sid, event):
        return [data for name, data, recipients in self.sent if name == event and sid in recipients]

    def last(self, sid, event):
        items = self.received(sid, event)
        return items[-1] if items else None


class FastSettings:
    IDLE_EVICTION_SECONDS = 0.05
    DEFAULT_SESSION_ID = 'default-scrabble-game'


USERS = {
    'alice': {'nickname': 'Alice', 'elo': 1600, 'gamesPlayed': 10},
    'bob': {'nickname': 'Bob', 'elo': 1600, 'gamesPlayed': 10},
    'carol': {'nickname': 'Carol', 'elo': 1700, 'gamesPlayed': 80},
}


@pytest.fixture
def sio():
    return FakeSocketIO()


@pytest.fixture
def gateway():
    return MemoryGateway(users={k: dict(v) for k, v in USERS.items()})


@pytest.fixture
async def registry(sio, gateway):
    registry = SessionRegistry(sio, gateway, rng=random.Random(7))
    yield registry
    for session in registry:
        await session.writes.drain()
    await registry.close()


@pytest.fixture
def coordinator(sio, registry):
    return ConnectionCoordinator(sio, registry, FastSettings)


@pytest.fixture
def settle(registry):
    """Wait for every queued durable write of every live session."""
    async def _settle():
        for session in registry:
            await session.writes.drain()
    return _settle


@pytest.fixture
def join(coordinator):
    async def _join(sid, player_id, session_id='s1'):
        await coordinator.join(sid, {'sessionId': session_id, 'playerId': player_id})
    return _join


@pytest.fixture
def act(coordinator):
    async def _act(sid, kind, payload=None):
        await coordinator.player_action(sid, {'kind': kind, 'payload': payload})
    return _act
