from __future__ import annotations
import asyncio
import logging
from typing import Callable, List, Optional, TypeVar

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import Client as FirestoreClient

from ..constants import DEFAULT_RATING
from ..errors import PersistenceError
from ..schemas import ChatMessage, GameState, Identity, TurnRecord
from . import serializers
from .gateway import PersistenceGateway, Roster

logger = logging.getLogger(__name__)

T = TypeVar('T')

GAMES_COLLECTION = 'scrabbleGames'
USERS_COLLECTION = 'users'
# Firestore caps a write batch at 500 operations
BATCH_LIMIT = 500


class FirestoreGateway(PersistenceGateway):
    """Firestore-backed store.

    Layout under scrabbleGames/{session_id}: gameStates/state,
    players/data, chatMessages/{message_id} and turns/{auto_id}.
    Identities live in users/{player_id}. The admin client is blocking, so
    every call runs in a worker thread.
    """

    def __init__(self, db: FirestoreClient):
        self.db = db

    def _game(self, session_id: str):
        return self.db.collection(GAMES_COLLECTION).document(session_id)

    def _state_ref(self, session_id: str):
        return self._game(session_id).collection('gameStates').document('state')

    def _roster_ref(self, session_id: str):
        return self._game(session_id).collection('players').document('data')

    def _chat(self, session_id: str):
        return self._game(session_id).collection('chatMessages')

    async def _run(self, what: str, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"{what} failed: {exc}") from exc

    async def load_session(self, session_id: str) -> Optional[GameState]:
        snap = await self._run('load_session', self._state_ref(session_id).get)
        if not snap.exists:
            return None
        return serializers.game_state_from_document(snap.to_dict())

    async def save_session(self, session_id: str, state: GameState) -> None:
        doc = serializers.game_state_to_document(state)
        await self._run('save_session', self._state_ref(session_id).set, doc)

    async def delete_session(self, session_id: str) -> None:
        await self._run('delete_session', self._purge, session_id)
        logger.info("Purged Firestore state, chat and roster for session %s", session_id)

    def _purge(self, session_id: str) -> None:
        self._state_ref(session_id).delete()
        batch = self.db.batch()
        pending = 0
        for doc in self._chat(session_id).stream():
            batch.delete(doc.reference)
            pending += 1
            if pending == BATCH_LIMIT:
                batch.commit()
                batch = self.db.batch()
                pending = 0
        if pending:
            batch.commit()
        self._roster_ref(session_id).delete()

    async def load_roster(self, session_id: str) -> Optional[Roster]:
        snap = await self._run('load_roster', self._roster_ref(session_id).get)
        if not snap.exists:
            return None
        return serializers.roster_from_document(snap.to_dict())

    async def save_roster(self, session_id: str, seats: Roster) -> None:
        doc = serializers.roster_to_document(seats)
        await self._run('save_roster', self._roster_ref(session_id).set, doc)

    async def append_chat_message(self, session_id: str, message: ChatMessage) -> None:
        ref = self._chat(session_id).document(message.id)
        await self._run('append_chat_message', ref.set, serializers.chat_to_document(message))

    async def load_chat_history(self, session_id: str) -> List[ChatMessage]:
        def fetch():
            query = self._chat(session_id).order_by('timestamp')
            return [doc.to_dict() for doc in query.stream()]

        docs = await self._run('load_chat_history', fetch)
        return [serializers.chat_from_document(d) for d in docs]

    async def append_turn_log(self, session_id: str, record: TurnRecord) -> None:
        turns = self._game(session_id).collection('turns')
        await self._run('append_turn_log', turns.add, serializers.turn_record_to_document(record))

    async def mark_chat_seen(self, session_id: str, seat_index: int) -> int:
        return await self._run('mark_chat_seen', self._mark_seen, session_id, str(seat_index))

    def _mark_seen(self, session_id: str, key: str) -> int:
        batch = self.db.batch()
        pending = changed = 0
        for doc in self._chat(session_id).stream():
            seen = (doc.to_dict() or {}).get('seen') or {}
            if seen.get(key) is not False:
                continue
            seen[key] = True
            batch.update(doc.reference, {'seen': seen})
            pending += 1
            changed += 1
            if pending == BATCH_LIMIT:
                batch.commit()
                batch = self.db.batch()
                pending = 0
        if pending:
            batch.commit()
        return changed

    async def load_identity(self, player_id: str) -> Identity:
        ref = self.db.collection(USERS_COLLECTION).document(player_id)
        snap = await self._run('load_identity', ref.get)
        data = (snap.to_dict() if snap.exists else None) or {}
        return Identity(
            displayName=data.get('nickname') or player_id,
            rating=data.get('elo', DEFAULT_RATING),
            gamesPlayed=data.get('gamesPlayed', 0),
        )

    async def record_rating(self, player_id: str, rating: int) -> None:
        ref = self.db.collection(USERS_COLLECTION).document(player_id)
        update = {'elo': rating, 'gamesPlayed': firestore.Increment(1)}
        await self._run('record_rating', ref.set, update, merge=True)
