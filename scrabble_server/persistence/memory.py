from __future__ import annotations
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..constants import DEFAULT_RATING
from ..schemas import ChatMessage, GameState, Identity, TurnRecord
from . import serializers
from .gateway import PersistenceGateway, Roster

logger = logging.getLogger(__name__)


class MemoryGateway(PersistenceGateway):
    """Process-local store used when no Firestore project is configured.

    Documents go through the same serializers as the Firestore gateway, so
    what comes back out is a fresh copy and never aliases live state.
    """

    def __init__(self, users: Optional[Dict[str, dict]] = None):
        self.states: Dict[str, dict] = {}
        self.rosters: Dict[str, dict] = {}
        self.chats: Dict[str, List[dict]] = defaultdict(list)
        self.turns: Dict[str, List[dict]] = defaultdict(list)
        # player_id -> {'nickname', 'elo', 'gamesPlayed'}
        self.users: Dict[str, dict] = dict(users or {})

    async def load_session(self, session_id: str) -> Optional[GameState]:
        doc = self.states.get(session_id)
        return serializers.game_state_from_document(doc) if doc else None

    async def save_session(self, session_id: str, state: GameState) -> None:
        self.states[session_id] = serializers.game_state_to_document(state)

    async def delete_session(self, session_id: str) -> None:
        self.states.pop(session_id, None)
        self.chats.pop(session_id, None)
        self.rosters.pop(session_id, None)
        logger.info("Purged stored state for session %s", session_id)

    async def load_roster(self, session_id: str) -> Optional[Roster]:
        doc = self.rosters.get(session_id)
        return serializers.roster_from_document(doc) if doc else None

    async def save_roster(self, session_id: str, seats: Roster) -> None:
        self.rosters[session_id] = serializers.roster_to_document(seats)

    async def append_chat_message(self, session_id: str, message: ChatMessage) -> None:
        self.chats[session_id].append(serializers.chat_to_document(message))

    async def load_chat_history(self, session_id: str) -> List[ChatMessage]:
        docs = sorted(self.chats.get(session_id, []), key=lambda d: d['timestamp'])
        return [serializers.chat_from_document(d) for d in docs]

    async def append_turn_log(self, session_id: str, record: TurnRecord) -> None:
        self.turns[session_id].append(serializers.turn_record_to_document(record))

    async def mark_chat_seen(self, session_id: str, seat_index: int) -> int:
        key = str(seat_index)
        changed = 0
        for doc in self.chats.get(session_id, []):
            if doc['seen'].get(key) is False:
                doc['seen'][key] = True
                changed += 1
        return changed

    async def load_identity(self, player_id: str) -> Identity:
        user = self.users.get(player_id) or {}
        return Identity(
            displayName=user.get('nickname') or player_id,
            rating=user.get('elo', DEFAULT_RATING),
            gamesPlayed=user.get('gamesPlayed', 0),
        )

    async def record_rating(self, player_id: str, rating: int) -> None:
        user = self.users.setdefault(player_id, {})
        user['elo'] = rating
        user['gamesPlayed'] = user.get('gamesPlayed', 0) + 1
