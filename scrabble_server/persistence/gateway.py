from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional

from ..schemas import ChatMessage, GameState, Identity, Seat, TurnRecord

Roster = List[Optional[Seat]]


class PersistenceGateway(ABC):
    """Durable storage for sessions, rosters, chat, turn logs and identities.

    Implementations raise PersistenceError when the store cannot be reached
    or rejects a write. Every method is a suspension point.
    """

    @abstractmethod
    async def load_session(self, session_id: str) -> Optional[GameState]:
        ...

    @abstractmethod
    async def save_session(self, session_id: str, state: GameState) -> None:
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Purge the game state, chat messages and roster of a session."""

    @abstractmethod
    async def load_roster(self, session_id: str) -> Optional[Roster]:
        ...

    @abstractmethod
    async def save_roster(self, session_id: str, seats: Roster) -> None:
        ...

    @abstractmethod
    async def append_chat_message(self, session_id: str, message: ChatMessage) -> None:
        ...

    @abstractmethod
    async def load_chat_history(self, session_id: str) -> List[ChatMessage]:
        ...

    @abstractmethod
    async def append_turn_log(self, session_id: str, record: TurnRecord) -> None:
        ...

    @abstractmethod
    async def mark_chat_seen(self, session_id: str, seat_index: int) -> int:
        """Flip seen[seat_index] on every stored message; return how many changed."""

    @abstractmethod
    async def load_identity(self, player_id: str) -> Identity:
        ...

    @abstractmethod
    async def record_rating(self, player_id: str, rating: int) -> None:
        """Set the rating and bump games played in one update."""
