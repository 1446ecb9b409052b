from __future__ import annotations
import asyncio
import logging
import random
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .. import board
from ..constants import SEAT_COUNT
from ..errors import InvalidActionError, NotFoundError, NotYourTurnError, PersistenceError
from ..persistence.gateway import PersistenceGateway
from ..rating import Rating, compute_ratings
from ..schemas import (
    AssignJoker, ChatMessage, GameState, Identity, MoveLetter, PlayerAction, Seat,
    TurnRecord, TurnSubmission,
)
from ..tiles import generate_initial_game_state, refill_rack
from .writes import WriteQueue

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)

# accepted regardless of whose turn it is
UNCHECKED_KINDS = frozenset({'updateGameState', 'assignJoker', 'chatMessage', 'turnSubmitted'})
# still accepted once the game is over
POST_GAME_KINDS = frozenset({'chatMessage', 'updateGameState'})
# fixed once the game is over
RESULT_FIELDS = frozenset({'isGameOver', 'winnerIndex', 'gameOverReason'})
# accepted before any game state exists
PRE_GAME_KINDS = frozenset({'initializeGame', 'chatMessage'})

WAITING_MESSAGE = 'Waiting for the second player...'


class SessionPhase(Enum):
    NO_GAME = 'no_game'
    IN_PROGRESS = 'in_progress'
    FINISHED = 'finished'


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionInstance:
    """One two-seat game: roster, game state, chat and their persistence.

    Mutations happen synchronously on the event loop and are followed by a
    queued durable write and a broadcast to the session room.
    """

    def __init__(self, session_id: str, sio, gateway: PersistenceGateway, rng: Optional[random.Random] = None):
        self.id = session_id
        self.sio = sio
        self.gateway = gateway
        self.rng = rng
        self.seats: List[Optional[Seat]] = [None, None]
        self.state: Optional[GameState] = None
        self.chat: List[ChatMessage] = []
        self.spectators: Set[str] = set()
        self.loaded = False
        self.rated = False
        self.pending_joins = 0
        self.lock = asyncio.Lock()
        self.writes = WriteQueue(session_id)
        self._handlers: Dict[str, Callable[[int, str, Any], Awaitable[None]]] = {
            'moveLetter': self._move_letter,
            'assignJoker': self._assign_joker,
            'updateGameState': self._update_game_state,
            'initializeGame': self._initialize_game,
            'chatMessage': self._chat_message,
            'turnSubmitted': self._turn_submitted,
            'surrender': self._surrender,
            'gameOver': self._game_over,
        }

    @property
    def phase(self) -> SessionPhase:
        if self.state is None:
            return SessionPhase.NO_GAME
        return SessionPhase.FINISHED if self.state.isGameOver else SessionPhase.IN_PROGRESS

    @property
    def connected_count(self) -> int:
        return sum(1 for s in self.seats if s is not None and s.is_connected)

    @property
    def seated_count(self) -> int:
        return sum(1 for s in self.seats if s is not None)

    @property
    def attached_count(self) -> int:
        return self.connected_count + len(self.spectators)

    # Loading and seating

    async def load(self):
        """Read roster, state and chat from the store on first touch only.

        Anything already in memory was put there by a live connection and is
        newer than the store, so it is never overwritten.
        """
        if self.loaded:
            return
        try:
            roster = await self.gateway.load_roster(self.id)
            if roster is not None and not any(self.seats):
                self.seats = roster
            state = await self.gateway.load_session(self.id)
            if state is not None and self.state is None:
                self.state = state
                logger.info("Session %s: game state restored from the store", self.id)
            history = await self.gateway.load_chat_history(self.id)
            if history and not self.chat:
                self.chat = history
        except PersistenceError as exc:
            logger.error("Session %s: could not load stored state: %s", self.id, exc.message)
        self.loaded = True

    def seat_player(self, sid: str, player_id: str, identity: Identity) -> Optional[int]:
        """Bind a connection to a seat and return its index, or None for a spectator."""
        for index, seat in enumerate(self.seats):
            if seat is not None and seat.userId == player_id:
                seat.socketId = sid
                seat.nickname = identity.displayName
                seat.elo = identity.rating
                seat.gamesPlayed = identity.gamesPlayed
                self.spectators.discard(sid)
                logger.info("Session %s: %s reconnected as player %d", self.id, player_id, index + 1)
                return index

        for index, seat in enumerate(self.seats):
            if seat is None or not seat.is_connected:
                self.seats[index] = Seat(
                    userId=player_id,
                    playerIndex=index,
                    nickname=identity.displayName,
                    elo=identity.rating,
                    gamesPlayed=identity.gamesPlayed,
                    socketId=sid,
                )
                logger.info("Session %s: %s joined as player %d", self.id, player_id, index + 1)
                return index

        self.spectators.add(sid)
        logger.info("Session %s is full; %s is watching", self.id, player_id)
        return None

    def detach(self, sid: str) -> Optional[int]:
        self.spectators.discard(sid)
        for index, seat in enumerate(self.seats):
            # a newer connection of the same player may already own the seat
            if seat is not None and seat.socketId == sid:
                seat.socketId = None
                return index
        return None

    def freeze_ratings(self) -> bool:
        """Pin both players' ratings once both seats are connected."""
        if self.connected_count < 2:
            return False
        changed = False
        for seat in self.seats:
            if seat.frozenElo is None:
                seat.frozenElo = seat.elo
                seat.frozenGamesPlayed = seat.gamesPlayed
                changed = True
        if changed:
            logger.info("Session %s: ratings frozen at %s", self.id, [s.frozenElo for s in self.seats])
        return changed

    def ensure_game(self) -> bool:
        if self.state is not None:
            return False
        self.state = generate_initial_game_state(self.rng)
        self.persist_state()
        logger.info("Session %s: new game state initialised", self.id)
        return True

    def nicknames(self) -> Dict[int, str]:
        return {i: seat.nickname or f'Player {i + 1}' for i, seat in enumerate(self.seats) if seat is not None}

    # Persistence (snapshots are taken now, written in order later)

    def persist_state(self) -> asyncio.Future:
        snapshot = self.state.model_copy(deep=True)
        return self.writes.submit('game state', lambda: self.gateway.save_session(self.id, snapshot))

    def persist_roster(self) -> asyncio.Future:
        snapshot = [seat.model_copy() if seat else None for seat in self.seats]
        return self.writes.submit('roster', lambda: self.gateway.save_roster(self.id, snapshot))

    # Broadcasting

    def state_payload(self) -> dict:
        self.state.playerNicknames = self.nicknames()
        return self.state.model_dump(mode='json')

    async def broadcast_state(self):
        if self.state is not None:
            await self.sio.emit('gameStateUpdate', self.state_payload(), room=self.id)

    async def broadcast_chat_history(self):
        await self.sio.emit('chatHistory', [m.model_dump(mode='json') for m in self.chat], room=self.id)

    async def broadcast_waiting(self):
        await self.sio.emit('waitingForPlayers', WAITING_MESSAGE, room=self.id)

    # Actions

    async def handle_action(self, seat_index: Optional[int], player_id: str, action: PlayerAction):
        if seat_index is None:
            raise InvalidActionError('Spectators cannot take actions.')
        handler = self._handlers.get(action.kind)
        if handler is None:
            raise InvalidActionError(f"Unknown action '{action.kind}'.")

        if self.state is None:
            if action.kind not in PRE_GAME_KINDS:
                raise NotFoundError('No game is in progress.')
        elif self.state.isGameOver and action.kind not in POST_GAME_KINDS:
            raise InvalidActionError('The game is already over.')
        elif action.kind not in UNCHECKED_KINDS and self.state.currentPlayerIndex != seat_index:
            logger.warning("Session %s: player %d tried %s out of turn", self.id, seat_index + 1, action.kind)
            raise NotYourTurnError()

        logger.info("Session %s: %s from player %d", self.id, action.kind, seat_index + 1)
        await handler(seat_index, player_id, action.payload)

    def _parse(self, model: Type[M], payload: Any) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise InvalidActionError(f"Malformed payload: {exc.errors()[0]['msg']}") from exc

    def _check_shape(self, state: GameState):
        if len(state.playerScores) != SEAT_COUNT or len(state.playerRacks) != SEAT_COUNT:
            raise InvalidActionError(f'Malformed payload: expected {SEAT_COUNT} scores and racks.')
        seats = max(self.seated_count, 1)
        if not 0 <= state.currentPlayerIndex < seats:
            raise InvalidActionError(f'Malformed payload: currentPlayerIndex must be below {seats}.')

    async def _commit(self, new_state: GameState):
        self.state = new_state
        self.persist_state()
        await self.broadcast_state()

    async def _move_letter(self, seat: int, player_id: str, payload: Any):
        move = self._parse(MoveLetter, payload)
        new_state = board.move_letter(self.state, seat, move)
        if new_state is not self.state:
            await self._commit(new_state)

    async def _assign_joker(self, seat: int, player_id: str, payload: Any):
        new_state = board.assign_joker(self.state, self._parse(AssignJoker, payload))
        if new_state is not self.state:
            await self._commit(new_state)

    async def _initialize_game(self, seat: int, player_id: str, payload: Any):
        if self.ensure_game():
            await self.broadcast_state()

    async def _update_game_state(self, seat: int, player_id: str, payload: Any):
        if not isinstance(payload, dict):
            raise InvalidActionError('Malformed payload: expected an object.')
        was_over = self.state.isGameOver
        fields = {k: v for k, v in payload.items() if k in GameState.model_fields and k != 'playerNicknames'}
        if was_over:
            fields = {k: v for k, v in fields.items() if k not in RESULT_FIELDS}
        merged = self._parse(GameState, {**self.state.model_dump(), **fields})
        self._check_shape(merged)
        self.state = merged
        if not was_over and merged.isGameOver:
            await self._finish(self._leader(), merged.gameOverReason or 'Game over')
        self.persist_state()
        await self.broadcast_state()

    async def _game_over(self, seat: int, player_id: str, payload: Any):
        if payload is not None and not isinstance(payload, dict):
            raise InvalidActionError('Malformed payload: expected an object.')
        await self._update_game_state(seat, player_id, {**(payload or {}), 'isGameOver': True})

    async def _surrender(self, seat: int, player_id: str, payload: Any):
        name = self.nicknames().get(seat, f'Player {seat + 1}')
        await self._finish(1 - seat, f'{name} resigned')
        self.persist_state()
        await self.broadcast_state()

    async def _turn_submitted(self, seat: int, player_id: str, payload: Any):
        submission = self._parse(TurnSubmission, payload or {})
        previous = self.state
        if submission.gameState is not None:
            new_state = submission.gameState.model_copy(deep=True)
            self._check_shape(new_state)
        else:
            new_state = previous.model_copy(deep=True)
            self._close_turn(new_state, previous.currentPlayerIndex, submission.score)

        new_state.boardAtStartOfTurn = [[t.model_copy() if t else None for t in row] for row in new_state.board]
        new_state.hasPlacedOnBoardThisTurn = False
        new_state.hasMovedToExchangeZoneThisTurn = False
        new_state.currentPlayerIndex = (previous.currentPlayerIndex + 1) % max(self.seated_count, 1)
        new_state.turnNumber = previous.turnNumber + 1

        record = TurnRecord(
            userId=player_id,
            playerIndex=seat,
            turnNumber=new_state.turnNumber,
            payload={
                'score': submission.score,
                'words': submission.words,
                'replacedState': submission.gameState is not None,
            },
            timestamp=now_ms(),
        )
        self.writes.submit('turn log', lambda: self.gateway.append_turn_log(self.id, record))
        self.state = new_state
        if not previous.isGameOver and new_state.isGameOver:
            await self._finish(self._leader(), new_state.gameOverReason or 'Game over')
        await self._commit(new_state)

    def _close_turn(self, state: GameState, seat: int, score: int):
        """Score the turn, refill the rack and send exchanged tiles back to the bag."""
        placed = board.placed_this_turn(state)
        exchanged = state.exchangeZoneLetters
        state.playerScores[seat] += score

        state.letterBag = refill_rack(state.playerRacks[seat], state.letterBag).remaining
        if exchanged:
            for tile in exchanged:
                tile.originalRackIndex = None
            bag = state.letterBag + exchanged
            (self.rng or random).shuffle(bag)
            state.letterBag = bag
            state.exchangeZoneLetters = []

        state.consecutivePasses = 0 if placed or exchanged else state.consecutivePasses + 1
        if placed:
            state.isFirstTurn = False
        state.isBagEmpty = not state.letterBag

    # Game end and ratings

    def _leader(self) -> Optional[int]:
        first, second = self.state.playerScores[:2]
        if first == second:
            return None
        return 0 if first > second else 1

    async def _finish(self, winner: Optional[int], reason: str):
        self.state.isGameOver = True
        self.state.winnerIndex = winner
        self.state.gameOverReason = reason
        logger.info("Session %s finished (%s), winner: %s", self.id, reason, winner)
        if winner is not None:
            await self._apply_ratings(winner)

    async def _frozen_rating(self, seat: Seat) -> Rating:
        if seat.frozenElo is not None:
            return Rating(seat.frozenElo, seat.frozenGamesPlayed or 0)
        try:
            identity = await self.gateway.load_identity(seat.userId)
        except PersistenceError as exc:
            logger.error("Session %s: rating lookup for %s failed: %s", self.id, seat.userId, exc.message)
            return Rating(seat.elo, seat.gamesPlayed)
        return Rating(identity.rating, identity.gamesPlayed)

    async def _apply_ratings(self, winner_index: int):
        if self.rated:
            return
        winner, loser = self.seats[winner_index], self.seats[1 - winner_index]
        if winner is None or loser is None or winner.userId == loser.userId:
            logger.info("Session %s: no opponent to rate against", self.id)
            return
        self.rated = True

        winner_rating = await self._frozen_rating(winner)
        loser_rating = await self._frozen_rating(loser)
        new_winner, new_loser = compute_ratings(winner_rating, loser_rating)
        logger.info(
            "Ratings updated: winner %s %d -> %d, loser %s %d -> %d",
            winner.userId, winner_rating.rating, new_winner,
            loser.userId, loser_rating.rating, new_loser,
        )
        for seat, rating in ((winner, new_winner), (loser, new_loser)):
            seat.elo = rating
            seat.gamesPlayed += 1
            self.writes.submit('rating', lambda pid=seat.userId, r=rating: self.gateway.record_rating(pid, r))
        self.persist_roster()

    # Chat

    async def _chat_message(self, seat: int, player_id: str, payload: Any):
        text = payload.get('text') if isinstance(payload, dict) else payload
        if not isinstance(text, str) or not text.strip():
            raise InvalidActionError('Chat messages cannot be empty.')

        seen = {i: i == seat for i, s in enumerate(self.seats) if s is not None}
        seen[seat] = True
        message = ChatMessage(
            id=uuid.uuid4().hex,
            gameId=self.id,
            senderIndex=seat,
            senderNickname=self.nicknames().get(seat, f'Player {seat + 1}'),
            text=text,
            timestamp=now_ms(),
            seen=seen,
        )
        self.chat.append(message)
        stored = message.model_copy(deep=True)
        self.writes.submit('chat message', lambda: self.gateway.append_chat_message(self.id, stored))
        await self.sio.emit('receiveChatMessage', message.model_dump(mode='json'), room=self.id)

    async def mark_messages_seen(self, seat_index: int):
        changed = 0
        for message in self.chat:
            if message.seen.get(seat_index) is False:
                message.seen[seat_index] = True
                changed += 1
        self.writes.submit('chat receipts', lambda: self.gateway.mark_chat_seen(self.id, seat_index))
        await self.sio.emit(
            'messagesMarkedAsSeen',
            {'sessionId': self.id, 'seatIndex': seat_index, 'count': changed},
            room=self.id,
        )
        await self.broadcast_chat_history()
