from __future__ import annotations
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Literal, Optional

from .constants import BOARD_SIZE, DEFAULT_RATING, RACK_SIZE

Board = List[List[Optional['Tile']]]
Rack = List[Optional['Tile']]


def empty_board() -> Board:
    return [[None for _ in range(BOARD_SIZE)] for _ in range(BOARD_SIZE)]


def empty_rack() -> Rack:
    return [None for _ in range(RACK_SIZE)]


class Tile(BaseModel):
    id: str
    letter: str
    value: int = 0
    # only meaningful for blanks lying on the board
    assignedLetter: Optional[str] = None
    originalRackIndex: Optional[int] = None

    @property
    def is_blank(self) -> bool:
        return self.letter == ''


class Identity(BaseModel):
    displayName: str
    rating: int = DEFAULT_RATING
    gamesPlayed: int = 0


class Seat(BaseModel):
    userId: str
    playerIndex: int
    nickname: str
    elo: int = DEFAULT_RATING
    gamesPlayed: int = 0
    socketId: Optional[str] = None
    frozenElo: Optional[int] = None
    frozenGamesPlayed: Optional[int] = None

    @property
    def is_connected(self) -> bool:
        return self.socketId is not None


class GameState(BaseModel):
    model_config = ConfigDict(extra='ignore')

    board: Board = Field(default_factory=empty_board)
    playerRacks: List[Rack] = Field(default_factory=lambda: [empty_rack(), empty_rack()])
    letterBag: List[Tile] = []
    playerScores: List[int] = Field(default_factory=lambda: [0, 0])
    currentPlayerIndex: int = 0
    turnNumber: int = 0
    boardAtStartOfTurn: Board = Field(default_factory=empty_board)
    exchangeZoneLetters: List[Tile] = []
    hasPlacedOnBoardThisTurn: bool = False
    hasMovedToExchangeZoneThisTurn: bool = False
    consecutivePasses: int = 0
    isFirstTurn: bool = True
    isBagEmpty: bool = False
    isGameOver: bool = False
    winnerIndex: Optional[int] = None
    gameOverReason: Optional[str] = None
    # derived from the roster before every broadcast
    playerNicknames: Dict[int, str] = {}

    def tile_ids(self) -> List[str]:
        ids = [t.id for t in self.letterBag]
        ids += [t.id for rack in self.playerRacks for t in rack if t is not None]
        ids += [t.id for row in self.board for t in row if t is not None]
        ids += [t.id for t in self.exchangeZoneLetters]
        return ids


class ChatMessage(BaseModel):
    id: str
    gameId: str
    senderIndex: Optional[int] = None
    senderNickname: str
    text: str
    timestamp: int
    seen: Dict[int, bool] = {}


class TurnRecord(BaseModel):
    userId: str
    playerIndex: int
    turnNumber: int
    payload: Dict[str, Any] = {}
    timestamp: int


# Inbound payloads

class JoinRequest(BaseModel):
    sessionId: Optional[str] = Field(None, validation_alias=AliasChoices('sessionId', 'gameId'))
    playerId: Optional[str] = Field(None, validation_alias=AliasChoices('playerId', 'userId'))


class PlayerAction(BaseModel):
    kind: str = Field(..., validation_alias=AliasChoices('kind', 'type'))
    payload: Any = None


class MarkSeenRequest(BaseModel):
    sessionId: Optional[str] = Field(None, validation_alias=AliasChoices('sessionId', 'gameId'))
    seatIndex: int = Field(..., validation_alias=AliasChoices('seatIndex', 'playerIndex'), ge=0, lt=2)


Zone = Literal['rack', 'board', 'exchange']


class Location(BaseModel):
    type: Zone
    index: Optional[int] = Field(None, ge=0, lt=RACK_SIZE)
    x: Optional[int] = Field(None, ge=0, lt=BOARD_SIZE)
    y: Optional[int] = Field(None, ge=0, lt=BOARD_SIZE)


class MoveLetter(BaseModel):
    letterId: Optional[str] = None
    source: Location = Field(..., validation_alias=AliasChoices('from', 'source'))
    target: Location = Field(..., validation_alias=AliasChoices('to', 'target'))

    @model_validator(mode='after')
    def _check_coordinates(self) -> 'MoveLetter':
        for loc in (self.source, self.target):
            if loc.type == 'board' and (loc.x is None or loc.y is None):
                raise ValueError('board locations need x and y')
        if self.source.type == 'rack' and self.source.index is None:
            raise ValueError('rack source needs an index')
        if self.source.type == 'exchange' and not self.letterId:
            raise ValueError('letterId is required when taking from the exchange zone')
        return self


class AssignJoker(BaseModel):
    x: int = Field(..., ge=0, lt=BOARD_SIZE)
    y: int = Field(..., ge=0, lt=BOARD_SIZE)
    assignedLetter: str = Field(..., min_length=1, max_length=1)


class TurnSubmission(BaseModel):
    gameState: Optional[GameState] = None
    score: int = Field(0, ge=0)
    words: List[str] = []
