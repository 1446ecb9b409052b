"""Conversion between the in-memory models and stored documents.

Firestore rejects arrays nested directly in arrays, so the board is stored
as a list of occupied cells and racks as a map keyed by seat index. Map keys
must be strings, hence the str/int juggling on seen maps. Connection ids
and the nickname projection are never stored.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from ..constants import SEAT_COUNT
from ..schemas import Board, ChatMessage, GameState, Seat, Tile, TurnRecord, empty_board

Document = Dict[str, Any]


def _tile(tile: Optional[Tile]) -> Optional[Document]:
    return tile.model_dump() if tile is not None else None


def board_to_document(board: Board) -> List[Document]:
    cells = []
    for x, row in enumerate(board):
        for y, tile in enumerate(row):
            if tile is not None:
                cells.append({'x': x, 'y': y, 'tile': _tile(tile)})
    return cells


def board_from_document(cells: List[Document]) -> Board:
    board = empty_board()
    for cell in cells or []:
        board[cell['x']][cell['y']] = Tile.model_validate(cell['tile'])
    return board


def game_state_to_document(state: GameState) -> Document:
    doc = state.model_dump(exclude={'board', 'boardAtStartOfTurn', 'playerRacks', 'playerNicknames'})
    doc['board'] = board_to_document(state.board)
    doc['boardAtStartOfTurn'] = board_to_document(state.boardAtStartOfTurn)
    doc['playerRacks'] = {str(i): [_tile(t) for t in rack] for i, rack in enumerate(state.playerRacks)}
    return doc


def game_state_from_document(doc: Document) -> GameState:
    data = dict(doc)
    data.pop('playerNicknames', None)
    racks = data.pop('playerRacks', {}) or {}
    data['playerRacks'] = [racks[key] for key in sorted(racks, key=int)]
    data['board'] = board_from_document(data.pop('board', []))
    data['boardAtStartOfTurn'] = board_from_document(data.pop('boardAtStartOfTurn', []))
    return GameState.model_validate(data)


def roster_to_document(seats: List[Optional[Seat]]) -> Document:
    return {'players': [seat.model_dump(exclude={'socketId'}) if seat else None for seat in seats]}


def roster_from_document(doc: Document) -> List[Optional[Seat]]:
    # nobody is connected to a roster that was just read back
    seats = [Seat.model_validate(p) if p else None for p in doc.get('players') or []][:SEAT_COUNT]
    return seats + [None] * (SEAT_COUNT - len(seats))


def chat_to_document(message: ChatMessage) -> Document:
    doc = message.model_dump()
    doc['seen'] = {str(k): v for k, v in message.seen.items()}
    return doc


def chat_from_document(doc: Document) -> ChatMessage:
    data = dict(doc)
    data['seen'] = {int(k): v for k, v in (data.get('seen') or {}).items()}
    return ChatMessage.model_validate(data)


def turn_record_to_document(record: TurnRecord) -> Document:
    return record.model_dump()
