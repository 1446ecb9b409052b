from __future__ import annotations
import logging
from typing import Optional

from .errors import InvalidActionError, StateInconsistencyError
from .schemas import AssignJoker, GameState, Location, MoveLetter, Rack, Tile

logger = logging.getLogger(__name__)


def move_letter(state: GameState, seat: int, move: MoveLetter) -> GameState:
    """Relocate one tile between the seat's rack, the board and the exchange zone.

    Returns a new state, or `state` itself when the move does not match what
    is actually on the table.
    """
    try:
        return _relocate(state, seat, move)
    except StateInconsistencyError as exc:
        logger.warning("moveLetter ignored for seat %s: %s", seat, exc.message)
        return state


def assign_joker(state: GameState, payload: AssignJoker) -> GameState:
    letter = payload.assignedLetter.upper()
    if not letter.isalpha():
        raise InvalidActionError(f"'{payload.assignedLetter}' is not a letter")

    tile = state.board[payload.x][payload.y]
    if tile is None or not tile.is_blank:
        logger.warning("assignJoker ignored: no blank tile at %s,%s", payload.x, payload.y)
        return state
    if tile.assignedLetter == letter:
        return state

    new_state = state.model_copy(deep=True)
    new_state.board[payload.x][payload.y].assignedLetter = letter
    return new_state


def placed_this_turn(state: GameState) -> bool:
    for row, snapshot_row in zip(state.board, state.boardAtStartOfTurn):
        for cell, before in zip(row, snapshot_row):
            if cell is not None and before is None:
                return True
    return False


def refresh_turn_flags(state: GameState) -> None:
    state.hasPlacedOnBoardThisTurn = placed_this_turn(state)
    state.hasMovedToExchangeZoneThisTurn = len(state.exchangeZoneLetters) > 0


def _relocate(state: GameState, seat: int, move: MoveLetter) -> GameState:
    new_state = state.model_copy(deep=True)
    rack = new_state.playerRacks[seat]
    source, target = move.source, move.target

    if source.type == 'rack' and target.type == 'rack' and target.index is not None:
        _reorder(rack, source.index, target.index, move.letterId)
    else:
        tile = _take(new_state, rack, source, move.letterId)
        _put(new_state, rack, target, tile)

    refresh_turn_flags(new_state)
    return new_state


def _check_id(tile: Optional[Tile], letter_id: Optional[str], where: str) -> Tile:
    if tile is None:
        raise StateInconsistencyError(f"no tile at {where}")
    if letter_id and tile.id != letter_id:
        raise StateInconsistencyError(f"{where} holds {tile.id}, not {letter_id}")
    return tile


def _reorder(rack: Rack, src: int, dst: int, letter_id: Optional[str]) -> None:
    tile = _check_id(rack[src], letter_id, f"rack slot {src}")
    if src == dst:
        return
    if rack[dst] is None:
        rack[dst] = tile
        rack[src] = None
    else:
        rack.pop(src)
        rack.insert(dst, tile)


def _take(state: GameState, rack: Rack, source: Location, letter_id: Optional[str]) -> Tile:
    if source.type == 'rack':
        tile = _check_id(rack[source.index], letter_id, f"rack slot {source.index}")
        rack[source.index] = None
        tile.originalRackIndex = source.index
        return tile

    if source.type == 'board':
        x, y = source.x, source.y
        tile = _check_id(state.board[x][y], letter_id, f"board {x},{y}")
        if state.boardAtStartOfTurn[x][y] is not None:
            raise StateInconsistencyError(f"tile at {x},{y} was played in an earlier turn")
        state.board[x][y] = None
        if tile.is_blank:
            tile.assignedLetter = None
        return tile

    for i, tile in enumerate(state.exchangeZoneLetters):
        if tile.id == letter_id:
            return state.exchangeZoneLetters.pop(i)
    raise StateInconsistencyError(f"{letter_id} is not in the exchange zone")


def _put(state: GameState, rack: Rack, target: Location, tile: Tile) -> None:
    if target.type == 'board':
        if state.board[target.x][target.y] is not None:
            raise StateInconsistencyError(f"board {target.x},{target.y} is occupied")
        state.board[target.x][target.y] = tile
        return

    if target.type == 'exchange':
        state.exchangeZoneLetters.append(tile)
        return

    for slot in (target.index, tile.originalRackIndex):
        if slot is not None and 0 <= slot < len(rack) and rack[slot] is None:
            rack[slot] = tile
            return
    for slot, occupant in enumerate(rack):
        if occupant is None:
            rack[slot] = tile
            return
    raise StateInconsistencyError("rack is full")
