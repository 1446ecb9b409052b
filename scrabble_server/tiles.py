from __future__ import annotations
import logging
import random
from typing import List, NamedTuple, Optional

from .constants import LETTER_DISTRIBUTION, LETTER_VALUES
from .schemas import GameState, Rack, Tile, empty_board, empty_rack

logger = logging.getLogger(__name__)


class Draw(NamedTuple):
    drawn: List[Tile]
    remaining: List[Tile]
    bag_empty: bool


def create_bag(rng: Optional[random.Random] = None) -> List[Tile]:
    """Build one tile per distribution entry and shuffle them."""
    bag: List[Tile] = []
    counter = 0
    for letter, count in LETTER_DISTRIBUTION:
        for _ in range(count):
            bag.append(Tile(id=f'letter-{counter}', letter=letter, value=LETTER_VALUES[letter]))
            counter += 1
    # random.shuffle is a Fisher-Yates shuffle
    (rng or random).shuffle(bag)
    return bag


def draw(bag: List[Tile], n: int) -> Draw:
    """Pop up to n tiles off the end of the bag.

    Running out early is not an error: the caller gets whatever was left and
    bag_empty is set.
    """
    remaining = list(bag)
    drawn: List[Tile] = []
    bag_empty = False
    for _ in range(n):
        if not remaining:
            logger.debug("Bag exhausted after drawing %d of %d tiles", len(drawn), n)
            bag_empty = True
            break
        drawn.append(remaining.pop())
    return Draw(drawn, remaining, bag_empty)


def refill_rack(rack: Rack, bag: List[Tile]) -> Draw:
    """Fill the empty slots of a rack in place, returning what was drawn."""
    free = [i for i, slot in enumerate(rack) if slot is None]
    result = draw(bag, len(free))
    for slot, tile in zip(free, result.drawn):
        rack[slot] = tile
    return result


def generate_initial_game_state(rng: Optional[random.Random] = None) -> GameState:
    bag = create_bag(rng)
    racks = []
    for _ in range(2):
        rack = empty_rack()
        bag = refill_rack(rack, bag).remaining
        racks.append(rack)
    return GameState(
        board=empty_board(),
        playerRacks=racks,
        letterBag=bag,
        boardAtStartOfTurn=empty_board(),
        isBagEmpty=len(bag) == 0,
    )
