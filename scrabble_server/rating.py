from __future__ import annotations
import logging
import math
from typing import List, NamedTuple, Tuple

logger = logging.getLogger(__name__)

NOVICE_GAMES = 51
NOVICE_K = 30
EXPERIENCED_K = 16
ACCELERATION_FLOOR = 5

# (rating difference threshold, win probability of the higher-rated player)
EXPECTED_SCORE_TABLE: List[Tuple[float, float]] = [
    (3, 0.50), (10, 0.51), (17, 0.52), (25, 0.53), (32, 0.54), (40, 0.55),
    (47, 0.56), (54, 0.57), (61, 0.58), (69, 0.59), (76, 0.60), (83, 0.61),
    (91, 0.62), (98, 0.63), (106, 0.64), (113, 0.65), (121, 0.66), (129, 0.67),
    (137, 0.68), (145, 0.69), (153, 0.70), (162, 0.71), (170, 0.72), (179, 0.73),
    (188, 0.74), (197, 0.75), (206, 0.76), (215, 0.77), (225, 0.78), (236, 0.79),
    (246, 0.80), (257, 0.81), (268, 0.82), (279, 0.83), (291, 0.84), (303, 0.85),
    (316, 0.86), (329, 0.87), (345, 0.88), (358, 0.89), (375, 0.90), (392, 0.91),
    (412, 0.92), (433, 0.93), (457, 0.94), (485, 0.95), (518, 0.96), (560, 0.97),
    (620, 0.98), (735, 0.99), (math.inf, 1.00),
]


class Rating(NamedTuple):
    rating: int
    gamesPlayed: int = 0


def _round(value: float) -> int:
    # half-up, so 1586.5 becomes 1587
    return math.floor(value + 0.5)


def _lookup(diff: float) -> float:
    for threshold, prob in EXPECTED_SCORE_TABLE:
        if diff <= threshold:
            return prob
    return EXPECTED_SCORE_TABLE[-1][1]


def expected_score(diff: float) -> float:
    """Win probability of a player rated `diff` points above the opponent."""
    if diff < 0:
        return round(1 - _lookup(-diff), 2)
    return _lookup(diff)


def k_factor(games_played: int) -> int:
    return NOVICE_K if games_played < NOVICE_GAMES else EXPERIENCED_K


def compute_ratings(winner: Rating, loser: Rating) -> Tuple[int, int]:
    """Return the (winner, loser) ratings after a decided game.

    Winners with fewer than NOVICE_GAMES games get the part of their gain
    above ACCELERATION_FLOOR counted twice. Pure; persisting the result is
    up to the caller.
    """
    expected = expected_score(winner.rating - loser.rating)

    winner_delta = (1 - expected) * k_factor(winner.gamesPlayed)
    loser_delta = (0 - (1 - expected)) * k_factor(loser.gamesPlayed)

    if winner.gamesPlayed < NOVICE_GAMES and winner_delta > ACCELERATION_FLOOR:
        acceleration = winner_delta - ACCELERATION_FLOOR
        winner_delta += acceleration
        logger.debug("Novice acceleration of %.2f points applied", acceleration)

    return _round(winner.rating + winner_delta), _round(loser.rating + loser_delta)
