import pytest

from scrabble_server.rating import Rating, compute_ratings, expected_score, k_factor


@pytest.mark.parametrize('diff, expected', [
    (0, 0.50),
    (3, 0.50),
    (4, 0.51),
    (100, 0.64),
    (735, 0.99),
    (5000, 1.00),
])
def test_expected_score_table(diff, expected):
    assert expected_score(diff) == expected


def test_expected_score_is_symmetric_for_the_underdog():
    assert expected_score(-100) == 0.36
    assert expected_score(-1000) == 0.0


def test_k_factor_drops_after_fifty_games():
    assert k_factor(0) == 30
    assert k_factor(50) == 30
    assert k_factor(51) == 16


def test_even_game_between_novices():
    # winner gains 15, doubled above the floor of 5; loser just drops 15
    assert compute_ratings(Rating(1600, 10), Rating(1600, 10)) == (1625, 1585)


def test_even_game_between_experienced_players():
    assert compute_ratings(Rating(1600, 100), Rating(1600, 100)) == (1608, 1592)


def test_loser_never_gets_acceleration():
    winner, loser = compute_ratings(Rating(1600, 200), Rating(1600, 3))
    assert winner == 1608
    assert loser == 1585


def test_upset_costs_the_favourite_more_than_an_even_loss():
    _, even_loser = compute_ratings(Rating(2000, 10), Rating(2000, 10))
    upset_winner, upset_loser = compute_ratings(Rating(1000, 10), Rating(2000, 10))

    assert 2000 - upset_loser > 2000 - even_loser
    assert upset_loser == 1970
    assert upset_winner == 1055


def test_small_novice_gain_is_not_accelerated():
    # expected 0.99 leaves a 0.3 point gain, under the floor
    winner, loser = compute_ratings(Rating(1900, 5), Rating(1200, 5))
    assert winner == 1900
    assert loser == 1200
