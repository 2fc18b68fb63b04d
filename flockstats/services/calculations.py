"""Battle metric formulas.

Pure functions over plain numbers: no database, no Flask. Everything here
works on raw doubles. Nothing is rounded; rounding belongs to the
presentation layer (utils.formatters.display_round), because rounding a
per-battle value before it is averaged into a monthly rollup skews the
average.

Zero denominators yield 0.0 rather than raising or returning NaN/inf.
"""
from typing import Dict, Iterable, List, Sequence

# Ratio scores are multiplied by this to put them on an approximate 100 point
# scale. Must match the value existing stored ratios were computed with.
RATIO_MULTIPLIER = 10

PERCENTAGE_MULTIPLIER = 100

# Battle results
WIN = 1
TIE = 0
LOSS = -1


def _safe_divide(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


# =====================================================
# Battle Calculations
# =====================================================

def battle_result(score: int, opponent_score: int) -> int:
    """Outcome of a battle from the clan's point of view.

    Returns:
        1 for win, 0 for tie, -1 for loss
    """
    if score > opponent_score:
        return WIN
    if score < opponent_score:
        return LOSS
    return TIE


def clan_ratio(score: float, baseline_fp: float) -> float:
    """Official clan ratio: score / baseline_fp * RATIO_MULTIPLIER."""
    return _safe_divide(score, baseline_fp) * RATIO_MULTIPLIER


def average_ratio(score: float, total_fp: float) -> float:
    """Ratio against the FP of everybody who could have played."""
    return _safe_divide(score, total_fp) * RATIO_MULTIPLIER


def player_ratio(player_score: float, player_fp: float) -> float:
    """Individual ratio: player_score / player_fp * RATIO_MULTIPLIER."""
    return _safe_divide(player_score, player_fp) * RATIO_MULTIPLIER


def margin_ratio(score: float, opponent_score: float) -> float:
    """Win/loss margin as a percentage of the clan's score.

    Positive means we won by that percentage, negative means we lost.
    A score of 0 gives 0.
    """
    return _safe_divide(score - opponent_score, score) * PERCENTAGE_MULTIPLIER


def fp_margin(baseline_fp: float, opponent_fp: float) -> float:
    """FP advantage (positive) or disadvantage (negative) as a percentage."""
    return _safe_divide(baseline_fp - opponent_fp, baseline_fp) * PERCENTAGE_MULTIPLIER


def nonplaying_fp_ratio(nonplaying_fp: float, total_fp: float) -> float:
    """Share of the total FP (reserves excluded) that sat the battle out."""
    return _safe_divide(nonplaying_fp, total_fp) * PERCENTAGE_MULTIPLIER


def reserve_fp_ratio(reserve_fp: float, total_fp: float) -> float:
    """Share of the full potential FP (total + reserves) held by reserves."""
    return _safe_divide(reserve_fp, total_fp + reserve_fp) * PERCENTAGE_MULTIPLIER


def projected_score(score: float, nonplaying_fp_ratio_pct: float) -> float:
    """Estimated score had every non-reserve member played."""
    return (1 + nonplaying_fp_ratio_pct / PERCENTAGE_MULTIPLIER) * score


# =====================================================
# Player Calculations
# =====================================================

def ratio_ranks(ratios: Sequence[float]) -> List[int]:
    """Rank ratios from highest (1) to lowest, returned in input order.

    Standard competition ranking: equal ratios share a rank, and the next
    distinct ratio is ranked one past the number of strictly higher ratios
    (1, 2, 2, 4).
    """
    ordered = sorted(ratios, reverse=True)
    first_position = {}
    for position, ratio in enumerate(ordered, start=1):
        first_position.setdefault(ratio, position)
    return [first_position[ratio] for ratio in ratios]


def player_ratio_ranks(players: List[Dict]) -> List[Dict]:
    """Copy of ``players`` with a ``ratio_rank`` key computed from ``ratio``."""
    ranks = ratio_ranks([player['ratio'] for player in players])
    return [dict(player, ratio_rank=rank) for player, rank in zip(players, ranks)]


def total_fp(player_stats: Iterable[Dict], nonplayer_stats: Iterable[Dict]) -> int:
    """Players' FP plus non-reserve non-players' FP."""
    player_fp = sum(p['fp'] for p in player_stats)
    return player_fp + nonplaying_fp(nonplayer_stats)


def nonplaying_count(nonplayer_stats: Iterable[Dict]) -> int:
    return sum(1 for np in nonplayer_stats if not np['reserve'])


def reserve_count(nonplayer_stats: Iterable[Dict]) -> int:
    return sum(1 for np in nonplayer_stats if np['reserve'])


def nonplaying_fp(nonplayer_stats: Iterable[Dict]) -> int:
    return sum(np['fp'] for np in nonplayer_stats if not np['reserve'])


def reserve_fp(nonplayer_stats: Iterable[Dict]) -> int:
    return sum(np['fp'] for np in nonplayer_stats if np['reserve'])


# =====================================================
# Aggregates
# =====================================================

def average(values: Sequence[float]) -> float:
    """Arithmetic mean; refuses empty input."""
    if not values:
        raise ValueError('Cannot calculate average of empty sequence')
    return sum(values) / len(values)


def safe_average(values: Sequence[float], default: float = 0.0) -> float:
    """Arithmetic mean, or ``default`` when there is nothing to average."""
    if not values:
        return default
    return sum(values) / len(values)


def percentage(part: float, whole: float) -> float:
    return _safe_divide(part, whole) * PERCENTAGE_MULTIPLIER
