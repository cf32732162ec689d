from dataclasses import dataclass
from typing import Dict, List, Tuple

from app.services.rules import TIME_PER_QUESTION_MS, round_half_up

BASE_POINTS: Dict[int, int] = {1: 10, 2: 20, 3: 30, 4: 40, 5: 50}
DEFAULT_BASE_POINTS = 10

# (temps restant minimum en ms, multiplicateur) : premier palier atteint
SPEED_TIERS: List[Tuple[int, float]] = [
    (20000, 2.0),
    (15000, 1.5),
    (10000, 1.2),
    (0,     1.0),
]

STREAK_BONUS_START = 3
STREAK_BONUS_PER_ANSWER = 5
STREAK_BONUS_MAX = 50

PERFECT_BONUS_RATE = 0.5


@dataclass(frozen=True)
class ScoreBreakdown:
    base_points: int = 0
    speed_multiplier: float = 1.0
    speed_bonus: int = 0
    streak_bonus: int = 0
    total: int = 0


def base_points(level: int) -> int:
    return BASE_POINTS.get(level, DEFAULT_BASE_POINTS)


def speed_multiplier(time_remaining_ms: int) -> float:
    for threshold, mult in SPEED_TIERS:
        if time_remaining_ms >= threshold:
            return mult
    return 1.0


def streak_bonus(streak_count: int) -> int:
    if streak_count < STREAK_BONUS_START:
        return 0
    return min(streak_count * STREAK_BONUS_PER_ANSWER, STREAK_BONUS_MAX)


def perfect_bonus(score: int) -> int:
    return round_half_up(score * PERFECT_BONUS_RATE)


def score_answer(
    level: int,
    is_correct: bool,
    time_used_ms: int,
    time_budget_ms: int = TIME_PER_QUESTION_MS,
    streak_count: int = 0,
) -> ScoreBreakdown:
    """
    Points d'une réponse. streak_count est la série APRÈS incrément
    (la 3e bonne réponse consécutive touche déjà le bonus).
    """
    if not is_correct:
        return ScoreBreakdown()

    base = base_points(level)
    mult = speed_multiplier(time_budget_ms - time_used_ms)
    with_speed = round_half_up(base * mult)
    bonus = streak_bonus(streak_count)

    return ScoreBreakdown(
        base_points=base,
        speed_multiplier=mult,
        speed_bonus=with_speed - base,
        streak_bonus=bonus,
        total=with_speed + bonus,
    )
