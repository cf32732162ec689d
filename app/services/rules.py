"""
Règles de jeu AstroQuiz : constantes, distribution de difficulté par phase.
"""
import math
from typing import Dict, List, Tuple

TOTAL_PHASES = 50
MIN_PHASE = 1
MAX_PHASE = TOTAL_PHASES

QUESTIONS_PER_PHASE = 10
TIME_PER_QUESTION_MS = 30000
DEFAULT_TIME_USED_MS = 15000

SUPPORTED_LOCALES: Tuple[str, ...] = ("en", "pt", "es", "fr")
DEFAULT_LOCALE = "en"

VALID_OPTIONS: Tuple[str, ...] = ("A", "B", "C", "D")
VALID_LEVELS: Tuple[int, ...] = (1, 2, 3, 4, 5)

PASS_THRESHOLD = 60  # % de bonnes réponses
MAX_SAME_TOPIC = 3

STREAK_MASTER_THRESHOLD = 10
SPEED_DEMON_AVG_MS = 10000

# (dernière phase incluse, [(niveau, nb questions)])
_DISTRIBUTION: List[Tuple[int, List[Tuple[int, int]]]] = [
    (3,  [(1, 10)]),
    (7,  [(1, 8), (2, 2)]),
    (10, [(1, 6), (2, 4)]),
    (15, [(2, 5), (3, 5)]),
    (20, [(2, 3), (3, 7)]),
    (25, [(3, 6), (4, 4)]),
    (30, [(3, 5), (4, 5)]),
    (35, [(3, 3), (4, 7)]),
    (40, [(4, 6), (5, 4)]),
    (45, [(4, 5), (5, 5)]),
    (50, [(5, 10)]),
]


def round_half_up(value: float) -> int:
    # round() de Python arrondit au pair (2.5 -> 2), pas les scores du jeu
    return int(math.floor(value + 0.5))


def is_valid_phase(phase_number: int) -> bool:
    return MIN_PHASE <= phase_number <= MAX_PHASE


def is_valid_locale(locale: str) -> bool:
    return locale in SUPPORTED_LOCALES


def difficulty_distribution(phase_number: int) -> List[Tuple[int, int]]:
    """
    Répartition des niveaux pour une phase (somme = 10 questions).
    Les phases hors bornes sont ramenées dans [1, 50].
    """
    phase = max(MIN_PHASE, min(MAX_PHASE, int(phase_number)))
    for last_phase, dist in _DISTRIBUTION:
        if phase <= last_phase:
            return list(dist)
    return list(_DISTRIBUTION[-1][1])


def phase_levels(phase_number: int) -> List[int]:
    return [level for level, _ in difficulty_distribution(phase_number)]


def game_rules() -> Dict:
    from app.services.scoring import (
        BASE_POINTS,
        PERFECT_BONUS_RATE,
        SPEED_TIERS,
        STREAK_BONUS_MAX,
        STREAK_BONUS_PER_ANSWER,
        STREAK_BONUS_START,
    )

    return {
        "general": {
            "totalPhases": TOTAL_PHASES,
            "questionsPerPhase": QUESTIONS_PER_PHASE,
            "timePerQuestion": TIME_PER_QUESTION_MS,
            "supportedLocales": list(SUPPORTED_LOCALES),
            "passThreshold": PASS_THRESHOLD,
        },
        "scoring": {
            "basePoints": {str(k): v for k, v in BASE_POINTS.items()},
            "speedMultipliers": [
                {"minRemaining": threshold, "multiplier": mult} for threshold, mult in SPEED_TIERS
            ],
            "streakBonus": {
                "start": STREAK_BONUS_START,
                "perAnswer": STREAK_BONUS_PER_ANSWER,
                "max": STREAK_BONUS_MAX,
            },
            "perfectBonusRate": PERFECT_BONUS_RATE,
        },
    }
