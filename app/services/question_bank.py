import json
import logging
import random
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from app.core.errors import InternalError, NotFoundError
from app.services.rules import (
    MAX_SAME_TOPIC,
    SUPPORTED_LOCALES,
    VALID_LEVELS,
    VALID_OPTIONS,
    difficulty_distribution,
    phase_levels,
)

logger = logging.getLogger(__name__)


@dataclass
class Question:
    id: int
    locale: str
    level: int
    topic: str
    question: str
    options: Dict[str, str]
    correct_option: str
    explanation: str = ""
    image_url: Optional[str] = None

    @property
    def question_type(self) -> str:
        return "image" if self.image_url else "text"


@dataclass(frozen=True)
class Validation:
    is_correct: bool
    correct_option: str
    level: int
    locale: str


class QuestionProvider(Protocol):
    """Ce que le moteur de session attend du stock de questions."""

    def next_question(
        self,
        locale: str,
        phase_number: int,
        served_ids: Iterable[int],
        exclude_ids: Iterable[int] = (),
        require_image: bool = False,
    ) -> Question:
        ...

    def validate(self, question_id: int, selected_option: Optional[str]) -> Validation:
        ...

    def get(self, question_id: int) -> Question:
        ...

    def count(
        self,
        locale: str,
        levels: Optional[Iterable[int]] = None,
        exclude_ids: Iterable[int] = (),
    ) -> int:
        ...


@dataclass
class _Pool:
    by_id: Dict[int, Question] = field(default_factory=dict)
    by_locale: Dict[str, List[Question]] = field(default_factory=dict)


class QuestionBank:
    """
    Stock de questions en lecture seule, chargé depuis un JSON.

    Sélection : uniquement les niveaux de la phase, quotas par niveau
    selon sa distribution ; au plus 3 questions par thème tant que c'est
    possible. require_image force une question illustrée si le stock en a.
    """

    def __init__(self, questions: Iterable[Question], rng: Optional[random.Random] = None) -> None:
        self._pool = _Pool()
        for q in questions:
            if q.id in self._pool.by_id:
                logger.warning("Duplicate question id %s ignored", q.id)
                continue
            self._pool.by_id[q.id] = q
            self._pool.by_locale.setdefault(q.locale, []).append(q)
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str, rng: Optional[random.Random] = None) -> "QuestionBank":
        p = Path(path)
        try:
            with open(p, "r", encoding="utf-8") as f:
                raw_items = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InternalError(f"Cannot load questions from {p}: {e}") from e

        questions = []
        for raw in raw_items:
            q = parse_question(raw)
            if q is not None:
                questions.append(q)
        logger.info("Loaded %d questions from %s", len(questions), p)
        return cls(questions, rng=rng)

    # ---------- QuestionProvider ----------

    def get(self, question_id: int) -> Question:
        q = self._pool.by_id.get(question_id)
        if q is None:
            raise NotFoundError(f"Question {question_id} not found")
        return q

    def validate(self, question_id: int, selected_option: Optional[str]) -> Validation:
        q = self.get(question_id)
        selected = (selected_option or "").upper()
        return Validation(
            is_correct=selected == q.correct_option,
            correct_option=q.correct_option,
            level=q.level,
            locale=q.locale,
        )

    def count(
        self,
        locale: str,
        levels: Optional[Iterable[int]] = None,
        exclude_ids: Iterable[int] = (),
    ) -> int:
        excluded = set(exclude_ids)
        items = [q for q in self._pool.by_locale.get(locale, []) if q.id not in excluded]
        if levels is None:
            return len(items)
        wanted = set(levels)
        return sum(1 for q in items if q.level in wanted)

    def next_question(
        self,
        locale: str,
        phase_number: int,
        served_ids: Iterable[int],
        exclude_ids: Iterable[int] = (),
        require_image: bool = False,
    ) -> Question:
        served_set = set(served_ids)
        excluded = served_set | set(exclude_ids)
        levels = set(phase_levels(phase_number))
        unserved = [
            q for q in self._pool.by_locale.get(locale, [])
            if q.id not in excluded and q.level in levels
        ]
        if not unserved:
            raise NotFoundError(f"No more questions available for phase {phase_number} in locale {locale}")

        # les quotas ne comptent que les questions servies, pas les exclusions
        served = [self._pool.by_id[i] for i in served_set if i in self._pool.by_id]
        served_levels = Counter(q.level for q in served)
        served_topics = Counter(q.topic for q in served)

        open_levels = {
            level for level, count in difficulty_distribution(phase_number)
            if served_levels[level] < count
        }
        candidates = [q for q in unserved if q.level in open_levels]
        if not candidates:
            candidates = unserved
            if open_levels:
                logger.warning(
                    "Phase %s (%s): no question left for levels %s",
                    phase_number, locale, sorted(open_levels),
                )

        if require_image:
            images = [q for q in candidates if q.question_type == "image"]
            if not images:
                # on sort du quota : n'importe quel niveau de la phase
                images = [q for q in unserved if q.question_type == "image"]
            if images:
                candidates = images
            else:
                logger.info("Phase %s (%s): no image question available", phase_number, locale)

        diverse = [q for q in candidates if served_topics[q.topic] < MAX_SAME_TOPIC]
        if diverse:
            candidates = diverse

        with self._rng_lock:
            return self._rng.choice(candidates)


def parse_question(raw: dict) -> Optional[Question]:
    """Construit une Question depuis un enregistrement JSON ; None si invalide."""
    try:
        options = {opt: str(raw[f"option{opt}"]) for opt in VALID_OPTIONS}
        q = Question(
            id=int(raw["id"]),
            locale=str(raw["locale"]),
            level=int(raw["level"]),
            topic=str(raw.get("topic") or "General"),
            question=str(raw["question"]),
            options=options,
            correct_option=str(raw["correctOption"]).upper(),
            explanation=str(raw.get("explanation") or ""),
            image_url=raw.get("imageUrl"),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Invalid question record skipped (%s): %r", e, raw.get("id") if isinstance(raw, dict) else raw)
        return None

    if q.level not in VALID_LEVELS or q.correct_option not in VALID_OPTIONS or q.locale not in SUPPORTED_LOCALES:
        logger.warning("Invalid question record skipped: id=%s", q.id)
        return None
    return q
