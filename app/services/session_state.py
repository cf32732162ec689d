import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class SessionStatus(str, Enum):
    active = "active"
    completed = "completed"


class FinishReason(str, Enum):
    completed = "completed"
    abandoned = "abandoned"


class SessionCompletedError(Exception):
    """Mutation refusée : la session est terminée."""


class DuplicateAnswerError(Exception):
    """La question a déjà reçu une réponse dans cette session."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    return f"quiz_{uuid.uuid4().hex[:24]}"


@dataclass
class AnswerRecord:
    question_id: int
    selected_option: Optional[str]
    correct_option: str
    is_correct: bool
    is_timeout: bool
    time_used: int
    points: int
    level: int
    base_points: int = 0
    speed_multiplier: float = 1.0
    speed_bonus: int = 0
    streak_bonus: int = 0
    time_suspect: bool = False
    answered_at: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    session_id: str
    phase_number: int
    locale: str
    total_questions: int
    user_id: Optional[str] = None
    current_question_index: int = 0
    answers: List[AnswerRecord] = field(default_factory=list)
    score: int = 0
    streak_count: int = 0
    max_streak: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    total_time: int = 0
    perfect_bonus: int = 0
    status: SessionStatus = SessionStatus.active
    end_reason: Optional[FinishReason] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    # question servie et pas encore répondue
    current_question_id: Optional[int] = None
    served_question_ids: List[int] = field(default_factory=list)
    question_served_at: Dict[int, float] = field(default_factory=dict)
    # ids à ne pas servir (déjà vus par le joueur dans d'autres sessions)
    excluded_question_ids: List[int] = field(default_factory=list)
    ensure_image: bool = False
    image_served: bool = False
    last_activity_at: float = 0.0

    # ---------- état ----------

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.completed

    @property
    def is_perfect(self) -> bool:
        return self.total_questions > 0 and self.correct_answers == self.total_questions

    @property
    def needs_image(self) -> bool:
        """Dernière question à servir et aucune question illustrée jusque-là."""
        remaining = self.total_questions - self.current_question_index
        return self.ensure_image and not self.image_served and remaining == 1

    def answered_question_ids(self) -> List[int]:
        return [a.question_id for a in self.answers]

    # ---------- transitions ----------

    def ensure_active(self) -> None:
        if self.is_completed:
            raise SessionCompletedError(self.session_id)

    def serve_question(self, question_id: int, served_at: float, is_image: bool = False) -> None:
        self.ensure_active()
        if question_id not in self.served_question_ids:
            self.served_question_ids.append(question_id)
        self.current_question_id = question_id
        self.question_served_at[question_id] = served_at
        self.image_served = self.image_served or is_image

    def next_streak(self, is_correct: bool) -> int:
        return self.streak_count + 1 if is_correct else 0

    def record_answer(self, record: AnswerRecord) -> None:
        """
        Applique une réponse : compteurs, série, score, curseur.
        Les points du record sont déjà calculés avec la série post-incrément.
        """
        self.ensure_active()
        if record.question_id in self.answered_question_ids():
            raise DuplicateAnswerError(record.question_id)

        if record.is_correct:
            self.correct_answers += 1
        else:
            self.incorrect_answers += 1
        self.streak_count = self.next_streak(record.is_correct)
        self.max_streak = max(self.max_streak, self.streak_count)

        self.score += record.points
        self.answers.append(record)
        self.current_question_index += 1
        self.total_time += record.time_used

        if record.question_id not in self.served_question_ids:
            self.served_question_ids.append(record.question_id)
        if self.current_question_id == record.question_id:
            self.current_question_id = None

    def complete(self, reason: FinishReason, at: Optional[datetime] = None) -> bool:
        """
        active -> completed. Renvoie False si la session était déjà terminée
        (aucune transition inverse possible).
        """
        if self.is_completed:
            return False
        self.status = SessionStatus.completed
        self.end_reason = reason
        self.completed_at = at or utcnow()
        self.current_question_id = None
        return True
