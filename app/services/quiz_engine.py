import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.core.config import Settings
from app.core.errors import InternalError, QuizError, ValidationError
from app.services.question_bank import Question, QuestionBank, QuestionProvider, Validation
from app.services.rules import (
    MAX_PHASE,
    MIN_PHASE,
    PASS_THRESHOLD,
    SPEED_DEMON_AVG_MS,
    STREAK_MASTER_THRESHOLD,
    SUPPORTED_LOCALES,
    TOTAL_PHASES,
    VALID_OPTIONS,
    is_valid_locale,
    is_valid_phase,
    phase_levels,
    round_half_up,
)
from app.services.scoring import ScoreBreakdown, perfect_bonus, score_answer
from app.services.session_state import (
    AnswerRecord,
    DuplicateAnswerError,
    FinishReason,
    Session,
    SessionCompletedError,
    generate_session_id,
)
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

ALREADY_COMPLETED = "session_already_completed"


@dataclass
class AnswerOutcome:
    accepted: bool
    session: Session
    record: Optional[AnswerRecord] = None
    breakdown: Optional[ScoreBreakdown] = None
    reason: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.session.is_completed


@dataclass
class SessionReport:
    session: Session
    accuracy: int
    passed: bool
    average_time_per_question: int
    achievements: List[str] = field(default_factory=list)
    next_phase_unlocked: bool = False

    @property
    def final_score(self) -> int:
        return self.session.score


@dataclass
class PoolStats:
    locale: str
    phase_number: int
    total_questions: int
    available: bool
    levels: List[int]


def session_report(session: Session) -> SessionReport:
    """Bilan d'une session (lecture seule : aucun bonus n'est réappliqué)."""
    total = session.total_questions
    accuracy = round_half_up(session.correct_answers / total * 100) if total > 0 else 0
    passed = accuracy >= PASS_THRESHOLD

    answered = len(session.answers)
    avg_time = round_half_up(session.total_time / answered) if answered else 0

    achievements = []
    if session.is_perfect:
        achievements.append("perfect_score")
    if session.max_streak >= STREAK_MASTER_THRESHOLD:
        achievements.append("streak_master")
    if answered and avg_time < SPEED_DEMON_AVG_MS:
        achievements.append("speed_demon")

    return SessionReport(
        session=session,
        accuracy=accuracy,
        passed=passed,
        average_time_per_question=avg_time,
        achievements=achievements,
        next_phase_unlocked=passed and session.phase_number < TOTAL_PHASES,
    )


class QuizSessionService:
    """
    Cycle de vie d'une session de quiz : démarrage, question courante,
    réponse (score + série + bonus parfait), fin de session.

    Toute mutation passe par SessionStore.update() : le calcul du score se
    fait sous le verrou de la session, les appels au stock de questions
    se font avant.
    """

    def __init__(
        self,
        store: SessionStore,
        questions: QuestionProvider,
        questions_per_phase: int = 10,
        time_per_question_ms: int = 30000,
        time_grace_ms: int = 2000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._questions = questions
        self.questions_per_phase = questions_per_phase
        self.time_per_question_ms = time_per_question_ms
        self.time_grace_ms = time_grace_ms
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuizSessionService":
        store = SessionStore(
            ttl_seconds=settings.SESSION_TTL_SECONDS,
            max_sessions=settings.MAX_SESSIONS,
        )
        bank = QuestionBank.from_file(settings.QUESTIONS_PATH)
        return cls(
            store,
            bank,
            questions_per_phase=settings.QUESTIONS_PER_PHASE,
            time_per_question_ms=settings.TIME_PER_QUESTION_MS,
            time_grace_ms=settings.TIME_GRACE_MS,
        )

    # ---------- public API ----------

    def start(
        self,
        phase_number: int,
        locale: str,
        user_id: Optional[str] = None,
        exclude_question_ids: Optional[Iterable[int]] = None,
        ensure_image: bool = True,
    ) -> Session:
        self._check_phase(phase_number)
        self._check_locale(locale)

        excluded = sorted(set(exclude_question_ids or ()))
        pool_size = self._questions.count(locale, phase_levels(phase_number), excluded)
        if pool_size == 0:
            raise ValidationError(f"No questions available for phase {phase_number} in locale {locale}")

        session = Session(
            session_id=generate_session_id(),
            phase_number=phase_number,
            locale=locale,
            total_questions=min(self.questions_per_phase, pool_size),
            user_id=user_id,
            excluded_question_ids=excluded,
            ensure_image=ensure_image,
        )
        self._store.create(session)
        logger.info("New session created: %s, phase %s (%s)", session.session_id, phase_number, locale)
        return self._store.get(session.session_id)

    def get_session(self, session_id: str) -> Session:
        return self._store.get(session_id)

    def current_question(self, session_id: str) -> Tuple[Session, Question]:
        """
        Question courante de la session. Tant qu'elle n'a pas reçu de réponse,
        la même question est renvoyée ; sinon on en tire une nouvelle.
        """
        for _ in range(3):
            snapshot = self._store.get(session_id)
            if snapshot.is_completed:
                raise ValidationError(f"Session is not active. Status: {snapshot.status.value}")
            if snapshot.current_question_id is not None:
                return snapshot, self._questions.get(snapshot.current_question_id)

            candidate = self._questions.next_question(
                snapshot.locale,
                snapshot.phase_number,
                snapshot.served_question_ids,
                exclude_ids=snapshot.excluded_question_ids,
                require_image=snapshot.needs_image,
            )
            chosen: Dict[str, int] = {}

            def serve(s: Session) -> None:
                if s.current_question_id is not None:
                    chosen["id"] = s.current_question_id
                    return
                if candidate.id in s.served_question_ids:
                    return  # servie entre-temps par une autre requête
                s.serve_question(candidate.id, self._clock(), is_image=candidate.question_type == "image")
                chosen["id"] = candidate.id

            try:
                snapshot = self._store.update(session_id, serve)
            except SessionCompletedError:
                raise ValidationError("Session is not active. Status: completed")
            if "id" in chosen:
                return snapshot, self._questions.get(chosen["id"])

        raise InternalError(f"Could not serve a question for session {session_id}")

    def submit_answer(
        self,
        session_id: str,
        question_id: int,
        selected_option: Optional[str],
        time_used: int,
        is_timeout: bool = False,
    ) -> AnswerOutcome:
        session = self._store.get(session_id)
        if session.is_completed:
            return self._rejected(session)

        option = (selected_option or "").upper() or None
        if not is_timeout and option not in VALID_OPTIONS:
            raise ValidationError(f"must be one of: {', '.join(VALID_OPTIONS)}", field="selectedOption")

        validation = self._validate(question_id, option)
        self._check_in_pool(session, question_id, validation)
        is_correct = validation.is_correct and not is_timeout

        def apply(s: Session) -> None:
            s.ensure_active()
            if question_id in s.answered_question_ids():
                raise DuplicateAnswerError(question_id)

            breakdown = score_answer(
                level=validation.level,
                is_correct=is_correct,
                time_used_ms=time_used,
                time_budget_ms=self.time_per_question_ms,
                streak_count=s.next_streak(is_correct),
            )
            s.record_answer(
                AnswerRecord(
                    question_id=question_id,
                    selected_option=option,
                    correct_option=validation.correct_option,
                    is_correct=is_correct,
                    is_timeout=is_timeout,
                    time_used=time_used,
                    points=breakdown.total,
                    level=validation.level,
                    base_points=breakdown.base_points,
                    speed_multiplier=breakdown.speed_multiplier,
                    speed_bonus=breakdown.speed_bonus,
                    streak_bonus=breakdown.streak_bonus,
                    time_suspect=self._is_time_suspect(s, question_id, time_used, is_timeout),
                )
            )

            if s.current_question_index >= s.total_questions:
                s.complete(FinishReason.completed)
                if s.is_perfect:
                    s.perfect_bonus = perfect_bonus(s.score)
                    s.score += s.perfect_bonus

        try:
            snapshot = self._store.update(session_id, apply)
        except SessionCompletedError:
            return self._rejected(self._store.get(session_id))
        except DuplicateAnswerError:
            raise ValidationError(f"Question {question_id} already answered", field="questionId")

        # copie prise sous le verrou juste après notre mutation
        record = snapshot.answers[-1]
        if record.time_suspect:
            logger.warning(
                "Session %s: reported timeUsed=%sms for question %s is below server elapsed time",
                session_id, time_used, question_id,
            )
        if snapshot.is_completed:
            logger.info(
                "Session %s completed - score %s, %s/%s correct",
                session_id, snapshot.score, snapshot.correct_answers, snapshot.total_questions,
            )
            if snapshot.perfect_bonus:
                logger.info("Session %s perfect bonus: +%s points", session_id, snapshot.perfect_bonus)

        return AnswerOutcome(
            accepted=True,
            session=snapshot,
            record=record,
            breakdown=ScoreBreakdown(
                base_points=record.base_points,
                speed_multiplier=record.speed_multiplier,
                speed_bonus=record.speed_bonus,
                streak_bonus=record.streak_bonus,
                total=record.points,
            ),
        )

    def finish(self, session_id: str, reason: Optional[FinishReason] = None) -> SessionReport:
        def close(s: Session) -> None:
            if s.is_completed:
                return
            if reason is not None:
                r = reason
            elif s.current_question_index >= s.total_questions:
                r = FinishReason.completed
            else:
                r = FinishReason.abandoned
            s.complete(r)

        snapshot = self._store.update(session_id, close)
        report = session_report(snapshot)
        logger.info(
            "Phase %s finished (%s) - score %s, accuracy %s%%, passed %s",
            snapshot.phase_number, session_id, snapshot.score, report.accuracy, report.passed,
        )
        return report

    def pool_stats(self, locale: str, phase_number: int) -> PoolStats:
        """available : une session peut démarrer (même critère que start)."""
        self._check_phase(phase_number)
        self._check_locale(locale)
        levels = phase_levels(phase_number)
        total = self._questions.count(locale, levels)
        return PoolStats(
            locale=locale,
            phase_number=phase_number,
            total_questions=total,
            available=total > 0,
            levels=levels,
        )

    def active_sessions(self) -> int:
        return self._store.active_count()

    # ---------- internals ----------

    def _check_phase(self, phase_number: int) -> None:
        if not is_valid_phase(phase_number):
            raise ValidationError(f"must be between {MIN_PHASE} and {MAX_PHASE}", field="phaseNumber")

    def _check_locale(self, locale: str) -> None:
        if not is_valid_locale(locale):
            raise ValidationError(
                f"Invalid locale. Supported: {', '.join(SUPPORTED_LOCALES)}", field="locale"
            )

    def _validate(self, question_id: int, option: Optional[str]) -> Validation:
        # jamais de bonne réponse supposée si la question est introuvable
        try:
            return self._questions.validate(question_id, option)
        except QuizError:
            raise
        except Exception as e:
            logger.exception("Question lookup failed for %s", question_id)
            raise InternalError(f"Question lookup failed for {question_id}") from e

    def _check_in_pool(self, s: Session, question_id: int, validation: Validation) -> None:
        # le niveau utilisé pour le score doit venir du pool de la session
        if (
            validation.locale != s.locale
            or validation.level not in phase_levels(s.phase_number)
            or question_id in s.excluded_question_ids
        ):
            raise ValidationError(f"Question {question_id} is not part of this session", field="questionId")

    def _is_time_suspect(self, s: Session, question_id: int, time_used: int, is_timeout: bool) -> bool:
        served_at = s.question_served_at.get(question_id)
        if served_at is None or is_timeout:
            return False
        elapsed_ms = (self._clock() - served_at) * 1000
        return time_used + self.time_grace_ms < elapsed_ms

    def _rejected(self, session: Session) -> AnswerOutcome:
        logger.warning("Answer rejected: session %s already completed", session.session_id)
        return AnswerOutcome(accepted=False, session=session, reason=ALREADY_COMPLETED)
