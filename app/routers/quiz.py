from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from app.core.config import get_settings
from app.core.deps import get_quiz_service
from app.models.quiz import (
    AnswerData,
    AnswerRecordOut,
    AnswerRequest,
    ApiResponse,
    FinishData,
    FinishRequest,
    PoolStatsData,
    QuestionData,
    QuestionView,
    QuizHealthData,
    RulesData,
    ScoreResult,
    SessionSnapshot,
    SessionStatusOut,
    StartQuizData,
    StartQuizRequest,
)
from app.services.question_bank import Question
from app.services.quiz_engine import AnswerOutcome, QuizSessionService
from app.services.rules import DEFAULT_LOCALE, difficulty_distribution, game_rules
from app.services.session_state import AnswerRecord, Session

router = APIRouter(prefix="/v1/quiz", tags=["quiz"])


# ---------- helpers (domaine -> JSON) ----------

def _record_out(r: AnswerRecord) -> AnswerRecordOut:
    return AnswerRecordOut(
        questionId=r.question_id,
        selectedOption=r.selected_option,
        correctOption=r.correct_option,
        isCorrect=r.is_correct,
        isTimeout=r.is_timeout,
        timeUsed=r.time_used,
        points=r.points,
        level=r.level,
        timeSuspect=r.time_suspect,
        answeredAt=r.answered_at,
    )


def _snapshot_fields(s: Session) -> dict:
    return dict(
        sessionId=s.session_id,
        userId=s.user_id,
        phaseNumber=s.phase_number,
        locale=s.locale,
        status=s.status,
        endReason=s.end_reason,
        totalQuestions=s.total_questions,
        currentQuestionIndex=s.current_question_index,
        answers=[_record_out(a) for a in s.answers],
        score=s.score,
        streakCount=s.streak_count,
        maxStreak=s.max_streak,
        correctAnswers=s.correct_answers,
        incorrectAnswers=s.incorrect_answers,
        totalTime=s.total_time,
        perfectBonus=s.perfect_bonus,
        startedAt=s.started_at,
        completedAt=s.completed_at,
    )


def _status_out(s: Session) -> SessionStatusOut:
    return SessionStatusOut(
        status=s.status,
        currentQuestionIndex=s.current_question_index,
        totalQuestions=s.total_questions,
        score=s.score,
        streakCount=s.streak_count,
        maxStreak=s.max_streak,
        correctAnswers=s.correct_answers,
        incorrectAnswers=s.incorrect_answers,
        perfectBonus=s.perfect_bonus,
        isPhaseComplete=s.is_completed,
    )


def _question_view(q: Question) -> QuestionView:
    return QuestionView(
        id=q.id,
        question=q.question,
        optionA=q.options["A"],
        optionB=q.options["B"],
        optionC=q.options["C"],
        optionD=q.options["D"],
        level=q.level,
        topic=q.topic,
        locale=q.locale,
        questionType=q.question_type,
        imageUrl=q.image_url,
    )


def _answer_data(outcome: AnswerOutcome) -> AnswerData:
    data = AnswerData(
        accepted=outcome.accepted,
        reason=outcome.reason,
        sessionStatus=_status_out(outcome.session),
    )
    if outcome.record is not None and outcome.breakdown is not None:
        b = outcome.breakdown
        data.answerRecord = _record_out(outcome.record)
        data.scoreResult = ScoreResult(
            basePoints=b.base_points,
            speedMultiplier=b.speed_multiplier,
            speedBonus=b.speed_bonus,
            streakBonus=b.streak_bonus,
            totalPoints=b.total,
        )
    return data


# ---------- routes ----------

@router.post("/start", response_model=ApiResponse[StartQuizData])
def start_quiz(body: StartQuizRequest, service: QuizSessionService = Depends(get_quiz_service)):
    s = service.start(
        body.phaseNumber,
        body.locale,
        user_id=body.userId,
        exclude_question_ids=body.excludeQuestions,
        ensure_image=body.ensureImage or body.forceImage,
    )
    return ApiResponse(
        message="Quiz session started successfully",
        data=StartQuizData(
            sessionId=s.session_id,
            phaseNumber=s.phase_number,
            totalQuestions=s.total_questions,
            timePerQuestion=service.time_per_question_ms,
            locale=s.locale,
            startedAt=s.started_at,
        ),
    )


@router.get("/question/{session_id}", response_model=ApiResponse[QuestionData])
def get_question(session_id: str, service: QuizSessionService = Depends(get_quiz_service)):
    s, q = service.current_question(session_id)
    return ApiResponse(
        data=QuestionData(
            sessionId=s.session_id,
            questionIndex=s.current_question_index + 1,
            totalQuestions=s.total_questions,
            question=_question_view(q),
            # le chrono est géré côté client
            timeRemaining=service.time_per_question_ms,
            timePerQuestion=service.time_per_question_ms,
            currentScore=s.score,
            currentStreak=s.streak_count,
        )
    )


@router.post("/answer", response_model=ApiResponse[AnswerData])
def submit_answer(body: AnswerRequest, service: QuizSessionService = Depends(get_quiz_service)):
    outcome = service.submit_answer(
        body.sessionId,
        question_id=body.questionId,
        selected_option=body.selectedOption,
        time_used=body.timeUsed,
        is_timeout=body.isTimeout,
    )
    message = None if outcome.accepted else "Session already completed"
    return ApiResponse(data=_answer_data(outcome), message=message)


@router.get("/session/{session_id}", response_model=ApiResponse[SessionSnapshot])
def get_session(session_id: str, service: QuizSessionService = Depends(get_quiz_service)):
    s = service.get_session(session_id)
    return ApiResponse(data=SessionSnapshot(**_snapshot_fields(s)))


@router.post("/finish/{session_id}", response_model=ApiResponse[FinishData])
def finish_quiz(
    session_id: str,
    body: Optional[FinishRequest] = Body(default=None),
    service: QuizSessionService = Depends(get_quiz_service),
):
    report = service.finish(session_id, reason=body.reason if body else None)
    return ApiResponse(
        message="Quiz session completed",
        data=FinishData(
            **_snapshot_fields(report.session),
            finalScore=report.final_score,
            accuracy=report.accuracy,
            passed=report.passed,
            averageTimePerQuestion=report.average_time_per_question,
            achievements=report.achievements,
            nextPhaseUnlocked=report.next_phase_unlocked,
        ),
    )


@router.get("/rules", response_model=ApiResponse[RulesData])
def get_rules(phaseNumber: Optional[int] = Query(default=None, ge=1, le=50)):
    rules = game_rules()
    if phaseNumber is not None:
        rules["phase"] = {
            "phaseNumber": phaseNumber,
            "distribution": [
                {"level": level, "count": count} for level, count in difficulty_distribution(phaseNumber)
            ],
        }
    return ApiResponse(data=rules)


@router.get("/pool-stats", response_model=ApiResponse[PoolStatsData])
def pool_stats(
    locale: str = Query(default=DEFAULT_LOCALE),
    phaseNumber: int = Query(default=1),
    service: QuizSessionService = Depends(get_quiz_service),
):
    st = service.pool_stats(locale, phaseNumber)
    return ApiResponse(
        message=f"{st.total_questions} questions available in {st.locale}",
        data=PoolStatsData(
            locale=st.locale,
            phaseNumber=st.phase_number,
            totalQuestions=st.total_questions,
            available=st.available,
            levels=st.levels,
        ),
    )


@router.get("/health", response_model=ApiResponse[QuizHealthData])
def quiz_health(service: QuizSessionService = Depends(get_quiz_service)):
    return ApiResponse(
        message="Quiz service is healthy",
        data=QuizHealthData(
            timestamp=datetime.now(timezone.utc),
            version=get_settings().APP_VERSION,
            activeSessions=service.active_sessions(),
        ),
    )
