from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from app.services.rules import DEFAULT_LOCALE, DEFAULT_TIME_USED_MS, TIME_PER_QUESTION_MS
from app.services.session_state import FinishReason, SessionStatus

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Enveloppe commune à toutes les réponses /v1/quiz."""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


# ---------- start ----------

class StartQuizRequest(BaseModel):
    phaseNumber: int = Field(..., description="Phase jouée (1-50)")
    locale: str = Field(default=DEFAULT_LOCALE, description="en | pt | es | fr")
    userId: Optional[str] = None
    excludeQuestions: List[int] = Field(default_factory=list, description="Ids déjà vus, jamais servis")
    ensureImage: bool = True
    forceImage: bool = False


class StartQuizData(BaseModel):
    sessionId: str
    phaseNumber: int
    totalQuestions: int
    timePerQuestion: int
    locale: str
    startedAt: datetime


# ---------- question ----------

class QuestionView(BaseModel):
    # correctOption et explication ne sont jamais envoyés avant la réponse
    id: int
    question: str
    optionA: str
    optionB: str
    optionC: str
    optionD: str
    level: int
    topic: str
    locale: str
    questionType: str
    imageUrl: Optional[str] = None


class QuestionData(BaseModel):
    sessionId: str
    questionIndex: int = Field(..., description="Numéro de la question (à partir de 1)")
    totalQuestions: int
    question: QuestionView
    timeRemaining: int
    timePerQuestion: int
    currentScore: int
    currentStreak: int


# ---------- answer ----------

class AnswerRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)
    questionId: int = Field(..., gt=0)
    selectedOption: Optional[str] = Field(None, description="A | B | C | D (facultatif si isTimeout)")
    timeUsed: int = Field(default=DEFAULT_TIME_USED_MS, ge=0, le=TIME_PER_QUESTION_MS, description="ms, déclaré par le client")
    isTimeout: bool = False


class AnswerRecordOut(BaseModel):
    questionId: int
    selectedOption: Optional[str] = None
    correctOption: str
    isCorrect: bool
    isTimeout: bool
    timeUsed: int
    points: int
    level: int
    timeSuspect: bool = False
    answeredAt: datetime


class ScoreResult(BaseModel):
    basePoints: int
    speedMultiplier: float
    speedBonus: int
    streakBonus: int
    totalPoints: int


class SessionStatusOut(BaseModel):
    status: SessionStatus
    currentQuestionIndex: int
    totalQuestions: int
    score: int
    streakCount: int
    maxStreak: int
    correctAnswers: int
    incorrectAnswers: int
    perfectBonus: int
    isPhaseComplete: bool


class AnswerData(BaseModel):
    accepted: bool
    reason: Optional[str] = None
    answerRecord: Optional[AnswerRecordOut] = None
    scoreResult: Optional[ScoreResult] = None
    sessionStatus: SessionStatusOut


# ---------- session / finish ----------

class SessionSnapshot(BaseModel):
    sessionId: str
    userId: Optional[str] = None
    phaseNumber: int
    locale: str
    status: SessionStatus
    endReason: Optional[FinishReason] = None
    totalQuestions: int
    currentQuestionIndex: int
    answers: List[AnswerRecordOut]
    score: int
    streakCount: int
    maxStreak: int
    correctAnswers: int
    incorrectAnswers: int
    totalTime: int
    perfectBonus: int
    startedAt: datetime
    completedAt: Optional[datetime] = None


class FinishRequest(BaseModel):
    reason: Optional[FinishReason] = None


class FinishData(SessionSnapshot):
    finalScore: int
    accuracy: int
    passed: bool
    averageTimePerQuestion: int
    achievements: List[str]
    nextPhaseUnlocked: bool


# ---------- meta ----------

class PoolStatsData(BaseModel):
    locale: str
    phaseNumber: int
    totalQuestions: int
    available: bool
    levels: List[int]


class QuizHealthData(BaseModel):
    status: str = "ok"
    timestamp: datetime
    version: str
    activeSessions: int


RulesData = Dict[str, Any]
