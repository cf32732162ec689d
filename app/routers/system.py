from fastapi import APIRouter, Depends

from app.core.config import Settings
from app.core.deps import get_quiz_service, get_settings_dep
from app.services.quiz_engine import QuizSessionService

router = APIRouter(tags=["system"])


@router.get("/health")
def health(
    service: QuizSessionService = Depends(get_quiz_service),
    s: Settings = Depends(get_settings_dep),
):
    return {"status": "ok", "version": s.APP_VERSION, "activeSessions": service.active_sessions()}


@router.get("/version")
def version(s: Settings = Depends(get_settings_dep)):
    return {
        "name": s.APP_NAME,
        "version": s.APP_VERSION,
        "env": s.APP_ENV,
        "questionsPerPhase": s.QUESTIONS_PER_PHASE,
        "timePerQuestion": s.TIME_PER_QUESTION_MS,
    }
