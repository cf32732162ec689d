from fastapi import Request

from app.core.config import get_settings
from app.services.quiz_engine import QuizSessionService


def get_settings_dep():
    return get_settings()


def get_quiz_service(request: Request) -> QuizSessionService:
    """
    Fournit le service de sessions en dépendance (DI).
    Une instance par application (créée dans create_app).
    """
    return request.app.state.quiz_service
