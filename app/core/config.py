from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_QUESTIONS_PATH = str(Path(__file__).resolve().parent.parent / "data" / "questions.json")


class Settings(BaseSettings):
    # Base
    APP_ENV: str = "dev"  # dev | staging | prod | test
    APP_NAME: str = "AstroQuiz API"
    APP_VERSION: str = "1.0.0"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Questions
    QUESTIONS_PATH: str = DEFAULT_QUESTIONS_PATH

    # Règles de jeu
    QUESTIONS_PER_PHASE: int = 10
    TIME_PER_QUESTION_MS: int = 30000
    TIME_GRACE_MS: int = 2000  # tolérance réseau entre temps client et temps serveur

    # Sessions
    SESSION_TTL_SECONDS: int = 60 * 60  # 1h d'inactivité
    MAX_SESSIONS: int = 10000

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
