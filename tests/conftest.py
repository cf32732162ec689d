import json
import random

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import create_app
from app.services.question_bank import QuestionBank, parse_question
from app.services.quiz_engine import QuizSessionService
from app.services.session_store import SessionStore

TOPICS = ["Solar System", "Stars", "Moon", "Galaxies"]


def correct_option(question_id: int) -> str:
    return "ABCD"[question_id % 4]


def wrong_option(question_id: int) -> str:
    return "ABCD"[(question_id + 1) % 4]


def _record(qid: int, locale: str, level: int) -> dict:
    return {
        "id": qid,
        "locale": locale,
        "level": level,
        "topic": TOPICS[qid % len(TOPICS)],
        "question": f"Question {qid} ({locale}, level {level})",
        "optionA": "a", "optionB": "b", "optionC": "c", "optionD": "d",
        "correctOption": correct_option(qid),
        "explanation": f"Explanation {qid}",
    }


def corpus() -> list:
    """
    en : 12 questions niveau 1 (ids 1-12) + 4 par niveau 2..5 (ids 13-28)
    pt : 3 questions niveau 1 (ids 101-103)
    es, fr : aucune
    """
    items = [_record(i, "en", 1) for i in range(1, 13)]
    qid = 13
    for level in (2, 3, 4, 5):
        for _ in range(4):
            items.append(_record(qid, "en", level))
            qid += 1
    items += [_record(i, "pt", 1) for i in range(101, 104)]
    return items


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def bank():
    return QuestionBank([parse_question(r) for r in corpus()], rng=random.Random(42))


@pytest.fixture()
def store(clock):
    return SessionStore(ttl_seconds=3600, max_sessions=100, clock=clock)


@pytest.fixture()
def service(store, bank, clock):
    return QuizSessionService(store, bank, clock=clock)


@pytest.fixture()
def questions_file(tmp_path):
    path = tmp_path / "questions.json"
    path.write_text(json.dumps(corpus()), encoding="utf-8")
    return path


@pytest.fixture()
def test_client(questions_file, monkeypatch):
    """
    Crée un TestClient avec un corpus de questions temporaire (isolé)
    et un store neuf pour chaque test.
    """
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("APP_NAME", "AstroQuiz API (tests)")
    monkeypatch.setenv("QUESTIONS_PATH", str(questions_file))
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost")

    # IMPORTANT: vider le cache des settings pour prendre en compte les env
    get_settings.cache_clear()

    app = create_app()
    yield TestClient(app)

    get_settings.cache_clear()
