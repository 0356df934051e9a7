"""
Shared pytest fixtures for backend tests.
"""
import pytest

from answer_cache import AnswerCache
from app import create_app
from config import DevConfig, ProdConfig
from errors import CollaboratorError
from helpers import RuntimeInfo
from pipeline import AnswerPipeline


class FakeClock:
    """Manually advanced replacement for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator:
    """
    Stands in for the completion call. Returns `answer` (or the next item of
    `outcomes`, raising it if it is an exception) and records every call.
    """

    def __init__(self, answer: str = "I led three teams shipping Python services.", outcomes=None):
        self.answer = answer
        self.outcomes = list(outcomes or [])
        self.calls = []

    def __call__(self, messages):
        self.calls.append(messages)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.answer

    @property
    def call_count(self) -> int:
        return len(self.calls)


class DevTestConfig(DevConfig):
    TESTING = True
    OPENAI_API_KEY = "sk-test"
    PORT = 3001
    CORS_ORIGINS = ["http://localhost:5173"]


class ProdTestConfig(ProdConfig):
    TESTING = True
    OPENAI_API_KEY = "sk-test"
    PORT = 3001
    FORCE_HTTPS = False
    CORS_ORIGINS = ["http://localhost:5173"]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cache(fake_clock):
    return AnswerCache(ttl_seconds=3600, sweep_interval=1800, clock=fake_clock)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def pipeline(cache, generator):
    return AnswerPipeline(cache, generator)


@pytest.fixture
def runtime():
    return RuntimeInfo(pid=4321, port=3001)


@pytest.fixture
def fatal_calls():
    return []


@pytest.fixture
def app(pipeline, runtime, fatal_calls):
    return create_app(DevTestConfig, pipeline=pipeline, runtime=runtime, on_fatal=fatal_calls.append)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def rate_limited_error():
    return CollaboratorError(
        "The AI service is receiving too many requests right now, please try again shortly.",
        status_code=429,
        detail="Rate limit reached for gpt-3.5-turbo",
    )


@pytest.fixture
def valid_payload():
    return {
        "question": "Why do you want this job?",
        "resume": "5 years Python, led 3 teams",
    }
