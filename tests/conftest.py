"""Shared fixtures: temporary SQLite database, scripted LLM, in-process HTTP client."""

import os
import tempfile
from datetime import timedelta

_TMP_DIR = tempfile.mkdtemp(prefix="bubblechat-tests-")
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["OPENAI_API_KEY"] = ""
os.environ["MLFLOW_ENABLED"] = "false"

import httpx
import pytest
import pytest_asyncio

from bubblechat.core.background import background
from bubblechat.core.security import issue_token
from bubblechat.db.session import AsyncSessionLocal, engine, session_scope
from bubblechat.models import Base, Persona, User
from bubblechat.services.llm_service import Candidate, CompletionResult, get_llm_service
from main import create_application


class FakeLLM:
    """Scripted stand-in for LLMService. Queue results (or exceptions) in order."""

    def __init__(self) -> None:
        self.script: list = []
        self.calls: list[dict] = []
        self.summary_prompts: list[str] = []
        self.summary_text = "Maya is a warm, funny friend who loves chai and old films."
        self.default = CompletionResult(candidates=[Candidate(text="Hey there!&&&How are you doing?")])

    def queue(self, *results) -> None:
        self.script.extend(results)

    async def complete(self, turns, system_instruction, user_id="unknown"):
        self.calls.append(
            {"turns": list(turns), "system_instruction": system_instruction, "user_id": user_id}
        )
        result = self.script.pop(0) if self.script else self.default
        if isinstance(result, BaseException):
            raise result
        return result

    async def summarize(self, prompt):
        self.summary_prompts.append(prompt)
        return self.summary_text


@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await background.drain()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return AsyncSessionLocal


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def app(fake_llm):
    application = create_application()
    application.dependency_overrides[get_llm_service] = lambda: fake_llm
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def seed_user():
    async def _seed(phone="+15550001111", push_token=None):
        async with session_scope() as db:
            db.add(User(phone=phone, push_token=push_token))
        return phone

    return _seed


@pytest.fixture
def seed_persona():
    async def _seed(persona_id="maya", name="Maya", **fields):
        fields.setdefault("system_prompt", "You are Maya, a cheerful friend.")
        async with session_scope() as db:
            db.add(Persona(id=persona_id, name=name, **fields))
        return persona_id

    return _seed


def make_auth_headers(phone="+15550001111", expired=False, fcm_token=None) -> dict:
    delta = timedelta(seconds=-60) if expired else timedelta(minutes=5)
    headers = {"Authorization": f"Bearer {issue_token(phone, expires_delta=delta)}"}
    if fcm_token:
        headers["X-FCM-Token"] = fcm_token
    return headers


@pytest.fixture
def auth_headers():
    return make_auth_headers
