"""
Shared fixtures: an in-memory database per test, an API client with the
database and LLM dependencies overridden, and fakes for vendor HTTP calls.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mission_control import models  # noqa: F401
from mission_control.config import settings
from mission_control.database import Base, get_db
from mission_control.main import app
from mission_control.routers.chat import get_llm_service


class FakeLLM:
    """Stands in for LLMService; replies are queued or echo the last message."""

    model_id = "fake-model"

    def __init__(self, replies: Optional[List[str]] = None, chunks: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.chunks = chunks or ["Hello", " there"]
        self.calls: List[Dict[str, Any]] = []

    async def chat(self, history, system_prompt=None, temperature=None, max_tokens=None, model=None):
        self.calls.append({
            "history": list(history),
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "model": model,
        })
        content = self.replies.pop(0) if self.replies else f"echo: {history[-1]['content']}"
        return {"content": content, "tokens_used": 10, "generation_time": 1, "model_id": model or self.model_id}

    async def chat_stream(self, history, system_prompt=None, temperature=None, max_tokens=None, model=None):
        self.calls.append({"history": list(history), "system_prompt": system_prompt, "model": model})
        for chunk in self.chunks:
            yield chunk

    async def list_models(self):
        return [{"id": self.model_id, "owned_by": "test", "created": None}]


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, body: bytes = b"", reason: str = "OK"):
        self.status = status
        self.reason = reason
        self._payload = payload
        self._body = body

    async def json(self, content_type: Optional[str] = "application/json"):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload

    async def read(self) -> bytes:
        return self._body

    async def text(self) -> str:
        if self._payload is not None:
            return json.dumps(self._payload)
        return self._body.decode()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """
    Minimal aiohttp.ClientSession double. ``responses`` are returned in
    order; an exception instance in the queue is raised instead.
    """

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, kwargs: Dict[str, Any]):
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_token(sub: str = "user-1", email: Optional[str] = "user@example.com") -> str:
    claims = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(hours=1)}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(sub: str = "user-1") -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub)}"}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
async def client(session_factory, fake_llm, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_service] = lambda: fake_llm

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
