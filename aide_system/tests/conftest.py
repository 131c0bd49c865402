"""Pytest configuration for the aide test suite."""

import os


def _ensure_test_env() -> None:
    """Seed settings before any aide module reads them."""
    os.environ.setdefault("LLM_PROVIDER", "mock")
    os.environ.setdefault("EMBEDDING_DIM", "8")
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


_ensure_test_env()

import hashlib  # noqa: E402
import math  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from aide.core.errors import ToolError  # noqa: E402
from aide.db.session import init_db  # noqa: E402
from aide.jobs.queue import JobQueue  # noqa: E402
from aide.tools.registry import ToolContext, ToolRegistry, require_params  # noqa: E402

DIM = 8


def vector_for(text: str) -> list[float]:
    digest = hashlib.sha256((text or "").encode()).digest()[:DIM]
    values = [(b / 127.5) - 1.0 for b in digest]
    norm = math.sqrt(sum(v * v for v in values)) or 1.0
    return [v / norm for v in values]


class FakeAI:
    """
    Scripted completion collaborator.

    ``replies`` are consumed in order; an Exception instance in the script
    is raised instead of returned. Embeddings come from ``vectors`` when the
    text is listed there, otherwise they are hash-derived.
    """

    def __init__(self, replies=None, vectors=None, embed_error=None):
        self.replies = list(replies or [])
        self.vectors = dict(vectors or {})
        self.embed_error = embed_error
        self.calls: list[dict] = []
        self.embedded: list[str] = []

    async def complete(self, messages, tools=None):
        self.calls.append({"messages": messages, "tools": tools})
        if not self.replies:
            return "ok"
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def embed(self, text):
        self.embedded.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return list(self.vectors.get(text) or vector_for(text))


def make_tools(calls: list | None = None) -> ToolRegistry:
    calls = calls if calls is not None else []
    reg = ToolRegistry()

    @reg.register("search_contacts", "Search contacts")
    async def search_contacts(ctx: ToolContext, params: dict):
        calls.append(("search_contacts", ctx.user_id, params))
        return {"contacts": [{"name": "Ada Lovelace", "email": "ada@example.com"}]}

    @reg.register("send_email", "Send an email")
    async def send_email(ctx: ToolContext, params: dict):
        require_params(params, "to", "subject")
        calls.append(("send_email", ctx.user_id, params))
        return {"status": "sent", "message": f"Email sent to {params['to']}"}

    @reg.register("explode", "Always fails")
    async def explode(ctx: ToolContext, params: dict):
        calls.append(("explode", ctx.user_id, params))
        raise ToolError("service unavailable")

    return reg


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'aide-test.db'}")
    await init_db(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def tool_calls():
    return []


@pytest.fixture
def tools(tool_calls):
    return make_tools(tool_calls)


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def queue():
    return JobQueue({"ai": 2, "sync": 2})
