"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import json
from typing import Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from credisphere.core.config import get_settings
from credisphere.core.database import Base
from credisphere.core.security import get_password_hash
from credisphere.core.session import Session
from credisphere.models import User
from credisphere.services.gateway import AnalysisGateway
from credisphere.services.report_repository import ReportRepository

CLASSIFY_PATH = "/add_context"
ANALYZE_PATH = "/selected-apis"
UPLOAD_PATH = "/upload-pdfs"
CHAT_PATH = "/chat"


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


class GatewayStub:
    """Routes gateway requests by path and records their bodies."""

    def __init__(self):
        self.handlers: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, path: str, handler) -> None:
        if not callable(handler):
            payload = handler
            handler = lambda request: json_response(payload)  # noqa: E731
        self.handlers[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"detail": "not found"})
        return handler(request)

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


async def _make_user(db: AsyncSession, email: str, organization: str) -> User:
    user = User(email=email, organization_name=organization, hashed_password=get_password_hash("secret123"))
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def user(db_session) -> User:
    return await _make_user(db_session, "analyst@firstbank.com", "First Bank")


@pytest_asyncio.fixture
async def other_user(db_session) -> User:
    return await _make_user(db_session, "intruder@otherbank.com", "Other Bank")


@pytest.fixture
def user_session(user) -> Session:
    return Session.from_user(user)


@pytest.fixture
def repository(db_session) -> ReportRepository:
    return ReportRepository(db_session)


@pytest.fixture
def gateway_stub() -> GatewayStub:
    return GatewayStub()


@pytest_asyncio.fixture
async def gateway(settings, gateway_stub):
    async with AnalysisGateway(settings, transport=httpx.MockTransport(gateway_stub)) as client:
        yield client
