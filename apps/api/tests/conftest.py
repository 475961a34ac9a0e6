import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import Settings
from database import Base
import models  # noqa: F401
from services.connectors import state_store
from services.connectors.errors import StoreError
from services.connectors.types import ConnectionRecord


TEST_ENCRYPTION_KEY = "test-encryption-key-with-enough-entropy-123"


@pytest.fixture(autouse=True)
def reset_local_oauth_state():
    """Keep in-process pending OAuth state isolated between tests."""
    state_store._local_pending.clear()
    yield
    state_store._local_pending.clear()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        FRONTEND_URL="http://frontend.test",
        BACKEND_URL=None,
        API_PORT=3001,
        API_HTTPS_PORT=3443,
        INSTAGRAM_CLIENT_ID="ig-client",
        INSTAGRAM_CLIENT_SECRET="ig-secret",
        GOOGLE_CLIENT_ID="google-client",
        GOOGLE_CLIENT_SECRET="google-secret",
        TWITTER_CLIENT_ID="tw-client",
        TWITTER_CLIENT_SECRET="tw-secret",
        SHOPIFY_API_KEY="shop-key",
        SHOPIFY_API_SECRET="shop-secret",
        CALENDLY_CLIENT_ID="cal-client",
        CALENDLY_CLIENT_SECRET="cal-secret",
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        OAUTH_STATE_TTL_SECONDS=600,
    )


@pytest.fixture
def bare_settings() -> Settings:
    """No platform credentials configured at all."""
    return Settings(
        _env_file=None,
        FRONTEND_URL="http://frontend.test",
        BACKEND_URL=None,
        INSTAGRAM_CLIENT_ID="",
        INSTAGRAM_CLIENT_SECRET="",
        GOOGLE_CLIENT_ID="",
        GOOGLE_CLIENT_SECRET="",
        TWITTER_CLIENT_ID="",
        TWITTER_CLIENT_SECRET="",
        SHOPIFY_API_KEY="",
        SHOPIFY_API_SECRET="",
        CALENDLY_CLIENT_ID="",
        CALENDLY_CLIENT_SECRET="",
    )


Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeProviderAPI:
    """httpx MockTransport handler routing on (method, url without query)."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        json: Any = None,
        status_code: int = 200,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        responder: Responder = handler or httpx.Response(status_code, json=json if json is not None else {})
        self.routes.setdefault((method.upper(), url), []).append(responder)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
        responders = self.routes.get(key)
        if not responders:
            return httpx.Response(404, json={"error": "not_found", "error_description": f"no route {key}"})
        responder = responders.pop(0) if len(responders) > 1 else responders[0]
        if callable(responder) and not isinstance(responder, httpx.Response):
            return responder(request)
        return responder

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method.upper()
            and f"{request.url.scheme}://{request.url.host}{request.url.path}" == url
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def provider_api() -> FakeProviderAPI:
    return FakeProviderAPI()


class InMemoryConnectionStore:
    """Dict-backed ConnectionStore keyed on (user_id, platform)."""

    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str], ConnectionRecord] = {}
        self.fail_writes = False
        self.writes = 0

    async def upsert(self, record: ConnectionRecord) -> ConnectionRecord:
        if self.fail_writes:
            raise StoreError("write failed")
        self.writes += 1
        self.rows[(record.user_id, record.platform)] = replace(record)
        return replace(record)

    async def update(self, record: ConnectionRecord) -> ConnectionRecord:
        if self.fail_writes:
            raise StoreError("write failed")
        if (record.user_id, record.platform) not in self.rows:
            raise StoreError("missing row")
        self.writes += 1
        self.rows[(record.user_id, record.platform)] = replace(record)
        return replace(record)

    async def select_by_user(self, user_id: str) -> List[ConnectionRecord]:
        return [replace(record) for (uid, _), record in self.rows.items() if uid == user_id]

    async def select_one(self, user_id: str, platform: str) -> Optional[ConnectionRecord]:
        record = self.rows.get((user_id, platform))
        return replace(record) if record is not None else None

    async def delete(self, user_id: str, platform: str) -> None:
        self.rows.pop((user_id, platform), None)


@pytest.fixture
def memory_store() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "connections.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()
