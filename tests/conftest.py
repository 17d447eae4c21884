import os

# Settings are read at import time; pin the test environment first
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["META_APP_ID"] = "1234567890"
os.environ["META_APP_SECRET"] = "test-app-secret"
os.environ["WEBHOOK_VERIFY_TOKEN"] = "test-verify-token"
os.environ["PUBLIC_BASE_URL"] = "https://channels.example.com"
os.environ["LOG_DIR"] = ""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import ProviderConfig
from db.db import Base
from db.models import ChannelAccount, ChannelProvider, ChannelStatus
from services.channelServices.connection_orchestrator import ConnectionOrchestrator
from services.channelServices.credential_store import CredentialStore
from services.channelServices.meta_graph_client import MetaGraphClient

PUBLIC_BASE_URL = "https://channels.example.com"


class FakeGraphAPI:
    """Scripted Graph API served through httpx.MockTransport"""

    def __init__(self, api_version: str = "v24.0"):
        self.prefix = f"/{api_version}/"
        self.routes: Dict[str, Tuple[int, Any, Optional[Exception]]] = {}
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    def on(self, path: str, json: Any = None, status_code: int = 200, raises: Optional[Exception] = None):
        self.routes[path] = (status_code, json, raises)
        return self

    def error(self, path: str, status_code: int, code: int, message: str = "Graph error"):
        return self.on(path, {"error": {"message": message, "type": "OAuthException", "code": code}}, status_code)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.split(self.prefix, 1)[-1]
        self.calls.append((path, dict(request.url.params)))
        if path not in self.routes:
            return httpx.Response(404, json={"error": {"message": f"Unknown path {path}", "code": 803}})
        status_code, body, raises = self.routes[path]
        if raises is not None:
            raise raises
        return httpx.Response(status_code, json=body)

    def called(self, path: str) -> List[Dict[str, str]]:
        return [params for called_path, params in self.calls if called_path == path]


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        app_id="1234567890",
        app_secret="test-app-secret",
        redirect_uri="https://app.example.com/dashboard",
        public_base_url=PUBLIC_BASE_URL,
        timeout_seconds=2.0,
    )


@pytest.fixture
def graph_api() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture
def graph_client(provider_config, graph_api) -> MetaGraphClient:
    return MetaGraphClient(provider_config, transport=httpx.MockTransport(graph_api.handler))


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore()


@pytest.fixture
def orchestrator(provider_config, graph_client, store) -> ConnectionOrchestrator:
    return ConnectionOrchestrator.from_config(provider_config, graph=graph_client, store=store)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def stub_long_lived_token(graph_api: FakeGraphAPI, token: str = "long-lived-token", expires_in: Optional[int] = 5183944):
    body = {"access_token": token, "token_type": "bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    graph_api.on("oauth/access_token", body)


def stub_no_business_discovery(graph_api: FakeGraphAPI):
    graph_api.on("debug_token", {"data": {"app_id": "1234567890", "granular_scopes": []}})
    graph_api.on("me/businesses", {"data": []})


def stub_phone_numbers(graph_api: FakeGraphAPI, waba_id: str, *phone_ids: str):
    graph_api.on(f"{waba_id}/phone_numbers", {"data": [
        {
            "id": phone_id,
            "display_phone_number": "+1 555-0100",
            "verified_name": "Trattoria Roma",
            "quality_rating": "GREEN",
        }
        for phone_id in phone_ids
    ]})


async def make_account(db: AsyncSession, **overrides) -> ChannelAccount:
    now = datetime.utcnow()
    values = dict(
        tenant_id=7,
        provider=ChannelProvider.WHATSAPP.value,
        channel_external_id="PH-1",
        business_account_id="WABA-9",
        access_token="stored-token",
        status=ChannelStatus.ACTIVE.value,
        is_active=True,
        connected_at=now,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    account = ChannelAccount(**values)
    db.add(account)
    await db.commit()
    await db.refresh(account)
    return account


async def all_accounts(db: AsyncSession) -> List[ChannelAccount]:
    db.expire_all()
    result = await db.execute(select(ChannelAccount).order_by(ChannelAccount.id))
    return list(result.scalars().all())
