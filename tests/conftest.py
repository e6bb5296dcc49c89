"""Pytest configuration and fixtures for Shout Out tests.

Provides a file-backed SQLite database, a fake ServiceTitan API served
through ``httpx.MockTransport`` and a recording Google Chat endpoint.
"""

from __future__ import annotations

import logging
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shoutout.config import AppConfig, DBConfig, ServiceTitanConfig, reset_config
from shoutout.db.models import Base, PricebookItemModel
from shoutout.integration.servicetitan import ServiceTitanClient

TENANT = "123"
BASE_URL = "https://api.servicetitan.test"
AUTH_URL = "https://auth.servicetitan.test/connect/token"
WEBHOOK_URL = "https://chat.googleapis.com/v1/spaces/AAA/messages?key=k&token=t"


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("ST_BASE_URL", BASE_URL)
    monkeypatch.setenv("ST_AUTH_URL", AUTH_URL)
    monkeypatch.setenv("ST_TENANT_ID", TENANT)
    monkeypatch.setenv("ST_APP_KEY", "app-key")
    monkeypatch.setenv("ST_CLIENT_ID", "client-id")
    monkeypatch.setenv("ST_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo handlers installed by configure_logging() during a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def st_config() -> ServiceTitanConfig:
    return ServiceTitanConfig(
        base_url=BASE_URL,
        auth_url=AUTH_URL,
        tenant_id=TENANT,
        app_key="app-key",
        client_id="client-id",
        client_secret="client-secret",
        request_delay_seconds=0,
        page_size=2,
        retry_attempts=3,
    )


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'shoutout.db'}"


@pytest.fixture
def app_config(st_config: ServiceTitanConfig, db_url: str) -> AppConfig:
    return AppConfig(db=DBConfig(url=db_url), servicetitan=st_config)


@pytest_asyncio.fixture()
async def session_factory(db_url: str) -> async_sessionmaker[AsyncSession]:
    """Fresh database per test. NullPool keeps connections off any one event loop."""
    engine = create_async_engine(db_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def add_pricebook_item(session_factory: async_sessionmaker[AsyncSession]):
    """Factory inserting one pricebook row with the given cross-sale group."""

    async def _add(sku_id: int, cross_sale_group: str | None) -> None:
        async with session_factory() as session:
            session.add(
                PricebookItemModel(
                    sku_id=sku_id,
                    sku_code=f"SKU-{sku_id}",
                    sku_type="Material",
                    display_name=f"Item {sku_id}",
                    cross_sale_group=cross_sale_group,
                    price=Decimal("10"),
                    cost=Decimal("5"),
                )
            )
            await session.commit()

    return _add


@pytest.fixture
def make_estimate():
    return build_estimate


def build_estimate(
    estimate_id: int = 175678075,
    name: str = "Option C - System Update",
    subtotal: float = 1250.0,
    sold_on: str = "2026-10-16T15:30:00Z",
    sold_by: int | None = 11,
    customer_id: int | None = 21,
    items: list[dict] | None = None,
) -> dict:
    """Sold estimate payload shaped like the ServiceTitan sales API."""
    if items is None:
        items = [
            {"sku": {"id": 1, "displayName": "Whole-home filter"}, "total": 50.0, "qty": 1},
            {"sku": {"id": 2, "displayName": "Labor"}, "total": 1200.0, "qty": 1},
        ]
    return {
        "id": estimate_id,
        "name": name,
        "soldOn": sold_on,
        "subtotal": subtotal,
        "soldBy": sold_by,
        "customerId": customer_id,
        "items": items,
    }


class FakeServiceTitan:
    """In-memory stand-in for the ServiceTitan tenant APIs."""

    def __init__(self):
        self.estimates: list[dict] = []
        # A str record is served as a non-JSON 200 body
        self.technicians: dict[int, dict | str] = {11: {"id": 11, "name": "Jane Smith"}}
        self.customers: dict[int, dict | str] = {21: {"id": 21, "name": "Doe, John"}}
        self.pricebook: dict[str, list[dict]] = {"materials": [], "equipment": [], "services": []}
        self.token_requests = 0
        self.requests: list[httpx.Request] = []
        # Status codes returned (in order) before serving normally
        self.failures: list[int] = []

    def _tenant(self, service: str) -> str:
        return f"/{service}/v2/tenant/{TENANT}/"

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == AUTH_URL:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "token-abc", "expires_in": 900})

        self.requests.append(request)
        if self.failures:
            return httpx.Response(self.failures.pop(0), text="upstream trouble")

        path = request.url.path
        params = request.url.params
        page = int(params.get("page", 1))
        page_size = int(params.get("pageSize", 50))

        if path == self._tenant("sales") + "estimates":
            chunk = self.estimates[(page - 1) * page_size : page * page_size]
            return httpx.Response(200, json={"page": page, "data": chunk})

        if path == self._tenant("sales") + "estimates/export":
            start = int(params.get("continueFrom", 0))
            chunk = self.estimates[start : start + page_size]
            more = start + page_size < len(self.estimates)
            return httpx.Response(
                200,
                json={"data": chunk, "continueFrom": str(start + page_size) if more else None},
            )

        if path.startswith(self._tenant("settings") + "technicians/"):
            record = self.technicians.get(int(path.rsplit("/", 1)[-1]))
            if isinstance(record, str):
                return httpx.Response(200, text=record)
            return httpx.Response(200, json=record) if record else httpx.Response(404)

        if path == self._tenant("settings") + "technicians":
            records = list(self.technicians.values())
            chunk = records[(page - 1) * page_size : page * page_size]
            return httpx.Response(
                200, json={"data": chunk, "hasMore": page * page_size < len(records)}
            )

        if path.startswith(self._tenant("crm") + "customers/"):
            record = self.customers.get(int(path.rsplit("/", 1)[-1]))
            if isinstance(record, str):
                return httpx.Response(200, text=record)
            return httpx.Response(200, json=record) if record else httpx.Response(404)

        if path.startswith(self._tenant("pricebook")):
            records = self.pricebook[path.rsplit("/", 1)[-1]]
            chunk = records[(page - 1) * page_size : page * page_size]
            return httpx.Response(
                200, json={"data": chunk, "hasMore": page * page_size < len(records)}
            )

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def fake_st() -> FakeServiceTitan:
    return FakeServiceTitan()


@pytest_asyncio.fixture()
async def st_client(st_config: ServiceTitanConfig, fake_st: FakeServiceTitan) -> ServiceTitanClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_st.handler))
    client = ServiceTitanClient(st_config, http=http, backoff_multiplier=0)
    try:
        yield client
    finally:
        await http.aclose()


class ChatRecorder:
    """Records Google Chat webhook posts and answers with a fixed status."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.posts: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.posts.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="chat error")
        return httpx.Response(self.status_code, json={"name": "spaces/AAA/messages/1"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def chat() -> ChatRecorder:
    return ChatRecorder()


@pytest.fixture
def webhook_url() -> str:
    return WEBHOOK_URL
