"""Shared fixtures: a temporary database, a fake shop and a recording notifier."""

from datetime import datetime
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from shopwatch.db.models import Base
from shopwatch.db.session import make_session_factory
from shopwatch.db.store import MonitorStore
from shopwatch.engine.locks import UserLockRegistry
from shopwatch.engine.scan_engine import ScanEngine
from shopwatch.engine.schedule import reference_tz
from shopwatch.notify.events import Notification
from shopwatch.shop.catalog_cache import CatalogCache
from shopwatch.shop.schemas import Catalog, PurchaseResponse

BASE_URL = "https://shop.test"


def make_catalog(products: dict[str, tuple[str, Any, Any]], category_id: str = "900") -> Catalog:
    """Build a one-category catalog from {id: (name, amount, price)}."""
    return Catalog.model_validate(
        {
            "categories": [
                {
                    "id": category_id,
                    "name": "Accounts",
                    "accounts": [
                        {"id": pid, "name": name, "amount": amount, "price": price}
                        for pid, (name, amount, price) in products.items()
                    ],
                }
            ]
        }
    )


class FakeShopClient:
    """In-memory stand-in for ShopClient."""

    def __init__(self):
        self.base_url = BASE_URL
        self.catalog = make_catalog({})
        self.balance: Optional[str] = "1.000.000đ"
        self.purchase_responses: list[Any] = []
        self.catalog_calls = 0
        self.purchases: list[tuple[str, int]] = []
        self.closed = False

    def set_stock(self, products: dict[str, tuple[str, Any, Any]]) -> None:
        self.catalog = make_catalog(products)

    async def fetch_catalog(self, username: str, password: str) -> Catalog:
        self.catalog_calls += 1
        return self.catalog

    async def fetch_balance(self, username: str, password: str) -> Optional[str]:
        return self.balance

    async def purchase(self, username: str, password: str, product_id: str, amount: int) -> PurchaseResponse:
        self.purchases.append((product_id, amount))
        response = self.purchase_responses.pop(0) if self.purchase_responses else {"status": "success", "data": []}
        if isinstance(response, Exception):
            raise response
        return PurchaseResponse.model_validate(response)

    async def close(self):
        self.closed = True


class RecordingNotifier:
    """Captures notifications instead of delivering them."""

    def __init__(self):
        self.sent: list[Notification] = []
        self.deleted: list[tuple[str, int]] = []
        self._next_id = 100

    async def send(self, notification: Notification) -> Optional[int]:
        self.sent.append(notification)
        self._next_id += 1
        return self._next_id

    async def delete(self, chat_id: str, message_id: int) -> bool:
        self.deleted.append((chat_id, message_id))
        return True

    def kinds(self) -> list[str]:
        return [n.kind.value for n in self.sent]


def local_time(hour: int, minute: int) -> datetime:
    return datetime(2026, 3, 14, hour, minute, 5, tzinfo=reference_tz())


@pytest.fixture
async def store(tmp_path):
    """Store over a fresh temporary sqlite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield MonitorStore(make_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def shop():
    return FakeShopClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    """Mutable clock; set ``clock.now`` to move time."""

    class Clock:
        now = local_time(9, 0)

        def __call__(self) -> datetime:
            return self.now

    return Clock()


@pytest.fixture
def engine(store, shop, notifier, clock):
    cache = CatalogCache(shop.fetch_catalog, ttl_seconds=0)
    return ScanEngine(
        store=store,
        cache=cache,
        client=shop,
        notifier=notifier,
        locks=UserLockRegistry(),
        clock=clock,
    )


@pytest.fixture
async def logged_in(store):
    """Store credentials for user "u1"."""
    await store.save_credential("u1", "chat1", "alice", "secret")
    return "u1"


async def add_monitor(store: MonitorStore, product_id: str = "21", last_amount: int = 0, user_id: str = "u1", **values):
    monitor = await store.create_monitor(
        user_id=user_id,
        chat_id=f"chat-{user_id}",
        product_id=product_id,
        url=f"{BASE_URL}/product/{product_id}",
        product_name=f"Product {product_id}",
        last_amount=last_amount,
    )
    if values:
        await store.update_monitor(monitor.id, **values)
    return await store.get_monitor(monitor.id)


