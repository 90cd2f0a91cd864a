"""Tests for the caller-facing command service."""

import pytest

from conftest import add_monitor
from shopwatch.services.commands import (
    AlreadyTrackedError,
    CommandService,
    InsufficientBalanceError,
    InvalidCredentialsError,
    InvalidScheduleError,
    MonitorNotFoundError,
    NotLoggedInError,
    ProductNotFoundError,
    ScanInProgressError,
    SetupOutcome,
    UpstreamUnavailableError,
)
from shopwatch.shop.client import ShopTransportError

STOCK = {
    "21": ("Netflix", 7, "10.000đ"),
    "108": ("Spotify", 0, "5.000đ"),
}


@pytest.fixture
def service(engine, shop):
    shop.set_stock(STOCK)
    return CommandService(engine=engine)


@pytest.mark.asyncio
async def test_login_stores_credentials(service, store, shop):
    shop.balance = "116.565đ"

    balance = await service.login("u1", "chat1", "alice", "pw")

    assert balance == "116.565đ"
    credential = await store.get_credential("u1")
    assert credential.username == "alice"
    assert credential.password == "pw"


@pytest.mark.asyncio
async def test_login_rejects_invalid_credentials(service, store, shop):
    shop.balance = "Sai tài khoản hoặc mật khẩu"

    with pytest.raises(InvalidCredentialsError):
        await service.login("u1", "chat1", "alice", "bad")
    assert await store.get_credential("u1") is None


@pytest.mark.asyncio
async def test_login_upstream_failure(service, shop):
    async def unreachable(username, password):
        raise ShopTransportError("ConnectError calling /api/GetBalance.php")

    shop.fetch_balance = unreachable

    with pytest.raises(UpstreamUnavailableError):
        await service.login("u1", "chat1", "alice", "pw")


@pytest.mark.asyncio
async def test_logout(service, logged_in):
    assert await service.logout("u1") is True
    assert await service.logout("u1") is False
    with pytest.raises(NotLoggedInError):
        await service.get_balance("u1")


@pytest.mark.asyncio
async def test_track_product(service, store, logged_in):
    monitor = await service.track_product("u1", "chat1", "21")

    assert monitor.last_amount == 7
    assert monitor.product_name == "Netflix"
    assert monitor.url.endswith("/product/21")

    with pytest.raises(AlreadyTrackedError):
        await service.track_product("u1", "chat1", "21")
    with pytest.raises(ProductNotFoundError):
        await service.track_product("u1", "chat1", "999")


@pytest.mark.asyncio
async def test_track_requires_login(service):
    with pytest.raises(NotLoggedInError):
        await service.track_product("u1", "chat1", "21")


@pytest.mark.asyncio
async def test_quick_setup(service, logged_in):
    await service.track_product("u1", "chat1", "21")

    results = await service.quick_setup("u1", "chat1")

    assert [(r.product_id, r.outcome) for r in results] == [
        ("21", SetupOutcome.ALREADY_TRACKED),
        ("78", SetupOutcome.NOT_FOUND),
        ("108", SetupOutcome.ADDED),
    ]
    assert len(await service.list_monitors("u1")) == 2


@pytest.mark.asyncio
async def test_stop_monitor_by_either_id(service, store, logged_in):
    first = await add_monitor(store, "21")
    await add_monitor(store, "108")
    await add_monitor(store, "21", user_id="u2")

    assert await service.stop_monitor("u1", str(first.id)) == 1
    assert await service.stop_monitor("u1", "108") == 1
    assert await service.stop_monitor("u1", "108") == 0
    assert len(await service.list_monitors("u2")) == 1


@pytest.mark.asyncio
async def test_enable_auto_buy(service, store, logged_in):
    monitor = await add_monitor(store, "21", last_amount=7, status="available")

    assert await service.set_auto_buy("u1", "21", True, amount=5, limit=20) == 1

    updated = await store.get_monitor(monitor.id)
    assert updated.auto_buy is True
    assert updated.auto_buy_amount == 5
    assert updated.buy_limit == 20
    assert updated.status == "monitoring"
    assert [m.id for m in await service.list_active_auto_buy("u1")] == [monitor.id]


@pytest.mark.asyncio
async def test_enable_auto_buy_checks_balance(service, store, shop, logged_in):
    monitor = await add_monitor(store, "21")
    shop.balance = "20.000đ"

    with pytest.raises(InsufficientBalanceError) as excinfo:
        await service.set_auto_buy("u1", str(monitor.id), True, amount=3)

    assert excinfo.value.required == 30000
    assert excinfo.value.balance == "20.000đ"
    assert (await store.get_monitor(monitor.id)).auto_buy is False


@pytest.mark.asyncio
async def test_enable_auto_buy_unknown_monitor(service, logged_in):
    with pytest.raises(MonitorNotFoundError):
        await service.set_auto_buy("u1", "55", True)


@pytest.mark.asyncio
async def test_disable_auto_buy_skips_checks(service, store, shop, logged_in):
    monitor = await add_monitor(store, "21", status="available", auto_buy=True)
    shop.balance = None

    await service.set_auto_buy("u1", "21", False)

    updated = await store.get_monitor(monitor.id)
    assert updated.auto_buy is False
    assert updated.status == "available"


@pytest.mark.asyncio
async def test_stop_all_auto_buy(service, store, logged_in):
    await add_monitor(store, "21", auto_buy=True)
    await add_monitor(store, "108", auto_buy=True)

    assert await service.stop_all_auto_buy("u1") == 2
    assert await service.list_active_auto_buy("u1") == []


@pytest.mark.asyncio
async def test_set_schedule(service, store, logged_in):
    monitor = await add_monitor(store, "21")

    assert await service.set_schedule("u1", "21", "9:05", amount=2, limit=6) == "09:05"

    updated = await store.get_monitor(monitor.id)
    assert updated.schedule_time == "09:05"
    assert updated.schedule_amount == 2
    assert updated.schedule_limit == 6
    assert updated.auto_buy is False


@pytest.mark.asyncio
async def test_set_schedule_rejects_bad_time(service, store, logged_in):
    await add_monitor(store, "21")
    with pytest.raises(InvalidScheduleError):
        await service.set_schedule("u1", "21", "25:00")


@pytest.mark.asyncio
async def test_catalog_queries(service, logged_in):
    assert await service.check_quantity("u1", "21") == 7
    assert await service.check_quantity("u1", "999") is None
    assert (await service.get_product("u1", "21"))["name"] == "Netflix"
    assert await service.get_product("u1", "999") is None

    lines = await service.watchlist_snapshot("u1")
    assert [(line.product_id, line.amount) for line in lines] == [("21", 7), ("108", 0)]


@pytest.mark.asyncio
async def test_buy_now_success(service, store, shop, logged_in):
    monitor = await add_monitor(store, "21", bought_count=1)
    shop.purchase_responses = [{"status": "success", "data": "x|y|z"}]

    outcome = await service.buy_now("u1", "21", 2)

    assert outcome.success
    assert outcome.attachment.content == b"x|y"
    assert shop.purchases == [("21", 2)]
    assert (await store.get_monitor(monitor.id)).bought_count == 1


@pytest.mark.asyncio
async def test_buy_now_low_balance(service, shop, logged_in):
    shop.purchase_responses = [{"status": "error", "message": "Không đủ tiền"}]

    outcome = await service.buy_now("u1", "21")

    assert not outcome.success
    assert outcome.error == "insufficient balance"
    assert "Không đủ tiền" in outcome.detail


@pytest.mark.asyncio
async def test_buy_now_transport_error(service, shop, logged_in):
    shop.purchase_responses = [ShopTransportError("HTTP 502 from /api/BResource.php", detail="bad gateway")]

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await service.buy_now("u1", "21")
    assert excinfo.value.detail == "bad gateway"


@pytest.mark.asyncio
async def test_scan_now(service, store, notifier, logged_in):
    empty = await service.scan_now("u1")
    assert empty.users_total == 0

    await add_monitor(store, "21", last_amount=0)
    summary = await service.scan_now("u1")

    assert summary.items_processed == 1
    assert notifier.kinds() == ["restock"]


@pytest.mark.asyncio
async def test_scan_now_requires_login(service):
    with pytest.raises(NotLoggedInError):
        await service.scan_now("u1")


@pytest.mark.asyncio
async def test_scan_now_while_user_is_scanned(service, engine, logged_in):
    engine.locks.try_acquire("u1")
    try:
        with pytest.raises(ScanInProgressError):
            await service.scan_now("u1")
    finally:
        engine.locks.release("u1")


@pytest.mark.asyncio
async def test_activity_log(service, logged_in):
    await service.track_product("u1", "chat1", "21")

    entries = await service.activity_log("u1")
    assert any("Tracking Netflix" in entry.message for entry in entries)

    assert await service.clear_activity_log("u1") == len(entries)
    assert await service.activity_log("u1") == []
