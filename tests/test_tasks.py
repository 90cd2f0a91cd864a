"""Tests for the background ticks and their scheduling."""

import asyncio
from datetime import timedelta

import pytest

from conftest import add_monitor, make_catalog
from shopwatch.engine.scan_engine import ScanSummary
from shopwatch.engine.watchlist import WatchlistTracker, snapshot
from shopwatch.notify.events import NotificationKind
from shopwatch.worker.scheduler import setup_scheduler
from shopwatch.worker.tasks import TaskRunner


@pytest.fixture
def runner(engine):
    return TaskRunner(engine=engine, watchlist=WatchlistTracker(["21", "108"]))


@pytest.mark.asyncio
async def test_scan_tick_processes_all_monitors(runner, store, shop, notifier, logged_in):
    await add_monitor(store, "21", last_amount=0)
    shop.set_stock({"21": ("Netflix", 5, "10.000đ")})

    summary = await runner.scan_all_monitors()

    assert summary.items_processed == 1
    assert notifier.kinds() == ["restock"]
    assert runner.last_scan_time is not None
    assert runner.last_summary is summary


@pytest.mark.asyncio
async def test_scan_tick_is_not_reentrant(runner, engine, store, logged_in):
    await add_monitor(store, "21")
    gate = asyncio.Event()
    calls = []

    async def slow_process(monitors):
        calls.append(len(monitors))
        await gate.wait()
        return ScanSummary()

    engine.process_monitors = slow_process

    first = asyncio.create_task(runner.scan_all_monitors())
    while not calls:
        await asyncio.sleep(0)

    assert runner.scan_running
    assert await runner.scan_all_monitors() is None

    gate.set()
    await first
    assert calls == [1]
    assert not runner.scan_running


@pytest.mark.asyncio
async def test_scan_tick_swallows_faults(runner, engine):
    async def broken():
        raise RuntimeError("database is gone")

    engine.store.list_monitors = broken

    assert await runner.scan_all_monitors() is None
    assert not runner.scan_running


@pytest.mark.asyncio
async def test_watchlist_reports_only_changes(runner, store, shop, notifier, logged_in):
    await add_monitor(store, "21")
    shop.set_stock({"21": ("Netflix", 5, "10.000đ"), "108": ("Spotify", 0, "5.000đ")})

    assert await runner.watchlist_report() == 1
    report = notifier.sent[-1]
    assert report.kind == NotificationKind.WATCHLIST_REPORT
    assert report.chat_id == "chat-u1"
    assert [(line.product_id, line.is_new) for line in report.lines] == [("21", True), ("108", False)]

    assert await runner.watchlist_report() == 0
    assert len(notifier.sent) == 1

    shop.set_stock({"21": ("Netflix", 3, "10.000đ"), "108": ("Spotify", 2, "5.000đ")})
    assert await runner.watchlist_report() == 1
    assert [line.delta for line in notifier.sent[-1].lines] == [-2, 2]
    assert notifier.deleted == [("chat-u1", 101)]
    assert runner.last_watchlist_time is not None


@pytest.mark.asyncio
async def test_watchlist_skips_users_without_credentials(runner, store, shop, notifier):
    await add_monitor(store, "21", user_id="ghost")
    shop.set_stock({"21": ("Netflix", 5, "10.000đ")})

    assert await runner.watchlist_report() == 0
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_close_releases_clients(runner, shop):
    await runner.close()
    assert shop.closed


def test_tracker_first_sighting_without_stock_is_silent():
    tracker = WatchlistTracker(["21"])
    lines, changed = tracker.observe("u1", make_catalog({"21": ("Netflix", 0, "1đ")}))
    assert not changed
    assert lines[0].delta is None
    assert len(tracker) == 1


def test_snapshot_reports_missing_products_as_zero():
    lines = snapshot(make_catalog({"21": ("Netflix", 4, "1đ")}), ["21", "999"])
    assert [(line.product_id, line.amount, line.price) for line in lines] == [
        ("21", 4, "1đ"),
        ("999", 0, "N/A"),
    ]
    assert lines[1].name == "ID 999"


def test_scheduler_jobs(runner):
    scheduler = setup_scheduler(runner)
    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"monitor_scan", "watchlist_report", "cache_sweep"}
    assert jobs["monitor_scan"].trigger.interval == timedelta(seconds=2)
    assert jobs["watchlist_report"].trigger.interval == timedelta(seconds=15)
    assert all(job.max_instances == 1 for job in jobs.values())
