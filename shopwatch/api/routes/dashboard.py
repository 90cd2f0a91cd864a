"""Read-only admin endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from shopwatch.api.deps import get_store, get_task_runner
from shopwatch.db.store import MonitorStore
from shopwatch.shop.client import ShopError
from shopwatch.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/stats")
async def get_stats(store: MonitorStore = Depends(get_store)):
    """Monitor counts grouped by status."""
    return await store.count_by_status()


@router.get("/system")
async def get_system_status(
    store: MonitorStore = Depends(get_store),
    runner: TaskRunner = Depends(get_task_runner),
):
    """Process status: record counts, tick times and in-memory state sizes."""
    last_scan = runner.last_scan_time
    last_watchlist = runner.last_watchlist_time
    return {
        "users": await store.count_users(),
        "monitors": await store.count_monitors(),
        "auto_buy_monitors": await store.count_monitors(auto_buy_only=True),
        "last_scan_time": last_scan.isoformat() if last_scan else None,
        "last_watchlist_time": last_watchlist.isoformat() if last_watchlist else None,
        "scan_running": runner.scan_running,
        "cache_entries": len(runner.engine.cache),
        "cache_in_flight": runner.engine.cache.in_flight,
        "watchlist_tracked": len(runner.watchlist),
    }


@router.get("/external-list")
async def get_external_list(
    username: Optional[str] = None,
    password: Optional[str] = None,
    runner: TaskRunner = Depends(get_task_runner),
):
    """Raw catalog for a credential pair, served through the catalog cache."""
    if not username or not password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing username or password",
        )

    try:
        catalog = await runner.engine.cache.fetch(username, password)
    except ShopError as e:
        logger.warning(f"External list fetch failed for {username}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch data from external API",
        )
    return catalog.model_dump()
