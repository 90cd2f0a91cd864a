"""Scan engine: stock-change detection and auto-buy for monitor batches.

For each invocation the batch is partitioned by user. Users are processed
concurrently, each user's monitors sequentially, and a user already being
scanned elsewhere is skipped for this invocation.

Per monitor the persisted record is re-read right before acting, and every
resulting write is a conditional update of that record's row. This is a
best-effort consistency model: a user command can still land between the
re-read and the write, but the engine never acts on the batch's stale copy.
"""

import asyncio
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from shopwatch import metrics
from shopwatch.db.models import Credential, Monitor, MonitorStatus
from shopwatch.db.store import MonitorStore, monitor_store
from shopwatch.engine.governor import compute_purchase_qty, is_low_balance, limit_reached
from shopwatch.engine.locks import UserLockRegistry, user_locks
from shopwatch.engine.schedule import local_now, schedule_due
from shopwatch.notify.events import DisableReason, Notification, NotificationKind, Notifier
from shopwatch.notify.telegram import telegram_notifier
from shopwatch.shop.catalog_cache import CatalogCache, catalog_cache
from shopwatch.shop.client import ShopClient, ShopTransportError, shop_client
from shopwatch.shop.locator import locate
from shopwatch.shop.receipts import build_receipt
from shopwatch.shop.schemas import Catalog

logger = logging.getLogger(__name__)

LOW_BALANCE_ERROR = "insufficient balance"


@dataclass
class ScanSummary:
    """What one invocation of the engine did."""

    users_total: int = 0
    users_scanned: int = 0
    users_skipped_locked: int = 0
    users_skipped_no_credentials: int = 0
    items_processed: int = 0
    items_failed: int = 0
    purchases: int = 0
    notifications: int = 0
    errors: list[str] = field(default_factory=list)


class ScanEngine:
    """Drives monitor batches through detection, notification and auto-buy."""

    def __init__(
        self,
        store: MonitorStore,
        cache: CatalogCache,
        client: ShopClient,
        notifier: Notifier,
        locks: Optional[UserLockRegistry] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.store = store
        self.cache = cache
        self.client = client
        self.notifier = notifier
        self.locks = locks or UserLockRegistry()
        self.clock = clock

    async def process_monitors(self, monitors: Iterable[Monitor]) -> ScanSummary:
        """
        Scan a batch of monitors.

        Args:
            monitors: All monitors (global tick) or one user's monitors (manual scan)

        Returns:
            ScanSummary for the invocation
        """
        summary = ScanSummary()

        by_user: "OrderedDict[str, list[int]]" = OrderedDict()
        for monitor in monitors:
            by_user.setdefault(monitor.user_id, []).append(monitor.id)
        summary.users_total = len(by_user)

        results = await asyncio.gather(
            *(self._scan_user(user_id, ids, summary) for user_id, ids in by_user.items()),
            return_exceptions=True,
        )
        for user_id, result in zip(by_user, results):
            if isinstance(result, Exception):
                logger.error(f"Scan failed for user {user_id}: {result}", exc_info=result)
                summary.errors.append(f"user {user_id}: {result}")

        return summary

    async def _scan_user(self, user_id: str, monitor_ids: list[int], summary: ScanSummary) -> None:
        with self.locks.hold(user_id) as acquired:
            if not acquired:
                summary.users_skipped_locked += 1
                metrics.record_user_scan_skipped()
                return

            credential = await self.store.get_credential(user_id)
            if credential is None:
                summary.users_skipped_no_credentials += 1
                return

            try:
                catalog = await self.cache.fetch(credential.username, credential.password)
            except Exception as e:
                logger.error(f"Catalog unavailable for user {user_id}: {e}")
                summary.errors.append(f"user {user_id}: {e}")
                return

            summary.users_scanned += 1
            for monitor_id in monitor_ids:
                try:
                    await self._process_item(monitor_id, credential, catalog, summary)
                    summary.items_processed += 1
                except Exception as e:
                    summary.items_failed += 1
                    summary.errors.append(f"monitor {monitor_id}: {e}")
                    logger.error(f"Error checking monitor {monitor_id}: {e}", exc_info=True)

    async def _process_item(
        self,
        monitor_id: int,
        credential: Credential,
        catalog: Catalog,
        summary: ScanSummary,
    ) -> None:
        item = await self.store.get_monitor(monitor_id)
        if item is None:
            # Stopped by the user after the batch was selected
            return

        if item.schedule_time and schedule_due(item.schedule_time, self.clock()):
            if not await self._activate_schedule(item, summary):
                return

        product = locate(catalog, item.product_id, self.client.base_url)
        if product is None:
            return

        current = product.amount
        previous = item.last_amount or 0

        if current == 0:
            if previous > 0:
                metrics.record_stock_transition("out_of_stock")
                await self._notify(summary, item, NotificationKind.OUT_OF_STOCK)
                await self.store.update_monitor(
                    item.id,
                    status=MonitorStatus.MONITORING.value,
                    last_amount=0,
                    last_checked=datetime.utcnow(),
                )
            else:
                await self.store.touch_monitor(item.id)
            return

        if previous == 0 or item.status == MonitorStatus.MONITORING.value:
            metrics.record_stock_transition("restock")
            await self._notify(summary, item, NotificationKind.RESTOCK, quantity=current)

        if item.auto_buy:
            await self._auto_buy(item, credential, current, summary)
        elif current != previous or item.status == MonitorStatus.MONITORING.value:
            await self.store.update_monitor(
                item.id,
                status=MonitorStatus.AVAILABLE.value,
                last_amount=current,
                last_checked=datetime.utcnow(),
            )
        else:
            await self.store.touch_monitor(item.id)

    async def _activate_schedule(self, item: Monitor, summary: ScanSummary) -> bool:
        """Promote a scheduled monitor into active auto-buy; returns False if it vanished."""
        amount = item.schedule_amount or 1
        limit = item.schedule_limit or 0
        updated = await self.store.update_monitor(
            item.id,
            auto_buy=True,
            auto_buy_amount=amount,
            buy_limit=limit,
            schedule_time=None,
            status=MonitorStatus.MONITORING.value,
        )
        if not updated:
            return False

        item.auto_buy = True
        item.auto_buy_amount = amount
        item.buy_limit = limit
        item.schedule_time = None
        item.status = MonitorStatus.MONITORING.value

        await self.record_activity(item.user_id, f"Schedule reached: auto-buy enabled for {item.product_name}")
        await self._notify(summary, item, NotificationKind.SCHEDULE_ACTIVATED)
        return True

    async def _auto_buy(
        self,
        item: Monitor,
        credential: Credential,
        current: int,
        summary: ScanSummary,
    ) -> None:
        plan = compute_purchase_qty(
            item.auto_buy_amount,
            item.buy_limit,
            item.bought_count,
            current,
        )

        if plan.limit_exhausted:
            await self.store.update_monitor(item.id, auto_buy=False, last_amount=current)
            await self.record_activity(
                item.user_id,
                f"Purchase limit reached ({item.bought_count}/{item.buy_limit}), "
                f"auto-buy disabled for {item.product_name}",
            )
            await self._notify(
                summary,
                item,
                NotificationKind.AUTO_BUY_DISABLED,
                reason=DisableReason.LIMIT_REACHED,
                bought_count=item.bought_count,
                buy_limit=item.buy_limit,
            )
            return

        if not plan.should_buy:
            return

        quantity = plan.quantity
        await self.record_activity(item.user_id, f"In stock, auto-buying {item.product_name} (qty {quantity})")
        try:
            response = await self.client.purchase(
                credential.username,
                credential.password,
                item.product_id,
                quantity,
            )
        except ShopTransportError as e:
            # Transient: keep auto-buy on and retry next tick
            metrics.record_purchase("auto", "transport_error")
            logger.warning(f"Auto-buy transport error for monitor {item.id}: {e.detail}")
            await self.record_activity(item.user_id, f"Auto-buy connection error: {item.product_name} - {e.detail}")
            await self.store.update_monitor(item.id, last_amount=current)
            return

        raw_detail = json.dumps(response.raw(), ensure_ascii=False, indent=2)

        if response.succeeded:
            new_count = (item.bought_count or 0) + quantity
            metrics.record_purchase("auto", "success")
            summary.purchases += 1
            try:
                await self.store.record_purchase(item.id, quantity, current)
            except SQLAlchemyError as e:
                # The order went through upstream; bought_count is now behind
                logger.critical(
                    f"Bought {quantity} x product {item.product_id} for monitor {item.id} "
                    f"but could not save the purchase count "
                    f"(stored {item.bought_count}, should be {new_count}): {e}",
                    exc_info=True,
                )
                summary.errors.append(f"monitor {item.id}: purchase of {quantity} not saved: {e}")
            await self.record_activity(
                item.user_id,
                f"Auto-buy succeeded: {item.product_name} (total bought: {new_count})",
            )
            await self._notify(
                summary,
                item,
                NotificationKind.PURCHASE_SUCCESS,
                quantity=quantity,
                bought_count=new_count,
                buy_limit=item.buy_limit,
                attachment=build_receipt(response, item.product_id),
            )
            if limit_reached(item.buy_limit or 0, new_count):
                await self.store.update_monitor(item.id, auto_buy=False)
                await self._notify(
                    summary,
                    item,
                    NotificationKind.AUTO_BUY_DISABLED,
                    reason=DisableReason.LIMIT_REACHED,
                    bought_count=new_count,
                    buy_limit=item.buy_limit,
                )
            return

        error = response.message or "unknown error"
        if is_low_balance(error):
            error = LOW_BALANCE_ERROR
            metrics.record_purchase("auto", "low_balance")
            await self.store.update_monitor(item.id, auto_buy=False)
            await self.record_activity(item.user_id, f"Auto-buy disabled for {item.product_name}: insufficient balance")
            await self._notify(
                summary,
                item,
                NotificationKind.AUTO_BUY_DISABLED,
                reason=DisableReason.LOW_BALANCE,
            )
        else:
            metrics.record_purchase("auto", "rejected")
            await self.store.update_monitor(item.id, last_amount=current)

        await self.record_activity(item.user_id, f"Auto-buy failed: {item.product_name} - {error}")
        await self._notify(
            summary,
            item,
            NotificationKind.PURCHASE_FAILED,
            error=error,
            detail=raw_detail,
        )

    async def _notify(
        self,
        summary: ScanSummary,
        item: Monitor,
        kind: NotificationKind,
        **fields,
    ) -> None:
        notification = Notification(
            kind=kind,
            chat_id=item.chat_id,
            user_id=item.user_id,
            product_id=item.product_id,
            product_name=item.product_name,
            url=item.url,
            monitor_id=item.id,
            **fields,
        )
        await self.notifier.send(notification)
        summary.notifications += 1

    async def record_activity(self, user_id: str, message: str) -> None:
        """Write to the application log and the user's activity log."""
        logger.info(f"[user {user_id}] {message}")
        try:
            await self.store.add_activity(user_id, message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save activity log for user {user_id}: {e}")


# Global engine wired to the application singletons
scan_engine = ScanEngine(
    store=monitor_store,
    cache=catalog_cache,
    client=shop_client,
    notifier=telegram_notifier,
    locks=user_locks,
)
