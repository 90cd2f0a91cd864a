"""Caller-facing operations for a chat front end.

Every operation returns structured data or raises a ``CommandError``
subclass; rendering text for the user is the front end's job.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from shopwatch import metrics
from shopwatch.config import settings
from shopwatch.db.models import ActivityLog, Credential, Monitor, MonitorStatus
from shopwatch.engine.governor import check_balance, is_low_balance
from shopwatch.engine.scan_engine import LOW_BALANCE_ERROR, ScanEngine, ScanSummary, scan_engine
from shopwatch.engine.schedule import normalize_schedule_time
from shopwatch.engine.watchlist import snapshot
from shopwatch.notify.events import WatchlistLine
from shopwatch.shop.client import ShopError, ShopTransportError
from shopwatch.shop.locator import ProductRecord, find_listing, locate
from shopwatch.shop.receipts import Attachment, build_receipt
from shopwatch.shop.schemas import Catalog, is_valid_balance

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Base class for errors reported back to the caller."""


class NotLoggedInError(CommandError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} has no stored credentials")
        self.user_id = user_id


class InvalidCredentialsError(CommandError):
    def __init__(self, username: str):
        super().__init__(f"Login failed for {username}")
        self.username = username


class MonitorNotFoundError(CommandError):
    def __init__(self, ref: str):
        super().__init__(f"No monitor matches {ref}")
        self.ref = ref


class ProductNotFoundError(CommandError):
    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found in the catalog")
        self.product_id = product_id


class AlreadyTrackedError(CommandError):
    def __init__(self, monitor: Monitor):
        super().__init__(f"Product {monitor.product_id} is already tracked (monitor {monitor.id})")
        self.monitor = monitor


class InsufficientBalanceError(CommandError):
    def __init__(self, product: ProductRecord, amount: int, required: float, balance: str):
        super().__init__(f"Balance {balance} is below the {required:,.0f} required")
        self.product = product
        self.amount = amount
        self.required = required
        self.balance = balance


class InvalidScheduleError(CommandError):
    def __init__(self, value: str):
        super().__init__(f"Invalid schedule time {value!r}, expected HH:mm")
        self.value = value


class ScanInProgressError(CommandError):
    def __init__(self, user_id: str):
        super().__init__(f"A scan for user {user_id} is already running")
        self.user_id = user_id


class UpstreamUnavailableError(CommandError):
    def __init__(self, detail: str):
        super().__init__(f"Shop unavailable: {detail}")
        self.detail = detail


class SetupOutcome(str, Enum):
    ADDED = "added"
    ALREADY_TRACKED = "already_tracked"
    NOT_FOUND = "not_found"


@dataclass
class QuickSetupResult:
    product_id: str
    outcome: SetupOutcome
    monitor: Optional[Monitor] = None


@dataclass
class PurchaseOutcome:
    """Result of a manual purchase."""

    success: bool
    product_id: str
    amount: int
    error: Optional[str] = None
    detail: Optional[str] = None  # raw upstream payload, pretty-printed
    attachment: Optional[Attachment] = None


class CommandService:
    """Operations a chat front end exposes to its users."""

    def __init__(self, engine: Optional[ScanEngine] = None):
        self.engine = engine or scan_engine
        self.store = self.engine.store
        self.cache = self.engine.cache
        self.client = self.engine.client
        self._manual_scans: set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_credential(self, user_id: str) -> Credential:
        credential = await self.store.get_credential(user_id)
        if credential is None:
            raise NotLoggedInError(user_id)
        return credential

    async def _catalog(self, credential: Credential) -> Catalog:
        try:
            return await self.cache.fetch(credential.username, credential.password)
        except ShopError as e:
            raise UpstreamUnavailableError(str(e)) from e

    async def _balance(self, credential: Credential) -> str:
        try:
            balance = await self.client.fetch_balance(credential.username, credential.password)
        except ShopError as e:
            raise UpstreamUnavailableError(str(e)) from e
        if balance is None:
            raise UpstreamUnavailableError("balance not available")
        return balance

    async def _ensure_affordable(self, credential: Credential, monitor: Monitor, amount: int) -> None:
        """Informational pre-check: the balance must cover one cycle at today's price."""
        catalog = await self._catalog(credential)
        product = locate(catalog, monitor.product_id, self.client.base_url)
        if product is None:
            raise ProductNotFoundError(monitor.product_id)

        balance = await self._balance(credential)
        check = check_balance(product.price, balance, amount)
        if not check.sufficient:
            raise InsufficientBalanceError(product, amount, check.required, balance)

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def login(self, user_id: str, chat_id: str, username: str, password: str) -> str:
        """
        Validate shop credentials and store them for the user.

        Returns:
            The account balance as the shop formats it
        """
        try:
            balance = await self.client.fetch_balance(username, password)
        except ShopError as e:
            raise UpstreamUnavailableError(str(e)) from e

        if not is_valid_balance(balance):
            raise InvalidCredentialsError(username)

        await self.store.save_credential(user_id, chat_id, username, password)
        await self.engine.record_activity(user_id, f"Logged in as {username}")
        return balance

    async def logout(self, user_id: str) -> bool:
        removed = await self.store.delete_credential(user_id)
        if removed:
            logger.info(f"Removed credentials for user {user_id}")
        return removed

    async def get_balance(self, user_id: str) -> str:
        credential = await self._require_credential(user_id)
        return await self._balance(credential)

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------

    async def track_product(self, user_id: str, chat_id: str, product_id: str) -> Monitor:
        credential = await self._require_credential(user_id)
        catalog = await self._catalog(credential)
        return await self._track(user_id, chat_id, catalog, str(product_id))

    async def _track(self, user_id: str, chat_id: str, catalog: Catalog, product_id: str) -> Monitor:
        product = locate(catalog, product_id, self.client.base_url)
        if product is None:
            raise ProductNotFoundError(product_id)

        existing = await self.store.find_by_product(user_id, product.id)
        if existing is not None:
            raise AlreadyTrackedError(existing)

        monitor = await self.store.create_monitor(
            user_id=user_id,
            chat_id=chat_id,
            product_id=product.id,
            url=product.url,
            product_name=product.name,
            last_amount=product.amount,
        )
        await self.engine.record_activity(
            user_id, f"Tracking {product.name} (ID {product.id}), current quantity {product.amount}"
        )
        return monitor

    async def quick_setup(self, user_id: str, chat_id: str) -> list[QuickSetupResult]:
        """Track every product of the preset list that is not tracked yet."""
        credential = await self._require_credential(user_id)
        catalog = await self._catalog(credential)

        results = []
        for product_id in settings.quick_setup_product_ids:
            try:
                monitor = await self._track(user_id, chat_id, catalog, product_id)
                results.append(QuickSetupResult(product_id, SetupOutcome.ADDED, monitor))
            except AlreadyTrackedError as e:
                results.append(QuickSetupResult(product_id, SetupOutcome.ALREADY_TRACKED, e.monitor))
            except ProductNotFoundError:
                results.append(QuickSetupResult(product_id, SetupOutcome.NOT_FOUND))
        return results

    async def stop_monitor(self, user_id: str, ref: str) -> int:
        """Delete the user's monitors matching a monitor id or product id."""
        deleted = await self.store.delete_user_monitors(user_id, ref)
        if deleted:
            await self.engine.record_activity(user_id, f"Stopped tracking {ref}")
        return deleted

    async def list_monitors(self, user_id: str) -> list[Monitor]:
        return await self.store.list_user_monitors(user_id)

    async def list_active_auto_buy(self, user_id: str) -> list[Monitor]:
        return await self.store.list_active_auto_buy(user_id)

    # ------------------------------------------------------------------
    # Auto-buy and schedules
    # ------------------------------------------------------------------

    async def set_auto_buy(
        self,
        user_id: str,
        ref: str,
        enabled: bool,
        amount: int = 1,
        limit: int = 0,
    ) -> int:
        """
        Turn auto-buy on or off for a monitor.

        Enabling runs the balance pre-check and resets the status to
        monitoring so the next tick evaluates the product afresh. The
        purchase counter is kept: a limit already used up disables auto-buy
        again on the next tick.

        Returns:
            Number of monitors updated
        """
        amount = max(1, int(amount))
        limit = max(0, int(limit))

        values: dict[str, Any] = {
            "auto_buy": enabled,
            "auto_buy_amount": amount,
            "buy_limit": limit,
        }
        if enabled:
            credential = await self._require_credential(user_id)
            monitor = await self.store.find_user_monitor(user_id, ref)
            if monitor is None:
                raise MonitorNotFoundError(ref)
            await self._ensure_affordable(credential, monitor, amount)
            values["status"] = MonitorStatus.MONITORING.value

        updated = await self.store.update_user_monitors(user_id, ref, **values)
        if not updated:
            raise MonitorNotFoundError(ref)

        limit_text = str(limit) if limit else "unlimited"
        await self.engine.record_activity(
            user_id,
            f"Auto-buy {'on' if enabled else 'off'} for {ref} (amount {amount}, limit {limit_text})",
        )
        return updated

    async def stop_all_auto_buy(self, user_id: str) -> int:
        disabled = await self.store.disable_all_auto_buy(user_id)
        if disabled:
            await self.engine.record_activity(user_id, f"Auto-buy disabled on {disabled} monitors")
        return disabled

    async def set_schedule(
        self,
        user_id: str,
        ref: str,
        time: str,
        amount: int = 1,
        limit: int = 0,
    ) -> str:
        """
        Schedule auto-buy to switch on at a wall-clock minute.

        Returns:
            The normalized "HH:mm" time
        """
        schedule_time = normalize_schedule_time(time)
        if schedule_time is None:
            raise InvalidScheduleError(time)

        amount = max(1, int(amount))
        limit = max(0, int(limit))

        credential = await self._require_credential(user_id)
        monitor = await self.store.find_user_monitor(user_id, ref)
        if monitor is None:
            raise MonitorNotFoundError(ref)
        await self._ensure_affordable(credential, monitor, amount)

        updated = await self.store.update_user_monitors(
            user_id,
            ref,
            schedule_time=schedule_time,
            schedule_amount=amount,
            schedule_limit=limit,
        )
        if not updated:
            raise MonitorNotFoundError(ref)

        await self.engine.record_activity(
            user_id,
            f"Auto-buy scheduled for {ref} at {schedule_time} "
            f"(amount {amount}, limit {limit or 'unlimited'})",
        )
        return schedule_time

    # ------------------------------------------------------------------
    # Catalog queries and manual purchase
    # ------------------------------------------------------------------

    async def check_quantity(self, user_id: str, product_id: str) -> Optional[int]:
        """Live quantity of a product, or None if the catalog does not list it."""
        credential = await self._require_credential(user_id)
        catalog = await self._catalog(credential)
        product = locate(catalog, str(product_id))
        return product.amount if product else None

    async def get_product(self, user_id: str, product_id: str) -> Optional[dict[str, Any]]:
        """Raw product listing as returned by the shop."""
        credential = await self._require_credential(user_id)
        catalog = await self._catalog(credential)
        return find_listing(catalog, str(product_id))

    async def buy_now(self, user_id: str, product_id: str, amount: int = 1) -> PurchaseOutcome:
        """Manual purchase; monitor counters are left untouched."""
        credential = await self._require_credential(user_id)
        amount = max(1, int(amount))
        product_id = str(product_id)

        await self.engine.record_activity(user_id, f"Manual purchase of {product_id} (qty {amount})")
        try:
            response = await self.client.purchase(
                credential.username, credential.password, product_id, amount
            )
        except ShopTransportError as e:
            metrics.record_purchase("manual", "transport_error")
            raise UpstreamUnavailableError(e.detail) from e

        detail = json.dumps(response.raw(), ensure_ascii=False, indent=2)
        if response.succeeded:
            metrics.record_purchase("manual", "success")
            await self.engine.record_activity(user_id, f"Purchased {product_id} (qty {amount})")
            return PurchaseOutcome(
                success=True,
                product_id=product_id,
                amount=amount,
                detail=detail,
                attachment=build_receipt(response, product_id),
            )

        error = response.message or "unknown error"
        if is_low_balance(error):
            metrics.record_purchase("manual", "low_balance")
            error = LOW_BALANCE_ERROR
        else:
            metrics.record_purchase("manual", "rejected")
        await self.engine.record_activity(user_id, f"Purchase of {product_id} failed: {error}")
        return PurchaseOutcome(
            success=False,
            product_id=product_id,
            amount=amount,
            error=error,
            detail=detail,
        )

    async def scan_now(self, user_id: str) -> ScanSummary:
        """Run the scan engine over the user's monitors right away."""
        if user_id in self._manual_scans or self.engine.locks.is_held(user_id):
            raise ScanInProgressError(user_id)

        self._manual_scans.add(user_id)
        try:
            await self._require_credential(user_id)
            monitors = await self.store.list_user_monitors(user_id)
            if not monitors:
                return ScanSummary()
            return await self.engine.process_monitors(monitors)
        finally:
            self._manual_scans.discard(user_id)

    async def watchlist_snapshot(self, user_id: str) -> list[WatchlistLine]:
        credential = await self._require_credential(user_id)
        catalog = await self._catalog(credential)
        return snapshot(catalog, settings.watchlist_product_ids)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def activity_log(self, user_id: str, limit: Optional[int] = None) -> list[ActivityLog]:
        return await self.store.recent_activity(user_id, limit)

    async def clear_activity_log(self, user_id: str) -> int:
        return await self.store.clear_activity(user_id)
