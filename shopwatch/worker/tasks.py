"""Background ticks: monitor scan, watch-list report and cache sweep."""

import logging
from datetime import datetime
from typing import Optional

from shopwatch import metrics
from shopwatch.engine.scan_engine import ScanEngine, ScanSummary, scan_engine
from shopwatch.engine.watchlist import WatchlistTracker
from shopwatch.notify.events import Notification, NotificationKind

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for the periodic ticks.

    Each tick is non-reentrant: a tick that fires while the previous run of
    the same tick is still in progress is skipped, never queued.
    """

    def __init__(
        self,
        engine: Optional[ScanEngine] = None,
        watchlist: Optional[WatchlistTracker] = None,
    ):
        self.engine = engine or scan_engine
        self.watchlist = watchlist or WatchlistTracker()
        self.last_scan_time: Optional[datetime] = None
        self.last_watchlist_time: Optional[datetime] = None
        self.last_summary: Optional[ScanSummary] = None
        # chat_id -> message id of the last watch-list report
        self._report_messages: dict[str, int] = {}
        self._scan_running = False
        self._watchlist_running = False

    @property
    def scan_running(self) -> bool:
        return self._scan_running

    async def initialize(self):
        """Initialize task runner."""
        logger.info(
            "Task runner initialized (watch-list: %s)",
            ", ".join(self.watchlist.product_ids),
        )

    async def close(self):
        """Clean up resources."""
        await self.engine.client.close()
        close_notifier = getattr(self.engine.notifier, "close", None)
        if close_notifier is not None:
            await close_notifier()
        self.engine.cache.clear()

    async def scan_all_monitors(self) -> Optional[ScanSummary]:
        """Run the engine over every monitor (scheduled trigger)."""
        if self._scan_running:
            logger.debug("Monitor scan still running, skipping tick")
            metrics.record_scheduler_skip("scan")
            return None

        self._scan_running = True
        try:
            monitors = await self.engine.store.list_monitors()
            metrics.monitors_tracked.set(len(monitors))
            summary = await self.engine.process_monitors(monitors)
            self.last_summary = summary
            self.last_scan_time = datetime.utcnow()
            if summary.errors:
                logger.warning(
                    "Monitor scan completed with %d errors: %s",
                    len(summary.errors),
                    "; ".join(summary.errors[:3]),
                )
            metrics.record_scheduler_run("scan", True)
            return summary
        except Exception as e:
            logger.error(f"Monitor scan tick failed: {e}", exc_info=True)
            metrics.record_scheduler_run("scan", False)
            return None
        finally:
            self._scan_running = False

    async def watchlist_report(self) -> int:
        """
        Report watch-list quantity changes to every chat that owns a monitor.

        Returns:
            Number of reports sent
        """
        if self._watchlist_running:
            logger.debug("Watch-list report still running, skipping tick")
            metrics.record_scheduler_skip("watchlist")
            return 0

        self._watchlist_running = True
        sent = 0
        try:
            self.last_watchlist_time = datetime.utcnow()
            store = self.engine.store
            for user_id, chat_id in await store.monitor_owners():
                try:
                    if await self._report_user(user_id, chat_id):
                        sent += 1
                except Exception as e:
                    logger.error(f"Watch-list report failed for user {user_id}: {e}")
            metrics.record_scheduler_run("watchlist", True)
        except Exception as e:
            logger.error(f"Watch-list tick failed: {e}", exc_info=True)
            metrics.record_scheduler_run("watchlist", False)
        finally:
            self._watchlist_running = False
        return sent

    async def _report_user(self, user_id: str, chat_id: str) -> bool:
        credential = await self.engine.store.get_credential(user_id)
        if credential is None:
            return False

        catalog = await self.engine.cache.fetch(credential.username, credential.password)
        lines, changed = self.watchlist.observe(user_id, catalog)
        logger.debug(f"Watch-list check for user {user_id}: changed={changed}")
        if not changed:
            return False

        notifier = self.engine.notifier
        previous = self._report_messages.get(chat_id)
        if previous is not None:
            await notifier.delete(chat_id, previous)

        message_id = await notifier.send(
            Notification(
                kind=NotificationKind.WATCHLIST_REPORT,
                chat_id=chat_id,
                user_id=user_id,
                lines=lines,
            )
        )
        if message_id is not None:
            self._report_messages[chat_id] = message_id
        else:
            self._report_messages.pop(chat_id, None)
        return True

    async def sweep_cache(self) -> int:
        """Evict expired catalog cache entries."""
        try:
            removed = self.engine.cache.sweep()
            metrics.record_scheduler_run("cache_sweep", True)
            return removed
        except Exception as e:
            logger.error(f"Cache sweep failed: {e}", exc_info=True)
            metrics.record_scheduler_run("cache_sweep", False)
            return 0


# Global task runner instance
task_runner = TaskRunner()
