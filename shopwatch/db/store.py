"""Persistence operations for monitors, credentials and activity logs.

Every write is a short transaction scoped to explicit row identifiers. Monitor
updates are issued as ``UPDATE ... WHERE id = :id`` so a concurrent command
and a scan never overwrite each other with a stale in-memory copy; each field
write is atomic but a scan step and a user command are not serialized
against each other.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopwatch.config import settings
from shopwatch.db.models import ActivityLog, Credential, Monitor
from shopwatch.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

# Bulk statements bypass identity-map synchronization; sessions here are short-lived
_BULK = {"synchronize_session": False}


def _ref_filter(ref: str):
    """Match a monitor by monitor id or by product id."""
    ref = str(ref).strip()
    if ref.isdigit():
        return or_(Monitor.id == int(ref), Monitor.product_id == ref)
    return Monitor.product_id == ref


class MonitorStore:
    """Record store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------

    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        async with self._session_factory() as db:
            return await db.get(Monitor, monitor_id)

    async def list_monitors(self) -> list[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(select(Monitor).order_by(Monitor.id))
            return list(result.scalars().all())

    async def list_user_monitors(self, user_id: str) -> list[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor).where(Monitor.user_id == user_id).order_by(Monitor.id)
            )
            return list(result.scalars().all())

    async def list_active_auto_buy(self, user_id: str) -> list[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor)
                .where(Monitor.user_id == user_id, Monitor.auto_buy.is_(True))
                .order_by(Monitor.id)
            )
            return list(result.scalars().all())

    async def find_user_monitor(self, user_id: str, ref: str) -> Optional[Monitor]:
        """Find a user's monitor by monitor id or product id."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor)
                .where(Monitor.user_id == user_id, _ref_filter(ref))
                .order_by(Monitor.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_product(self, user_id: str, product_id: str) -> Optional[Monitor]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor)
                .where(Monitor.user_id == user_id, Monitor.product_id == str(product_id))
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create_monitor(
        self,
        user_id: str,
        chat_id: str,
        product_id: str,
        url: Optional[str],
        product_name: Optional[str],
        last_amount: int,
    ) -> Monitor:
        async with self._session_factory() as db:
            monitor = Monitor(
                user_id=user_id,
                chat_id=chat_id,
                product_id=str(product_id),
                url=url,
                product_name=product_name,
                last_amount=last_amount,
            )
            db.add(monitor)
            await db.commit()
            await db.refresh(monitor)
            return monitor

    async def update_monitor(self, monitor_id: int, **values: Any) -> bool:
        """
        Conditionally update one monitor row.

        Values may be plain values or SQL expressions (e.g. an increment).

        Returns:
            True if the row existed and was updated
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(Monitor).where(Monitor.id == monitor_id).values(**values),
                execution_options=_BULK,
            )
            await db.commit()
        if result.rowcount == 0:
            logger.warning(f"Monitor {monitor_id} vanished before update: {sorted(values)}")
            return False
        return True

    async def touch_monitor(self, monitor_id: int) -> bool:
        """Refresh the last-checked timestamp."""
        return await self.update_monitor(monitor_id, last_checked=datetime.utcnow())

    async def record_purchase(
        self,
        monitor_id: int,
        quantity: int,
        current_amount: int,
    ) -> bool:
        """Add purchased units to the counter and mark the monitor purchased."""
        return await self.update_monitor(
            monitor_id,
            status="purchased",
            last_amount=current_amount,
            bought_count=Monitor.bought_count + quantity,
            last_checked=datetime.utcnow(),
        )

    async def update_user_monitors(self, user_id: str, ref: str, **values: Any) -> int:
        """Update every monitor of a user matching a monitor id or product id."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(Monitor)
                .where(Monitor.user_id == user_id, _ref_filter(ref))
                .values(**values),
                execution_options=_BULK,
            )
            await db.commit()
            return result.rowcount

    async def delete_user_monitors(self, user_id: str, ref: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(Monitor).where(Monitor.user_id == user_id, _ref_filter(ref)),
                execution_options=_BULK,
            )
            await db.commit()
            return result.rowcount

    async def disable_all_auto_buy(self, user_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Monitor)
                .where(Monitor.user_id == user_id, Monitor.auto_buy.is_(True))
                .values(auto_buy=False),
                execution_options=_BULK,
            )
            await db.commit()
            return result.rowcount

    async def monitor_owners(self) -> list[tuple[str, str]]:
        """Distinct (user_id, chat_id) pairs owning at least one monitor."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor.user_id, Monitor.chat_id).distinct()
            )
            return [(row[0], row[1]) for row in result.all()]

    async def count_by_status(self) -> list[dict[str, Any]]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Monitor.status, func.count(Monitor.id)).group_by(Monitor.status)
            )
            return [{"status": row[0], "count": row[1]} for row in result.all()]

    async def count_monitors(self, auto_buy_only: bool = False) -> int:
        query = select(func.count(Monitor.id))
        if auto_buy_only:
            query = query.where(Monitor.auto_buy.is_(True))
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_credential(self, user_id: str) -> Optional[Credential]:
        """Return the user's credential, or None if absent or unreadable."""
        async with self._session_factory() as db:
            credential = await db.get(Credential, user_id)
        if credential is None or credential.password is None:
            return None
        return credential

    async def save_credential(
        self,
        user_id: str,
        chat_id: str,
        username: str,
        password: str,
    ) -> None:
        """Insert or overwrite the user's credential."""
        async with self._session_factory() as db:
            await db.merge(
                Credential(
                    user_id=user_id,
                    chat_id=chat_id,
                    username=username,
                    password=password,
                    updated_at=datetime.utcnow(),
                )
            )
            await db.commit()

    async def delete_credential(self, user_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(Credential).where(Credential.user_id == user_id),
                execution_options=_BULK,
            )
            await db.commit()
            return result.rowcount > 0

    async def count_users(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(select(func.count(Credential.user_id)))
            return result.scalar() or 0

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def add_activity(self, user_id: str, message: str) -> None:
        """Append to the user's activity log, keeping only the newest rows."""
        async with self._session_factory() as db:
            db.add(ActivityLog(user_id=user_id, message=message, created_at=datetime.utcnow()))
            await db.flush()
            keep = (
                select(ActivityLog.id)
                .where(ActivityLog.user_id == user_id)
                .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
                .limit(settings.activity_log_keep)
            )
            await db.execute(
                delete(ActivityLog).where(
                    ActivityLog.user_id == user_id,
                    ActivityLog.id.not_in(keep.scalar_subquery()),
                ),
                execution_options=_BULK,
            )
            await db.commit()

    async def recent_activity(self, user_id: str, limit: Optional[int] = None) -> list[ActivityLog]:
        """Newest entries, returned oldest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(ActivityLog)
                .where(ActivityLog.user_id == user_id)
                .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
                .limit(limit or settings.activity_log_page)
            )
            rows = list(result.scalars().all())
        rows.reverse()
        return rows

    async def clear_activity(self, user_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(ActivityLog).where(ActivityLog.user_id == user_id),
                execution_options=_BULK,
            )
            await db.commit()
            return result.rowcount


# Global store bound to the application database
monitor_store = MonitorStore(AsyncSessionLocal)
