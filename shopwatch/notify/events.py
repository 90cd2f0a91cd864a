"""Structured notification events emitted by the scan engine and ticks."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from shopwatch.shop.receipts import Attachment


class NotificationKind(str, Enum):
    """Kinds of events delivered to a user's chat."""

    RESTOCK = "restock"
    OUT_OF_STOCK = "out_of_stock"
    SCHEDULE_ACTIVATED = "schedule_activated"
    PURCHASE_SUCCESS = "purchase_success"
    PURCHASE_FAILED = "purchase_failed"
    AUTO_BUY_DISABLED = "auto_buy_disabled"
    WATCHLIST_REPORT = "watchlist_report"


class DisableReason(str, Enum):
    LIMIT_REACHED = "limit_reached"
    LOW_BALANCE = "low_balance"


@dataclass
class WatchlistLine:
    """One product row of a watch-list report."""

    product_id: str
    name: str
    amount: int
    price: Any
    delta: Optional[int] = None  # None when unchanged
    is_new: bool = False


@dataclass
class Notification:
    """A single user-facing event."""

    kind: NotificationKind
    chat_id: str
    user_id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    url: Optional[str] = None
    monitor_id: Optional[int] = None
    quantity: Optional[int] = None
    bought_count: Optional[int] = None
    buy_limit: Optional[int] = None
    reason: Optional[DisableReason] = None
    error: Optional[str] = None
    detail: Optional[str] = None  # raw upstream payload, pretty-printed
    attachment: Optional[Attachment] = None
    lines: list[WatchlistLine] = field(default_factory=list)


class Notifier(Protocol):
    """Delivery channel for notifications."""

    async def send(self, notification: Notification) -> Optional[int]:
        """Deliver a notification; returns the delivered message id if known."""
        ...

    async def delete(self, chat_id: str, message_id: int) -> bool:
        """Delete a previously delivered message."""
        ...
