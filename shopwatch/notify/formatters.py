"""Telegram message text for notifications."""

import html
from datetime import datetime
from typing import Optional

from shopwatch.engine.schedule import current_minute, local_now
from shopwatch.notify.events import DisableReason, Notification, NotificationKind

# Telegram rejects messages over 4096 characters
MAX_DETAIL_CHARS = 3500


def _progress(n: Notification) -> str:
    if n.buy_limit and n.buy_limit > 0 and n.bought_count is not None:
        return f"\n📊 Progress: {n.bought_count}/{n.buy_limit}"
    return ""


def _detail_block(detail: Optional[str]) -> str:
    if not detail:
        return ""
    if len(detail) > MAX_DETAIL_CHARS:
        detail = detail[:MAX_DETAIL_CHARS] + "\n... (truncated) ..."
    return f"\n\n📄 Shop response:\n<pre>{html.escape(detail)}</pre>"


def format_watchlist(n: Notification, now: Optional[datetime] = None) -> str:
    lines = ["📋 <b>Watch-list stock changes</b>", ""]
    for line in n.lines:
        change = ""
        if line.is_new:
            change = " (🆕 new)"
        elif line.delta is not None and line.delta > 0:
            change = f" (📈 +{line.delta})"
        elif line.delta is not None and line.delta < 0:
            change = f" (📉 -{abs(line.delta)})"
        lines.append(
            f"🔹 <b>{html.escape(line.name)}</b> (ID: {line.product_id})\n"
            f"   📦 Quantity: <b>{line.amount}</b>{change}\n"
            f"   💰 Price: {html.escape(str(line.price))}"
        )
    lines.append("")
    lines.append(f"<i>Updated {current_minute(now or local_now())}</i>")
    return "\n".join(lines)


def format_notification(n: Notification) -> str:
    """
    Render a notification as Telegram HTML.

    Args:
        n: Notification to render

    Returns:
        Message text (parse_mode=HTML)
    """
    name = html.escape(n.product_name or f"ID {n.product_id}")

    if n.kind == NotificationKind.RESTOCK:
        return (
            f"🚨 IN STOCK! (quantity: {n.quantity})\n\n"
            f"📦 Product: {name}\n"
            f"🆔 ID: {n.product_id}\n"
            f"🔗 URL: {html.escape(n.url or '')}"
        )

    if n.kind == NotificationKind.OUT_OF_STOCK:
        return f"🚫 OUT OF STOCK! (ID: {n.product_id})\n📦 {name}"

    if n.kind == NotificationKind.SCHEDULE_ACTIVATED:
        return f"⏰ <b>Scheduled time reached!</b> Auto-buy is now ON for: {name}"

    if n.kind == NotificationKind.PURCHASE_SUCCESS:
        return (
            f"✅ <b>Auto-buy order placed!</b>{_progress(n)}\n\n"
            f"📦 Product: {name}\n"
            f"🛒 Quantity: {n.quantity}"
        )

    if n.kind == NotificationKind.PURCHASE_FAILED:
        return (
            f"❌ <b>Auto-buy order failed</b>\n"
            f"📦 Product: {name}\n"
            f"⚠️ Error: {html.escape(n.error or 'unknown error')}"
            f"{_detail_block(n.detail)}"
        )

    if n.kind == NotificationKind.AUTO_BUY_DISABLED:
        if n.reason == DisableReason.LOW_BALANCE:
            return (
                f"⚠️ <b>Auto-buy disabled</b> for {name}: "
                "insufficient account balance."
            )
        return (
            f"🏁 <b>Purchase limit reached</b> ({n.bought_count}/{n.buy_limit}). "
            f"Auto-buy disabled for {name}."
        )

    if n.kind == NotificationKind.WATCHLIST_REPORT:
        return format_watchlist(n)

    raise ValueError(f"Unknown notification kind: {n.kind}")
