"""Tests for Telegram message rendering."""

from conftest import local_time
from shopwatch.notify.events import DisableReason, Notification, NotificationKind, WatchlistLine
from shopwatch.notify.formatters import MAX_DETAIL_CHARS, format_notification, format_watchlist


def make(kind: NotificationKind, **values) -> Notification:
    return Notification(kind=kind, chat_id="chat-u1", user_id="u1", product_id="21", **values)


def test_restock_message():
    text = format_notification(
        make(NotificationKind.RESTOCK, product_name="Netflix", quantity=5, url="https://shop.test/product/21")
    )
    assert "IN STOCK" in text
    assert "quantity: 5" in text
    assert "https://shop.test/product/21" in text


def test_name_falls_back_to_id():
    text = format_notification(make(NotificationKind.OUT_OF_STOCK))
    assert "ID 21" in text


def test_product_name_is_escaped():
    text = format_notification(make(NotificationKind.SCHEDULE_ACTIVATED, product_name="<b>Spotify</b>"))
    assert "&lt;b&gt;Spotify&lt;/b&gt;" in text


def test_purchase_success_shows_progress_only_with_limit():
    limited = format_notification(
        make(NotificationKind.PURCHASE_SUCCESS, quantity=2, bought_count=4, buy_limit=7)
    )
    unlimited = format_notification(
        make(NotificationKind.PURCHASE_SUCCESS, quantity=2, bought_count=4, buy_limit=0)
    )
    assert "4/7" in limited
    assert "Progress" not in unlimited


def test_purchase_failed_truncates_detail():
    text = format_notification(
        make(NotificationKind.PURCHASE_FAILED, error="rejected", detail="x" * (MAX_DETAIL_CHARS + 100))
    )
    assert "rejected" in text
    assert "(truncated)" in text
    assert "x" * (MAX_DETAIL_CHARS + 1) not in text


def test_auto_buy_disabled_reasons():
    low = format_notification(make(NotificationKind.AUTO_BUY_DISABLED, reason=DisableReason.LOW_BALANCE))
    limit = format_notification(
        make(
            NotificationKind.AUTO_BUY_DISABLED,
            reason=DisableReason.LIMIT_REACHED,
            bought_count=7,
            buy_limit=7,
        )
    )
    assert "insufficient account balance" in low
    assert "7/7" in limit


def test_watchlist_marks_changes():
    n = Notification(
        kind=NotificationKind.WATCHLIST_REPORT,
        chat_id="chat-u1",
        user_id="u1",
        lines=[
            WatchlistLine("21", "Netflix", 5, "10.000đ", is_new=True),
            WatchlistLine("78", "Spotify", 3, "5.000đ", delta=2),
            WatchlistLine("108", "ID 108", 0, "N/A", delta=-4),
        ],
    )
    text = format_watchlist(n, now=local_time(9, 30))

    assert "🆕 new" in text
    assert "+2" in text
    assert "-4" in text
    assert "09:30" in text
