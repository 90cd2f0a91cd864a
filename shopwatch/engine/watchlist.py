"""Quantity tracking for the fixed watch-list products."""

from typing import Iterable, Optional

from shopwatch.config import settings
from shopwatch.notify.events import WatchlistLine
from shopwatch.shop.locator import locate
from shopwatch.shop.schemas import Catalog


def snapshot(
    catalog: Catalog,
    product_ids: Optional[Iterable[str]] = None,
) -> list[WatchlistLine]:
    """Current quantity and price of each watch-list product (0 when missing)."""
    lines = []
    for product_id in product_ids or settings.watchlist_product_ids:
        product = locate(catalog, product_id)
        lines.append(
            WatchlistLine(
                product_id=product_id,
                name=product.name if product else f"ID {product_id}",
                amount=product.amount if product else 0,
                price=product.price if product else "N/A",
            )
        )
    return lines


class WatchlistTracker:
    """
    Remembers the last seen quantity per (user, product) and reports deltas.

    Process-scoped: after a restart every product with stock shows up as new.
    """

    def __init__(self, product_ids: Optional[Iterable[str]] = None):
        self.product_ids = list(product_ids or settings.watchlist_product_ids)
        self._last_seen: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._last_seen)

    def observe(self, user_id: str, catalog: Catalog) -> tuple[list[WatchlistLine], bool]:
        """
        Compare the catalog with the last observation for this user.

        Returns:
            (lines for every watched product, whether anything changed)
        """
        lines = snapshot(catalog, self.product_ids)
        changed = False
        for line in lines:
            key = f"{user_id}:{line.product_id}"
            previous = self._last_seen.get(key)
            if previous is None:
                if line.amount > 0:
                    line.is_new = True
                    changed = True
            elif previous != line.amount:
                line.delta = line.amount - previous
                changed = True
            self._last_seen[key] = line.amount
        return lines, changed

    def clear(self) -> None:
        self._last_seen.clear()
