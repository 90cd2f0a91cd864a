"""Auto-buy budget governor.

Decides how many units a single scan cycle may buy, and when auto-buy must
switch itself off.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from shopwatch.config import settings
from shopwatch.shop.schemas import parse_currency


@dataclass(frozen=True)
class PurchasePlan:
    """Outcome of the budget computation for one cycle."""

    quantity: int
    # Limit already exhausted before buying; auto-buy must be disabled now
    limit_exhausted: bool = False

    @property
    def should_buy(self) -> bool:
        return self.quantity > 0 and not self.limit_exhausted


def compute_purchase_qty(
    cycle_amount: int,
    buy_limit: int,
    bought_count: int,
    available_stock: int,
) -> PurchasePlan:
    """
    Compute the legal purchase quantity for a cycle.

    Args:
        cycle_amount: Configured units per cycle
        buy_limit: Cumulative cap, 0 for unlimited
        bought_count: Units already bought under the cap
        available_stock: Live quantity in the shop

    Returns:
        PurchasePlan with a non-negative quantity
    """
    buy_limit = buy_limit or 0
    bought_count = bought_count or 0

    if buy_limit > 0 and bought_count >= buy_limit:
        return PurchasePlan(quantity=0, limit_exhausted=True)

    quantity = min(cycle_amount or 1, available_stock)
    if buy_limit > 0:
        quantity = min(quantity, buy_limit - bought_count)
    return PurchasePlan(quantity=max(quantity, 0))


def limit_reached(buy_limit: int, bought_count: int) -> bool:
    """True when a capped monitor has bought its full allowance."""
    return buy_limit > 0 and bought_count >= buy_limit


def is_low_balance(message: Optional[str], phrases: Optional[Iterable[str]] = None) -> bool:
    """True when an upstream rejection message means the balance is too low."""
    if not message:
        return False
    text = message.lower()
    return any(phrase in text for phrase in (phrases or settings.low_balance_phrases))


@dataclass(frozen=True)
class BalanceCheck:
    """Informational pre-check run when a user enables auto-buy or a schedule."""

    price: float
    balance: float
    amount: int

    @property
    def required(self) -> float:
        return self.price * self.amount

    @property
    def sufficient(self) -> bool:
        return self.balance >= self.required


def check_balance(price: object, balance: Optional[str], amount: int) -> BalanceCheck:
    """Compare price x amount with the current balance, both shop-formatted."""
    return BalanceCheck(
        price=parse_currency(price),
        balance=parse_currency(balance),
        amount=amount,
    )
