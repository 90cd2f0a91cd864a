"""Validated shapes of upstream shop API payloads.

The shop returns loosely typed JSON: ids may be numbers or strings, and
``price``/``amount`` may be missing, numeric or free text. Payloads are
validated here so the scan engine only ever sees these models.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_NON_DIGITS = re.compile(r"[^\d]")


def parse_quantity(value: Any) -> int:
    """
    Parse an upstream quantity.

    Leading digits are honoured ("12 pcs" -> 12); anything unparsable,
    missing or negative counts as 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0) if value == value else 0  # NaN check
    match = _LEADING_INT.match(str(value))
    if not match:
        return 0
    return max(int(match.group(1)), 0)


def parse_currency(value: Any) -> float:
    """
    Parse a locale-formatted amount such as "116.565đ" or "12,000 VND".

    All non-digit characters are dropped, so thousands separators and
    currency marks disappear.
    """
    if value is None:
        return 0.0
    digits = _NON_DIGITS.sub("", str(value))
    return float(digits) if digits else 0.0


class ShopProduct(BaseModel):
    """A purchasable listing inside a category."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None
    price: Any = None
    amount: Any = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("product id is required")
        return str(value)


class ShopCategory(BaseModel):
    """A catalog category with its product listings."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None
    accounts: list[ShopProduct] = []

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("category id is required")
        return str(value)

    @field_validator("accounts", mode="before")
    @classmethod
    def _default_accounts(cls, value: Any) -> Any:
        return value or []


class Catalog(BaseModel):
    """The full category tree returned by the listing endpoint."""

    model_config = ConfigDict(extra="allow")

    categories: list[ShopCategory] = []

    @field_validator("categories", mode="before")
    @classmethod
    def _default_categories(cls, value: Any) -> Any:
        return value or []


class PurchaseResponse(BaseModel):
    """Structured reply of the purchase endpoint."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    message: Optional[str] = None
    data: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def raw(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=False)


def extract_balance(payload: Any) -> Optional[str]:
    """
    Pull the balance string out of a balance response.

    The endpoint normally answers with a plain string ("116.565đ"); some
    deployments wrap it as ``{"money": ...}`` or ``{"balance": ...}``.
    """
    if payload is None:
        return None
    if isinstance(payload, dict):
        value = payload.get("money", payload.get("balance"))
        return None if value is None else str(value)
    text = str(payload).strip()
    return text or None


def is_valid_balance(balance: Optional[str]) -> bool:
    """True when a balance string looks like a real account balance."""
    if not balance:
        return False
    if "đ" in balance:
        return True
    cleaned = re.sub(r"[^\d.-]", "", balance)
    try:
        float(cleaned)
    except ValueError:
        return False
    return True
