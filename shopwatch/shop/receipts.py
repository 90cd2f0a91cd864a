"""Render purchased entries into a downloadable text file."""

import json
import re
import time
from dataclasses import dataclass
from typing import Any

from shopwatch.shop.schemas import PurchaseResponse


@dataclass
class Attachment:
    """A file delivered alongside a notification."""

    filename: str
    content: bytes


def _short_entry(entry: str) -> str:
    """Keep the first two ``|``-separated fields (login|password)."""
    parts = entry.split("|")
    if len(parts) >= 2:
        return f"{parts[0].strip()}|{parts[1].strip()}"
    return entry.strip()


def _render_item(item: Any) -> str:
    if isinstance(item, str):
        return _short_entry(item)
    if isinstance(item, dict) and item.get("account"):
        return _short_entry(str(item["account"]))
    return json.dumps(item, ensure_ascii=False)


def receipt_lines(response: PurchaseResponse) -> str:
    """
    Text body of the receipt.

    ``data.lists`` and list-shaped ``data`` give one line per entry, string
    ``data`` one line per non-empty line. Anything else falls back to the
    pretty-printed response.
    """
    data = response.data
    if isinstance(data, dict) and isinstance(data.get("lists"), list):
        return "\n".join(
            _short_entry(str(item["account"]))
            if isinstance(item, dict) and item.get("account")
            else json.dumps(item, ensure_ascii=False)
            for item in data["lists"]
        )
    if isinstance(data, list):
        return "\n".join(_render_item(item) for item in data)
    if isinstance(data, str):
        return "\n".join(
            _short_entry(line) for line in data.split("\n") if line.strip()
        )
    return json.dumps(response.raw(), ensure_ascii=False, indent=2)


def receipt_filename(response: PurchaseResponse, product_id: str) -> str:
    data = response.data
    if isinstance(data, dict) and data.get("name") and data.get("amount") and data.get("trans_id"):
        safe_name = re.sub(r"[^a-zA-Z0-9]", "", str(data["name"]))
        return f"{safe_name}_{data['amount']}_{data['trans_id']}.txt"
    return f"accounts_{product_id}_{int(time.time() * 1000)}.txt"


def build_receipt(response: PurchaseResponse, product_id: str) -> Attachment:
    """Build the receipt attachment for a successful purchase."""
    return Attachment(
        filename=receipt_filename(response, product_id),
        content=receipt_lines(response).encode("utf-8"),
    )
