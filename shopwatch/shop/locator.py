"""Locate a product in the catalog tree."""

from dataclasses import dataclass, field
from typing import Any, Optional

from shopwatch.shop.schemas import Catalog, parse_quantity


@dataclass
class ProductRecord:
    """Normalized view of a catalog entry."""

    id: str
    name: str
    url: str
    price: Any
    amount: int
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    is_category: bool = False


def locate(
    catalog: Catalog,
    product_id: str,
    base_url: str = "",
) -> Optional[ProductRecord]:
    """
    Find a product by identifier.

    Categories are checked before their listings: an identifier matching a
    category yields a synthetic record with quantity 0 and price "N/A".

    Args:
        catalog: Validated catalog
        product_id: Identifier to look for
        base_url: Shop base URL used to build product links

    Returns:
        ProductRecord, or None when the identifier is not in the catalog
    """
    wanted = str(product_id)
    for category in catalog.categories:
        if category.id == wanted:
            return ProductRecord(
                id=category.id,
                name=category.name or f"Category {category.id}",
                url=f"{base_url}/category/{category.id}",
                price="N/A",
                amount=0,
                raw=category.model_dump(),
                is_category=True,
            )
        for product in category.accounts:
            if product.id == wanted:
                return ProductRecord(
                    id=product.id,
                    name=product.name or f"Product {product.id}",
                    url=f"{base_url}/product/{product.id}",
                    price=product.price if product.price not in (None, "") else "N/A",
                    amount=parse_quantity(product.amount),
                    raw=product.model_dump(),
                )
    return None


def find_listing(catalog: Catalog, product_id: str) -> Optional[dict[str, Any]]:
    """Raw listing dict for a product id, searching product lists only."""
    wanted = str(product_id)
    for category in catalog.categories:
        for product in category.accounts:
            if product.id == wanted:
                return product.model_dump()
    return None
