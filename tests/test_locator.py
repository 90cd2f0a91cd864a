"""Tests for catalog parsing and product lookup."""

import pytest

from shopwatch.shop.locator import find_listing, locate
from shopwatch.shop.schemas import (
    Catalog,
    extract_balance,
    is_valid_balance,
    parse_currency,
    parse_quantity,
)

CATALOG = Catalog.model_validate(
    {
        "categories": [
            {
                "id": 7,
                "name": "Streaming",
                "accounts": [
                    {"id": 21, "name": "Netflix 1 month", "price": "45.000đ", "amount": "12"},
                    {"id": "108", "name": None, "price": None, "amount": None},
                ],
            },
            {"id": "8", "name": "Empty", "accounts": None},
        ]
    }
)


@pytest.mark.parametrize(
    "value,expected",
    [(5, 5), ("12", 12), ("12 pcs", 12), (None, 0), ("n/a", 0), (-3, 0), ("", 0), (7.9, 7)],
)
def test_parse_quantity(value, expected):
    assert parse_quantity(value) == expected


def test_parse_currency():
    assert parse_currency("116.565đ") == 116565
    assert parse_currency("12,000 VND") == 12000
    assert parse_currency(None) == 0


def test_ids_are_normalized_to_strings():
    assert CATALOG.categories[0].id == "7"
    assert CATALOG.categories[0].accounts[0].id == "21"
    assert CATALOG.categories[1].accounts == []


def test_locate_product():
    record = locate(CATALOG, "21", "https://shop.test")
    assert record.name == "Netflix 1 month"
    assert record.amount == 12
    assert record.price == "45.000đ"
    assert record.url == "https://shop.test/product/21"
    assert not record.is_category


def test_locate_product_with_missing_fields():
    record = locate(CATALOG, 108)
    assert record.name == "Product 108"
    assert record.amount == 0
    assert record.price == "N/A"


def test_category_match_takes_precedence():
    record = locate(CATALOG, "7")
    assert record.is_category
    assert record.amount == 0
    assert record.price == "N/A"
    assert record.name == "Streaming"


def test_locate_missing_returns_none():
    assert locate(CATALOG, "999") is None


def test_find_listing_searches_products_only():
    assert find_listing(CATALOG, "21")["price"] == "45.000đ"
    assert find_listing(CATALOG, "7") is None


def test_catalog_without_categories():
    assert Catalog.model_validate({}).categories == []


@pytest.mark.parametrize(
    "payload,expected",
    [("116.565đ", "116.565đ"), ({"money": 5000}, "5000"), ({"balance": "1đ"}, "1đ"), ("  ", None), (None, None)],
)
def test_extract_balance(payload, expected):
    assert extract_balance(payload) == expected


def test_balance_validation():
    assert is_valid_balance("116.565đ")
    assert is_valid_balance("5000")
    assert not is_valid_balance("Sai tài khoản")
    assert not is_valid_balance(None)
