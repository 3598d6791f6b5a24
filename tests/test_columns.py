"""Tests for header -> canonical field resolution."""

import pytest

from sales_sync.exceptions import ColumnResolutionError
from sales_sync.ingest import columns as c
from sales_sync.models import SourceKind

POS_HEADERS = [
    "Order Date",
    "Order Name",
    "Sales Channel",
    "Location Name",
    "Net sales",
    "Net sales excluding gift card",
    "Staff Name",
]


def test_pos_prefers_location_and_net_excluding_gift_card() -> None:
    """Test the point-of-sale precedence rules."""
    cmap = c.resolve(POS_HEADERS, "pos")

    assert cmap.source_kind is SourceKind.POS
    assert cmap.matches[c.SALES_CHANNEL].header == "Location Name"
    assert cmap.matches[c.NET_AMOUNT].header == "Net sales excluding gift card"
    assert cmap.index(c.STAFF_NAME) == 6


def test_online_uses_sales_channel_and_net_sales() -> None:
    """Test the same headers resolve differently for online reports."""
    cmap = c.resolve(POS_HEADERS, SourceKind.ONLINE)

    assert cmap.matches[c.SALES_CHANNEL].header == "Sales Channel"
    assert cmap.matches[c.NET_AMOUNT].header == "Net sales"


def test_resolution_follows_names_not_positions() -> None:
    """Test that reordered columns resolve to the same fields."""
    headers = ["Net Sales", "Sales Channel", "Order Name", "Order Date"]
    cmap = c.resolve(headers, "online")

    assert cmap.index(c.NET_AMOUNT) == 0
    assert cmap.index(c.SALES_CHANNEL) == 1
    assert cmap.index(c.ORDER_REFERENCE) == 2
    assert cmap.index(c.ORDER_DATE) == 3


def test_actual_order_date_is_not_the_order_date() -> None:
    """Test that 'Actual Order Date' never satisfies the order date field."""
    cmap = c.resolve(["Actual Order Date", "Order Date", "Net Sales"], "online")

    assert cmap.index(c.ORDER_DATE) == 1
    assert cmap.index(c.ACTUAL_ORDER_DATE) == 0

    only_actual = c.resolve(["Actual Order Date", "Net Sales"], "online")
    assert not only_actual.has(c.ORDER_DATE)
    assert only_actual.has(c.ACTUAL_ORDER_DATE)


def test_exclusions_on_substring_matches() -> None:
    """Test excluded fragments stop loose matches."""
    cmap = c.resolve(["Order Name", "Net Sales", "Shipping Tracking Number"], "online")
    assert not cmap.has(c.SHIPPING_AMOUNT)

    cmap = c.resolve(["Order Name", "Net Sales", "Shipping Charges (HKD)"], "online")
    assert cmap.matches[c.SHIPPING_AMOUNT].header == "Shipping Charges (HKD)"


def test_marketing_and_tag_columns() -> None:
    """Test customer and marketing columns resolve."""
    headers = [
        "Order Name",
        "Net Sales",
        "Customer Tags",
        "Customer Email",
        "Email Marketing",
        "SMS Marketing",
        "WhatsApp Marketing",
    ]
    cmap = c.resolve(headers, "online")

    assert cmap.index(c.CUSTOMER_TAGS) == 2
    assert cmap.index(c.CUSTOMER_EMAIL) == 3
    assert cmap.index(c.EMAIL_MARKETING) == 4
    assert cmap.index(c.SMS_MARKETING) == 5
    assert cmap.index(c.WHATSAPP_MARKETING) == 6


def test_missing_net_amount_is_fatal() -> None:
    """Test that a report without a net amount column cannot be ingested."""
    with pytest.raises(ColumnResolutionError) as exc_info:
        c.resolve(["Order Date", "Order Name", "Total Sales"], "online")

    assert exc_info.value.field == c.NET_AMOUNT
    assert "Total Sales" in exc_info.value.headers


def test_optional_fields_degrade_to_not_found() -> None:
    """Test diagnostics list missing fields and unmatched headers."""
    cmap = c.resolve(["Order Name", "Net Sales", "Foo"], "online")

    assert cmap.index(c.ORDER_DATE) == c.NOT_FOUND
    assert cmap.get(["#1", "10", "x"], c.ORDER_DATE) is None
    assert cmap.get(["#1", "10", "x"], c.NET_AMOUNT) == "10"

    diag = cmap.diagnostics()
    assert diag["source_kind"] == "online"
    assert c.ORDER_DATE in diag["not_found"]
    assert diag["unmatched_headers"] == ["Foo"]
    assert diag["fields"][c.NET_AMOUNT] == {
        "index": 1,
        "header": "Net Sales",
        "matcher": "exact:netsales",
    }


def test_invalid_source_kind() -> None:
    """Test that an unknown report kind is rejected."""
    with pytest.raises(ValueError, match="Invalid source kind"):
        c.resolve(["Net Sales"], "wholesale")
