"""Tests for row normalization into SaleRecord / RowSkip."""

from datetime import date

import pytest

from sales_sync.ingest.columns import resolve
from sales_sync.ingest.normalize import is_summary_row, normalize
from sales_sync.models import RowSkip, SaleRecord, SkipReason, SourceKind, display_shipping

HEADERS = [
    "Order Date",
    "Order Name",
    "Sales Channel",
    "Payment Gateway",
    "Net Sales",
    "Total Sales",
    "Shipping",
    "Customer Email",
    "Email Marketing",
    "SMS Marketing",
    "Actual Order Date",
]

RUN_DATE = date(2026, 3, 1)


def make_row(**values):
    """Row aligned with HEADERS; keys are the header names with spaces as underscores."""
    defaults = {
        "Order Date": "2026-02-01",
        "Order Name": "#1001",
        "Sales Channel": "Online Store",
        "Payment Gateway": "Stripe",
        "Net Sales": "100.00",
        "Total Sales": "130.00",
        "Shipping": "30.00",
        "Customer Email": "a@example.com",
        "Email Marketing": "yes",
        "SMS Marketing": "no",
        "Actual Order Date": None,
    }
    for key, value in values.items():
        defaults[key.replace("_", " ")] = value
    return [defaults[h] for h in HEADERS]


@pytest.fixture
def online_map():
    return resolve(HEADERS, "online")


def _normalize(row, cmap, kind="online"):
    return normalize(row, cmap, kind, row_number=1, run_date=RUN_DATE)


def test_full_row(online_map) -> None:
    """Test every field of a complete row."""
    record = _normalize(make_row(), online_map)

    assert isinstance(record, SaleRecord)
    assert record.source_channel is SourceKind.ONLINE
    assert record.order_date == date(2026, 2, 1)
    assert record.order_reference == "#1001"
    assert record.sales_channel_label == "Online Store"
    assert record.payment_gateway == "Stripe"
    assert record.net_amount == 100.0
    assert record.total_amount == 130.0
    assert record.shipping_amount == 30.0
    assert record.customer_email == "a@example.com"
    assert record.marketing.email is True
    assert record.marketing.sms is False
    assert record.marketing.whatsapp is None
    assert record.date_inferred is False


@pytest.mark.parametrize("raw_date", ["02-13-2026", "2/13/26", "2026-02-13", "2026-02-13 18:22:01"])
def test_date_formats_are_equivalent(online_map, raw_date) -> None:
    """Test the same day in every supported format yields the same order date."""
    record = _normalize(make_row(Order_Date=raw_date), online_map)

    assert record.order_date == date(2026, 2, 13)


@pytest.mark.parametrize("first_cell", ["Grand Total", "grand total", "TOTAL"])
def test_summary_rows_are_skipped(online_map, first_cell) -> None:
    """Test that footer rows are excluded and reported as summary."""
    row = make_row(Order_Date=first_cell, Order_Name=None, Net_Sales="12345.00")
    result = _normalize(row, online_map)

    assert isinstance(result, RowSkip)
    assert result.reason is SkipReason.SUMMARY
    assert result.reason.counts_as_empty


def test_summary_label_in_reference_column(online_map) -> None:
    """Test 'Total' in the order reference column also marks a summary row."""
    row = make_row(Order_Date=None, Order_Name="Total")

    assert is_summary_row(row, online_map)
    assert _normalize(row, online_map).reason is SkipReason.SUMMARY


def test_blank_row(online_map) -> None:
    """Test that a fully blank row is an empty skip."""
    result = _normalize([None] * len(HEADERS), online_map)

    assert result.reason is SkipReason.EMPTY


def test_cross_channel_guard(online_map) -> None:
    """Test point-of-sale rows in an online report are rejected."""
    result = _normalize(make_row(Sales_Channel="Point of Sale"), online_map)

    assert isinstance(result, RowSkip)
    assert result.reason is SkipReason.CROSS_CHANNEL
    assert not result.reason.counts_as_empty


def test_point_of_sale_label_is_fine_for_pos_reports() -> None:
    """Test the cross-channel guard only applies to online reports."""
    cmap = resolve(HEADERS, "pos")
    record = _normalize(make_row(Sales_Channel="Point of Sale"), cmap, "pos")

    assert isinstance(record, SaleRecord)
    assert record.source_channel is SourceKind.POS
    assert record.sales_channel_label == "Point of Sale"


@pytest.mark.parametrize("amount", ["", None, "n/a", "--"])
def test_invalid_amount(online_map, amount) -> None:
    """Test empty or non-numeric net amounts are rejected."""
    result = _normalize(make_row(Net_Sales=amount), online_map)

    assert isinstance(result, RowSkip)
    assert result.reason is SkipReason.INVALID_AMOUNT


def test_zero_amount_is_valid(online_map) -> None:
    """Test exchanges and gift orders with zero net sales are kept."""
    record = _normalize(make_row(Net_Sales="0.00"), online_map)

    assert isinstance(record, SaleRecord)
    assert record.net_amount == 0.0


def test_unparsable_date_falls_back_to_actual_order_date(online_map) -> None:
    """Test the actual order date fills in for an unreadable order date."""
    record = _normalize(
        make_row(Order_Date="sometime", Actual_Order_Date="2026-02-10"), online_map
    )

    assert record.order_date == date(2026, 2, 10)
    assert record.actual_order_date == date(2026, 2, 10)
    assert record.date_inferred is False


def test_unparsable_date_uses_run_date(online_map) -> None:
    """Test a row with a reference but no usable date gets the run date."""
    record = _normalize(make_row(Order_Date="sometime"), online_map)

    assert record.order_date == RUN_DATE
    assert record.date_inferred is True


def test_unparsable_date_without_reference_keeps_the_amount(online_map) -> None:
    """Test a row with an amount but no reference or date still gets the run date."""
    record = _normalize(make_row(Order_Date="garbage", Order_Name=None), online_map)

    assert isinstance(record, SaleRecord)
    assert record.order_reference is None
    assert record.net_amount == 100.0
    assert record.order_date == RUN_DATE
    assert record.date_inferred is True


def test_workbook_float_reference(online_map) -> None:
    """Test the '.0' suffix from workbook numbers is removed from references."""
    record = _normalize(make_row(Order_Name=1042.0), online_map)

    assert record.order_reference == "1042"


def test_zero_shipping_is_stored_as_zero(online_map) -> None:
    """Test shipping compensation is applied at display time only."""
    record = _normalize(make_row(Shipping="0"), online_map)

    assert record.shipping_amount == 0.0
    assert display_shipping(record, 30.0) == 30.0
    assert display_shipping(record, 45.0) == 45.0


def test_missing_optional_columns() -> None:
    """Test a minimal report still produces records."""
    cmap = resolve(["Order Name", "Order Date", "Net Sales"], "online")
    record = _normalize(["#7", "2026-02-05", "5"], cmap)

    assert record.order_reference == "#7"
    assert record.payment_gateway is None
    assert record.shipping_amount is None
    assert record.marketing.email is None
