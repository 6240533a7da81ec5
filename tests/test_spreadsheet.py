"""Tests for spreadsheet parsing and the import workflows built on it."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from shop_ledger import core_logic, spreadsheet
from shop_ledger.constants import IMPORTED_PRODUCT_ID, WALK_IN_CUSTOMER_ID, DocumentType, ImportKind
from shop_ledger.data_manager import DataImportError


INVOICE_HEADER = ["Code", "Date", "Customer", "Product", "Quantity", "UnitPrice", "Paid"]


def test_read_customer_rows_skips_header_and_blank_names(xlsx_factory):
    source = xlsx_factory(
        [
            ["Name", "Phone", "Address"],
            ["  Alice ", "0900", "Main St"],
            [None, "0911", "ignored"],
            ["Bob"],
        ]
    )

    records = spreadsheet.read_customer_rows(source)

    assert records == [
        spreadsheet.CustomerRecord(name="Alice", phone="0900", address="Main St"),
        spreadsheet.CustomerRecord(name="Bob"),
    ]


def test_read_product_rows_parses_numbers_and_blank_unit(xlsx_factory):
    source = xlsx_factory([["Name", "Unit", "DefaultPrice", "Stock"], ["Rice", None, 12500, 40], ["Oil", "bottle", "7.5", None]])

    records = spreadsheet.read_product_rows(source)

    assert records[0] == spreadsheet.ProductRecord(name="Rice", unit=None, default_price=Decimal("12500"), stock=40)
    assert records[1].unit == "bottle"
    assert records[1].default_price == Decimal("7.5")
    assert records[1].stock == 0


def test_read_product_rows_rejects_non_numeric_price(xlsx_factory):
    source = xlsx_factory([["Name", "Unit", "DefaultPrice", "Stock"], ["Rice", "bag", "cheap", 1]])

    with pytest.raises(DataImportError):
        spreadsheet.read_product_rows(source)


def test_read_invoice_rows_groups_by_code(xlsx_factory):
    source = xlsx_factory(
        [
            INVOICE_HEADER,
            ["A1", datetime(2026, 3, 1, 9, 0), "Alice", "Rice", 2, 100, 50],
            ["B7", "2026-03-02T10:00:00", None, "Oil", None, 40, None],
            ["A1", None, "ignored", "Oil", 1, 40, 999],
        ]
    )

    records = spreadsheet.read_invoice_rows(source)

    assert [record.code for record in records] == ["A1", "B7"]
    first, second = records
    assert first.timestamp == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
    assert first.customer_name == "Alice"
    assert first.paid_amount == Decimal("50")
    assert [(line.name, line.quantity, line.unit_price) for line in first.lines] == [
        ("Rice", 2, Decimal("100")),
        ("Oil", 1, Decimal("40")),
    ]
    assert second.customer_name == spreadsheet.DEFAULT_INVOICE_CUSTOMER
    assert second.lines[0].quantity == 1
    assert second.paid_amount == Decimal("0")


def test_parse_sheet_date_accepts_serial_numbers_and_rejects_garbage():
    assert spreadsheet.parse_sheet_date(46082) == datetime(2026, 3, 1, tzinfo=UTC)
    assert spreadsheet.parse_sheet_date("not a date") is None
    assert spreadsheet.parse_sheet_date(None) is None


def test_read_sheet_rows_rejects_non_workbook(tmp_path):
    bogus = tmp_path / "bogus.xlsx"
    bogus.write_text("plain text", encoding="utf-8")

    with pytest.raises(DataImportError):
        spreadsheet.read_customer_rows(bogus)


def test_read_sheet_rows_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        spreadsheet.read_invoice_rows(tmp_path / "missing.xlsx")


def test_create_import_template_writes_bold_headers(tmp_path):
    target = spreadsheet.create_import_template(tmp_path / "invoices.xlsx", "invoices")

    worksheet = openpyxl.load_workbook(target).active
    headers = [cell.value for cell in worksheet[1]]
    assert headers == list(spreadsheet.TEMPLATE_COLUMNS[ImportKind.INVOICES])
    assert worksheet["A1"].font.bold

    with pytest.raises(FileExistsError):
        spreadsheet.create_import_template(target, ImportKind.INVOICES)


def test_template_round_trips_through_reader(tmp_path):
    target = spreadsheet.create_import_template(tmp_path / "customers.xlsx", ImportKind.CUSTOMERS)

    assert spreadsheet.read_customer_rows(target) == []


# ---------------------------------------------------------------------------
# Import workflows
# ---------------------------------------------------------------------------


def test_import_customers_and_products(context, xlsx_factory):
    customers = xlsx_factory([["Name"], ["Alice", "0900"], ["Bob"]], filename="customers.xlsx")
    products = xlsx_factory([["Name"], ["Rice", None, 100, 10]], filename="products.xlsx")

    created_customers = core_logic.import_customers(context, customers)
    created_products = core_logic.import_products(context, products)

    assert [c.name for c in created_customers] == ["Alice", "Bob"]
    assert all(c.total_debt == Decimal("0") for c in created_customers)
    assert len({c.customer_id for c in created_customers}) == 2
    assert created_products[0].unit == context.settings.default_unit
    assert context.snapshot.products[created_products[0].product_id].stock == 10


def test_import_invoices_posts_sales_through_engine(seeded_context, xlsx_factory):
    source = xlsx_factory(
        [
            INVOICE_HEADER,
            ["A1", datetime(2026, 3, 1, 9, 0), "alice", "rice", 2, 90, 30],
            ["A1", None, None, "Mystery", 1, 10, None],
            ["B2", datetime(2026, 3, 2, 9, 0), "Stranger", "Oil", 1, 40, 0],
        ]
    )

    posted = core_logic.import_invoices(seeded_context, source)

    snapshot = seeded_context.snapshot
    first, second = posted
    assert first.document_type is DocumentType.SALE
    assert first.customer_id == "C1"
    assert [item.product_id for item in first.items] == ["P1", IMPORTED_PRODUCT_ID]
    assert first.total_amount == Decimal("190")
    assert first.created_at == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
    assert second.customer_id == WALK_IN_CUSTOMER_ID
    assert second.customer_name == "Stranger"
    assert snapshot.customers["C1"].total_debt == Decimal("160")
    assert snapshot.customers[WALK_IN_CUSTOMER_ID].total_debt == Decimal("40")
    assert snapshot.products["P1"].stock == 8
    assert snapshot.products["P2"].stock == 4
    assert seeded_context.pricing.lookup("C1", "P1") == Decimal("90")
    assert snapshot.invoices == posted


def test_import_invoices_credits_unnamed_rows_to_configured_walk_in(seeded_context, xlsx_factory):
    context = core_logic.RuntimeContext(
        settings=replace(seeded_context.settings, walk_in_customer_name="Counter sale"),
        snapshot=seeded_context.snapshot,
    )
    source = xlsx_factory([INVOICE_HEADER, ["Z9", "2026-03-05", None, "Rice", 1, 100, 100]])

    (posted,) = core_logic.import_invoices(context, source)

    assert posted.customer_id == WALK_IN_CUSTOMER_ID
    assert posted.customer_name == "Counter sale"
    assert context.snapshot.customers[WALK_IN_CUSTOMER_ID].name == "Counter sale"
