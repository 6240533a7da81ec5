"""Integration tests describing the end-to-end shop ledger workflows.

These scenarios drive the data access layer, the business logic, and the CLI
together against real config and snapshot files on disk.
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from shop_ledger import cli, core_logic, data_manager, statements
from shop_ledger.constants import IMPORTED_PRODUCT_ID, DocumentStatus, DocumentType


def _reload(bundle) -> core_logic.RuntimeContext:
    context = core_logic.load_runtime_context(bundle.config_path)
    core_logic.ensure_schema_version(context)
    return context


def _only(mapping):
    (value,) = mapping.values()
    return value


def test_sale_return_payment_lifecycle_flow(runtime_context):
    """Post a credit sale, a return, and a payment, persisting in between."""

    context = runtime_context
    customer = core_logic.add_customer(context, name="Alice", phone="0900")
    product = core_logic.add_product(context, name="Rice", unit="bag", default_price=Decimal("100"), stock=10)

    # Persist and reload so writes go to disk before subsequent operations.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    draft = core_logic.DraftDocument(DocumentType.SALE, customer.customer_id)
    draft = core_logic.add_item_to_draft(
        draft, core_logic.compose_line_item(context, customer.customer_id, product.product_id, 3)
    )
    draft = replace(draft, paid_amount=Decimal("100"), timestamp=datetime(2026, 3, 1, 9, 0, tzinfo=UTC))
    sale = core_logic.post_document(context, draft)

    returned = core_logic.post_document(
        context,
        core_logic.DraftDocument(
            DocumentType.RETURN,
            customer.customer_id,
            (data_manager.LineItem(product.product_id, "Rice", 1, Decimal("100")),),
            timestamp=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        ),
    )
    payment = core_logic.record_payment(
        context, customer.customer_id, Decimal("50"), timestamp=datetime(2026, 3, 3, 9, 0, tzinfo=UTC)
    )

    assert sale.total_amount == Decimal("300")
    assert returned.total_amount == Decimal("100")
    assert payment.note == core_logic.DEFAULT_PAYMENT_NOTE

    core_logic.persist_context(context)
    reloaded = core_logic.refresh_context(context)

    assert reloaded.snapshot == context.snapshot
    assert core_logic.get_customer(reloaded, customer.customer_id).total_debt == Decimal("50")
    assert core_logic.get_product(reloaded, product.product_id).stock == 8

    rows = statements.debt_ledger(core_logic.list_documents(reloaded), customer.customer_id)
    assert [(row.increase, row.decrease) for row in rows] == [
        (Decimal("0"), Decimal("50")),
        (Decimal("0"), Decimal("100")),
        (Decimal("200"), Decimal("0")),
    ]


def test_quote_to_order_to_sale_flow(runtime_context):
    """Quotes and orders seed new drafts without touching balances."""

    context = runtime_context
    customer = core_logic.add_customer(context, name="Bob")
    product = core_logic.add_product(context, name="Oil", default_price=Decimal("40"), stock=5)
    item = core_logic.compose_line_item(context, customer.customer_id, product.product_id, 2)

    quote = core_logic.post_document(
        context, core_logic.DraftDocument(DocumentType.QUOTE, customer.customer_id, (item,))
    )
    order = core_logic.post_document(context, core_logic.transfer_document(quote, DocumentType.ORDER))
    core_logic.update_document_status(context, order.document_id, DocumentStatus.PENDING)

    assert core_logic.get_customer(context, customer.customer_id).total_debt == Decimal("0")
    assert core_logic.get_product(context, product.product_id).stock == 5
    assert statements.summarize(context.snapshot).pending_count == 1

    sale = core_logic.post_document(context, core_logic.transfer_document(order, "sale"))
    core_logic.update_document_status(context, order.document_id, DocumentStatus.CANCELLED)

    assert sale.items == quote.items
    assert core_logic.get_customer(context, customer.customer_id).total_debt == Decimal("80")
    assert core_logic.get_product(context, product.product_id).stock == 3
    assert core_logic.get_document(context, quote.document_id) == quote
    assert [doc.document_type for doc in core_logic.list_documents(context)] == [
        DocumentType.QUOTE,
        DocumentType.ORDER,
        DocumentType.SALE,
    ]
    with pytest.raises(core_logic.ValidationError):
        core_logic.update_document_status(context, sale.document_id, DocumentStatus.CANCELLED)


def test_cli_post_pay_and_debt_report_flow(config_factory, capsys):
    """Drive manual entry, posting, payment, and the statement through main."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main([*base, "add-customer", "--name", "Alice"]) == 0
    assert cli.main([*base, "add-product", "--name", "Rice", "--price", "12.5", "--stock", "4"]) == 0

    context = _reload(bundle)
    customer = _only(context.snapshot.customers)
    product = _only(context.snapshot.products)

    exit_code = cli.main(
        [
            *base,
            "post",
            "--type",
            "sale",
            "--customer-id",
            customer.customer_id,
            "--item",
            f"{product.product_id}:2",
            "--paid",
            "5",
            "--date",
            "2026-03-01T09:30:00",
        ]
    )
    assert exit_code == 0
    assert cli.main([*base, "pay", "--customer-id", customer.customer_id, "--amount", "7"]) == 0

    context = _reload(bundle)
    assert context.snapshot.customers[customer.customer_id].total_debt == Decimal("13")
    assert context.snapshot.products[product.product_id].stock == 2
    assert context.pricing.lookup(customer.customer_id, product.product_id) == Decimal("12.5")

    capsys.readouterr()
    assert cli.main([*base, "debts", "--customer-id", customer.customer_id]) == 0
    output = capsys.readouterr().out
    assert "Alice: outstanding 13" in output
    assert "purchase" in output
    assert "payment" in output

    assert cli.main([*base, "price", "--customer-id", customer.customer_id, "--product-id", product.product_id]) == 0
    assert capsys.readouterr().out.strip() == "12.5"


def test_cli_rejected_post_leaves_file_untouched(config_factory):
    """A failed write command exits non-zero and persists nothing."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]
    assert cli.main([*base, "add-customer", "--name", "Alice"]) == 0
    before = bundle.data_path.read_text(encoding="utf-8")
    customer_id = _only(_reload(bundle).snapshot.customers).customer_id

    exit_code = cli.main([*base, "post", "--type", "sale", "--customer-id", customer_id])
    assert exit_code == 2

    exit_code = cli.main([*base, "pay", "--customer-id", "nobody", "--amount", "5"])
    assert exit_code == 2

    assert bundle.data_path.read_text(encoding="utf-8") == before


def test_cli_negative_stock_policy_flow(config_factory):
    """Disallowing negative stock rejects oversells through the CLI."""

    bundle = config_factory(allow_negative_stock="no")
    base = ["--config", str(bundle.config_path)]
    assert cli.main([*base, "add-customer", "--name", "Alice"]) == 0
    assert cli.main([*base, "add-product", "--name", "Rice", "--price", "10", "--stock", "1"]) == 0
    context = _reload(bundle)
    customer_id = _only(context.snapshot.customers).customer_id
    product_id = _only(context.snapshot.products).product_id

    oversell = [*base, "post", "--type", "sale", "--customer-id", customer_id, "--item", f"{product_id}:2"]
    assert cli.main(oversell) == 2

    context = _reload(bundle)
    assert context.snapshot.invoices == []
    assert context.snapshot.products[product_id].stock == 1


def test_cli_import_invoices_flow(config_factory, xlsx_factory):
    """Imported invoices post through the engine and reach the snapshot file."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]
    customers = xlsx_factory([["Name", "Phone", "Address"], ["Alice", "0900", ""]], filename="customers.xlsx")
    products = xlsx_factory([["Name", "Unit", "DefaultPrice", "Stock"], ["Rice", "bag", 100, 10]], filename="products.xlsx")
    invoices = xlsx_factory(
        [
            ["Code", "Date", "Customer", "Product", "Quantity", "UnitPrice", "Paid"],
            ["A1", datetime(2026, 3, 1, 9, 0), "Alice", "Rice", 2, 95, 90],
            ["A1", None, None, "Gift wrap", 1, 10, None],
        ],
        filename="invoices.xlsx",
    )

    assert cli.main([*base, "import-customers", "--file", str(customers)]) == 0
    assert cli.main([*base, "import-products", "--file", str(products)]) == 0
    assert cli.main([*base, "import-invoices", "--file", str(invoices)]) == 0

    context = _reload(bundle)
    customer = _only(context.snapshot.customers)
    product = _only(context.snapshot.products)
    (invoice,) = context.snapshot.invoices
    assert invoice.created_at == datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
    assert [item.product_id for item in invoice.items] == [product.product_id, IMPORTED_PRODUCT_ID]
    assert customer.total_debt == Decimal("110")
    assert product.stock == 8
    assert context.pricing.lookup(customer.customer_id, product.product_id) == Decimal("95")


def test_cli_import_rejected_under_reject_policy(config_factory, xlsx_factory):
    bundle = config_factory(unknown_products="reject")
    base = ["--config", str(bundle.config_path)]
    invoices = xlsx_factory(
        [
            ["Code", "Date", "Customer", "Product", "Quantity", "UnitPrice", "Paid"],
            ["A1", "2026-03-01", "Stranger", "Mystery", 1, 10, 0],
        ]
    )

    assert cli.main([*base, "import-invoices", "--file", str(invoices)]) == 2
    assert _reload(bundle).snapshot.invoices == []


def test_cli_export_and_restore_flow(config_factory, tmp_path):
    """A backup written by export restores the exact snapshot later."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]
    backups = tmp_path / "backups"
    backups.mkdir()

    assert cli.main([*base, "add-customer", "--name", "Alice"]) == 0
    assert cli.main([*base, "export", "--directory", str(backups)]) == 0
    (backup,) = backups.glob("shop_ledger_backup_*.json")
    saved = _reload(bundle).snapshot

    assert cli.main([*base, "add-customer", "--name", "Bob"]) == 0
    assert len(_reload(bundle).snapshot.customers) == 2

    assert cli.main([*base, "restore", "--file", str(backup)]) == 0
    assert _reload(bundle).snapshot == saved

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert cli.main([*base, "restore", "--file", str(broken)]) == 4
    assert cli.main([*base, "restore", "--file", str(tmp_path / "missing.json")]) == 3
    assert _reload(bundle).snapshot == saved


def test_cli_schema_mismatch_exits_with_error(config_factory):
    bundle = config_factory(schema_version="9.9.9")

    assert cli.main(["--config", str(bundle.config_path), "log"]) == 1


def test_persisted_snapshot_replays_to_cached_balances(runtime_context):
    """Balances cached on disk equal a replay of the persisted log."""

    context = runtime_context
    alice = core_logic.add_customer(context, name="Alice")
    rice = core_logic.add_product(context, name="Rice", default_price=Decimal("100"), stock=3)
    opening = {rice.product_id: rice.stock}

    for quantity, paid in ((2, "50"), (4, "0")):
        item = core_logic.compose_line_item(context, alice.customer_id, rice.product_id, quantity)
        core_logic.post_document(
            context,
            core_logic.DraftDocument(DocumentType.SALE, alice.customer_id, (item,), Decimal(paid)),
        )
    core_logic.record_payment(context, alice.customer_id, Decimal("25"))
    core_logic.persist_context(context)

    payload = json.loads(context.settings.data_file.read_text(encoding="utf-8"))
    assert len(payload["invoices"]) == 3

    reloaded = core_logic.refresh_context(context)
    debts = statements.replay_customer_debts(reloaded.snapshot.invoices, [alice.customer_id])
    stock = statements.replay_stock_movements(reloaded.snapshot.invoices, opening)

    assert debts == {alice.customer_id: reloaded.snapshot.customers[alice.customer_id].total_debt}
    assert debts[alice.customer_id] == Decimal("525")
    assert stock == {rice.product_id: -3}
    assert reloaded.snapshot.products[rice.product_id].stock == -3
