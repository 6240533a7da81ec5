"""Command-line entry points for the shop ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into drafts and requests consumed by the business
layer, and printing statements. Keeping the CLI thin lets tests and scripts
reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, spreadsheet, statements
from .constants import SEARCH_RESULT_LIMIT, REVENUE_SERIES_DAYS, DocumentStatus, DocumentType, ImportKind
from .data_manager import Document


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``persist`` tells :func:`main` whether the snapshot should be written back
    after the command succeeds.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    persist: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-ledger",
        description="Command-line tools for the shop ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upward).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that change the snapshot, such as posting documents."""
    specs = {
        "add-customer": register_add_customer_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "post": register_post_command(subparsers),
        "pay": register_pay_command(subparsers),
        "transfer": register_transfer_command(subparsers),
        "set-status": register_set_status_command(subparsers),
        "import-customers": register_import_command(subparsers, ImportKind.CUSTOMERS),
        "import-products": register_import_command(subparsers, ImportKind.PRODUCTS),
        "import-invoices": register_import_command(subparsers, ImportKind.INVOICES),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as statements and backups."""
    specs = {
        "debts": register_debts_command(subparsers),
        "price-history": register_price_history_command(subparsers),
        "search": register_search_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "price": register_price_command(subparsers),
        "log": register_log_command(subparsers),
        "export": register_export_command(subparsers),
        "template": register_template_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_date_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="start", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
    parser.add_argument("--to", dest="end", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a new customer with zero debt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--address", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new catalog product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--unit", default=None)
        parser.add_argument("--price", default="0")
        parser.add_argument("--stock", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_post_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``post``."""
    name = "post"
    help_text = "Post a quote, order, sale, or return."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--type",
            dest="document_type",
            choices=[member.value for member in DocumentType if member is not DocumentType.PAYMENT],
            required=True,
        )
        parser.add_argument("--customer-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            default=[],
            metavar="PRODUCT_ID:QTY[:PRICE]",
            help="Line item; repeat for several products. PRICE overrides the remembered price.",
        )
        parser.add_argument("--paid", default="0")
        parser.add_argument("--note", default=None)
        parser.add_argument("--date", dest="timestamp", default=None, help="ISO timestamp (defaults to now).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_post)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Record a debt payment from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay)


def register_transfer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transfer``."""
    name = "transfer"
    help_text = "Post a new order or sale pre-filled from an existing quote or order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        parser.add_argument(
            "--to",
            dest="target_type",
            choices=[DocumentType.ORDER.value, DocumentType.SALE.value],
            required=True,
        )
        parser.add_argument("--paid", default="0")
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transfer)


def register_set_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-status``."""
    name = "set-status"
    help_text = "Change the status of a quote or order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--document-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in DocumentStatus], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_status)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    kind: ImportKind,
) -> CommandSpec:
    """Register the parser and executor for one ``import-*`` command."""
    name = f"import-{kind.value}"
    help_text = f"Import {kind.value} from an .xlsx spreadsheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name, import_kind=kind.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Replace the whole snapshot with a backup file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    # The restored context is persisted by the executor itself.
    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore, persist=False)


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    name = "debts"
    help_text = "Display outstanding balances or one customer's debt statement."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", default=None)
        _add_date_range_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debts_report, persist=False)


def register_price_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``price-history``."""
    name = "price-history"
    help_text = "Display every price a product was sold or quoted at."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_date_range_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_price_history_report, persist=False
    )


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""
    name = "search"
    help_text = "Search documents by id or customer name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("query", nargs="?", default="")
        parser.add_argument("--limit", type=int, default=SEARCH_RESULT_LIMIT)
        _add_date_range_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search, persist=False)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display debt, revenue, pending orders, and the recent revenue series."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--today", type=date.fromisoformat, default=None)
        parser.add_argument("--days", type=int, default=REVENUE_SERIES_DAYS)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard, persist=False)


def register_price_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``price``."""
    name = "price"
    help_text = "Display the price a customer would be charged for a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_price_lookup, persist=False)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the document log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report, persist=False)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write a dated backup of the snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--directory", type=Path, default=Path.cwd())
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export, persist=False)


def register_template_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``template``."""
    name = "template"
    help_text = "Write a blank import spreadsheet with the expected columns."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in ImportKind], required=True)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_template, persist=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations and check its schema."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command definitions keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_money(raw: str) -> Decimal:
    """Parse a command-line amount, rejecting anything that is not a number."""
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise core_logic.ValidationError(f"Not a valid amount: {raw!r}") from exc


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise core_logic.ValidationError(f"Not a valid timestamp: {raw!r}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def parse_item_spec(raw: str) -> tuple[str, int, Optional[Decimal]]:
    """Split ``PRODUCT_ID:QTY[:PRICE]`` into its parts."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise core_logic.ValidationError(f"Line item must look like PRODUCT_ID:QTY[:PRICE], got {raw!r}")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise core_logic.ValidationError(f"Quantity must be a whole number, got {parts[1]!r}") from exc
    price = parse_money(parts[2]) if len(parts) == 3 else None
    return parts[0], quantity, price


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-customer request."""
    return {"name": args.name, "phone": args.phone, "address": args.address}


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "unit": args.unit,
        "default_price": parse_money(args.price),
        "stock": args.stock,
    }


def translate_post(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.DraftDocument:
    """Translate CLI args into a draft, pricing lines from the pricing memory.

    Lines without an explicit price take the customer's remembered price, or
    the catalog price when none is remembered. Repeated products merge.
    """
    draft = core_logic.DraftDocument(
        document_type=DocumentType(args.document_type),
        customer_id=args.customer_id,
        paid_amount=parse_money(args.paid),
        note=args.note,
        timestamp=parse_timestamp(args.timestamp),
    )
    for raw in args.items:
        product_id, quantity, price = parse_item_spec(raw)
        item = core_logic.compose_line_item(context, args.customer_id, product_id, quantity)
        if price is not None:
            item = replace(item, unit_price=price)
        draft = core_logic.add_item_to_draft(draft, item)
    return draft


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    customer = core_logic.add_customer(context, **translate_add_customer(args))
    print(f"Added customer {customer.customer_id} ({customer.name})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print(f"Added product {product.product_id} ({product.name}, stock {product.stock})")
    return 0


def run_post(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the posting workflow via the BLL."""
    document = core_logic.post_document(context, translate_post(context, args))
    print(format_document(document))
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    document = core_logic.record_payment(context, args.customer_id, parse_money(args.amount), note=args.note)
    print(format_document(document))
    return 0


def run_transfer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Build a draft from an existing document and post it."""
    source = core_logic.get_document(context, args.document_id)
    draft = core_logic.transfer_document(source, args.target_type)
    draft = replace(draft, paid_amount=parse_money(args.paid), note=args.note)
    document = core_logic.post_document(context, draft)
    print(format_document(document))
    return 0


def run_set_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the status change workflow via the BLL."""
    document = core_logic.update_document_status(context, args.document_id, args.status)
    print(format_document(document))
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute one of the spreadsheet import workflows."""
    kind = ImportKind(args.import_kind)
    importers = {
        ImportKind.CUSTOMERS: core_logic.import_customers,
        ImportKind.PRODUCTS: core_logic.import_products,
        ImportKind.INVOICES: core_logic.import_invoices,
    }
    created = importers[kind](context, args.file)
    print(f"Imported {len(created)} {kind.value}")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Replace the snapshot with a backup and persist the result."""
    restored = core_logic.restore_snapshot(context, args.file)
    persist_snapshot(restored)
    print(
        f"Restored {len(restored.snapshot.customers)} customers, "
        f"{len(restored.snapshot.products)} products, "
        f"{len(restored.snapshot.invoices)} documents"
    )
    return 0


def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one customer's statement, or every customer with a balance."""
    if args.customer_id is None:
        for customer in core_logic.list_customers(context):
            if customer.total_debt != 0:
                print(f"{customer.customer_id}\t{customer.name}\t{customer.total_debt}")
        return 0

    customer = core_logic.get_customer(context, args.customer_id)
    date_range = statements.DateRange(start=args.start, end=args.end)
    print(f"{customer.name}: outstanding {customer.total_debt}")
    for row in statements.debt_ledger(core_logic.list_documents(context), customer.customer_id, date_range):
        print(f"{row.timestamp.isoformat()}\t{row.document_id}\t{row.label.value}\t+{row.increase}\t-{row.decrease}")
    return 0


def run_price_history_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the price history of one product."""
    product = core_logic.get_product(context, args.product_id)
    date_range = statements.DateRange(start=args.start, end=args.end)
    print(f"{product.name}: catalog price {product.default_price}")
    for row in statements.product_price_history(core_logic.list_documents(context), product.product_id, date_range):
        print(
            f"{row.timestamp.isoformat()}\t{row.document_id}\t{row.document_type.value}\t"
            f"{row.customer_name}\t{row.quantity} x {row.unit_price}"
        )
    return 0


def run_search(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print documents matching a free-text query."""
    date_range = statements.DateRange(start=args.start, end=args.end)
    for document in statements.search_documents(
        core_logic.list_documents(context), args.query, date_range, limit=args.limit
    ):
        print(format_document(document))
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the shop overview."""
    summary = statements.summarize(context.snapshot, today=args.today, days=args.days)
    print(f"Shop: {context.settings.shop_name}")
    print(f"Outstanding debt: {summary.total_debt}")
    print(f"Sales revenue: {summary.total_revenue}")
    print(f"Pending orders: {summary.pending_count}")
    for point in summary.revenue_series:
        print(f"{point.day.isoformat()}\t{point.revenue}")
    return 0


def run_price_lookup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the price a customer would be charged for a product."""
    core_logic.get_customer(context, args.customer_id)
    price = core_logic.resolve_price(context, args.customer_id, args.product_id)
    print(price)
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the document log in posting order."""
    for document in core_logic.list_documents(context):
        print(format_document(document))
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write a dated backup of the snapshot."""
    target = core_logic.export_context(context, args.directory)
    print(f"Exported snapshot to {target}")
    return 0


def run_template(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write a blank import spreadsheet."""
    target = spreadsheet.create_import_template(args.output, args.kind, overwrite=args.force)
    print(f"Created template {target}")
    return 0


def format_document(document: Document) -> str:
    """Render a document as a single tab-separated line."""
    fields: List[str] = [
        document.document_id,
        document.created_at.isoformat(),
        document.document_type.value,
        document.status.value,
        document.customer_name,
        f"total={document.total_amount}",
        f"paid={document.paid_amount}",
    ]
    if document.note:
        fields.append(document.note)
    return "\t".join(fields)


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, data_manager.DataImportError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_snapshot(context: core_logic.RuntimeContext) -> None:
    """Persist snapshot changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].persist:
            persist_snapshot(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
