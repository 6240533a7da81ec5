"""Business logic layer for the shop ledger.

This module contains the posting engine that turns draft documents into
entries of the append-only document log. It consumes the data access layer
for all I/O and the posting rules for every balance change, so customer debt,
product stock, and pricing memory only ever move together with a posted
document.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Collection, Dict, List, Optional, Tuple, Union

from . import data_manager, log, posting_rules, spreadsheet
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    IMPORTED_PRODUCT_ID,
    WALK_IN_CUSTOMER_ID,
    DocumentStatus,
    DocumentType,
    UnknownProductPolicy,
)
from .data_manager import Customer, Document, LineItem, Product, Snapshot
from .pricing import PricingMemory


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when a draft or request is rejected before any state changes."""


class UnknownReferenceError(BusinessRuleViolation):
    """Raised when a referenced customer, product, or document is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale would take stock below zero and policy forbids it."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the live snapshot used by the BLL."""

    settings: data_manager.ConfigSettings
    snapshot: Snapshot = field(default_factory=Snapshot)

    @property
    def pricing(self) -> PricingMemory:
        return PricingMemory(self.snapshot.custom_prices)


@dataclass(frozen=True)
class DraftDocument:
    """Unposted document assembled by a caller and handed to ``post_document``."""

    document_type: DocumentType
    customer_id: Optional[str]
    items: Tuple[LineItem, ...] = ()
    paid_amount: Decimal = Decimal("0")
    note: Optional[str] = None
    customer_name: Optional[str] = None
    timestamp: Optional[datetime] = None


# Draft templates a posted document may seed; every other pair is refused.
ALLOWED_TRANSFERS: Dict[DocumentType, Tuple[DocumentType, ...]] = {
    DocumentType.QUOTE: (DocumentType.ORDER,),
    DocumentType.ORDER: (DocumentType.SALE,),
}

# Only documents that never touched a balance may change status after posting.
STATUS_EDITABLE_TYPES: Tuple[DocumentType, ...] = (DocumentType.QUOTE, DocumentType.ORDER)

DEFAULT_PAYMENT_NOTE = "Debt collection"


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp, usually sourced
            from a draft.

    Returns:
        datetime: ``candidate`` when provided, otherwise the current UTC
            datetime generated via :func:`datetime.now`.
    """

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the persisted snapshot for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context bundling the immutable settings with the live
            snapshot.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        data_manager.DataImportError: If the snapshot file is unreadable.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    snapshot = data_manager.load_snapshot(settings.data_file)
    log.info(
        "Loaded runtime context for '%s' (%d customers, %d products, %d documents)",
        settings.data_file,
        len(snapshot.customers),
        len(snapshot.products),
        len(snapshot.invoices),
    )
    return RuntimeContext(settings=settings, snapshot=snapshot)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate snapshot compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Snapshot schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Snapshot schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory snapshot to the configured data file.

    Persistence is not part of the posting transaction: a post that succeeded
    in memory stays posted even if this write later fails.
    """
    data_manager.save_snapshot(context.snapshot, destination=context.settings.data_file)
    log.info("Persisted snapshot '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the snapshot from disk to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context sharing the settings of ``context``.
    """
    snapshot = data_manager.load_snapshot(context.settings.data_file)
    log.info("Reloaded snapshot '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, snapshot=snapshot)


def restore_snapshot(context: RuntimeContext, source: Path) -> RuntimeContext:
    """Build a context whose snapshot is replaced wholesale by ``source``.

    The file is parsed and validated before anything else happens, so a
    malformed backup leaves ``context`` exactly as it was.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        data_manager.DataImportError: If ``source`` is not a valid snapshot.
    """
    snapshot = data_manager.read_snapshot_file(source)
    log.info(
        "Restored snapshot from '%s' (%d customers, %d products, %d documents)",
        source,
        len(snapshot.customers),
        len(snapshot.products),
        len(snapshot.invoices),
    )
    return RuntimeContext(settings=context.settings, snapshot=snapshot)


def export_context(context: RuntimeContext, directory: Path, *, when: Optional[date] = None) -> Path:
    """Write a dated backup of the current snapshot into ``directory``."""
    target = data_manager.export_snapshot(context.snapshot, directory, when=when)
    log.info("Exported snapshot to '%s'", target)
    return target


def list_customers(context: RuntimeContext) -> List[Customer]:
    return list(context.snapshot.customers.values())


def list_products(context: RuntimeContext) -> List[Product]:
    return list(context.snapshot.products.values())


def list_documents(context: RuntimeContext) -> List[Document]:
    """Return a shallow copy of the document log in posting order."""
    return list(context.snapshot.invoices)


def get_customer(context: RuntimeContext, customer_id: str) -> Customer:
    """Resolve a customer record by its identifier.

    Raises:
        UnknownReferenceError: If ``customer_id`` is absent from the snapshot.
    """
    try:
        return context.snapshot.customers[customer_id]
    except KeyError as exc:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise UnknownReferenceError(f"Unknown customer id: {customer_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product record by its identifier.

    Raises:
        UnknownReferenceError: If ``product_id`` is absent from the snapshot.
    """
    try:
        return context.snapshot.products[product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise UnknownReferenceError(f"Unknown product id: {product_id}") from exc


def get_document(context: RuntimeContext, document_id: str) -> Document:
    """Retrieve a posted document by its identifier.

    Raises:
        UnknownReferenceError: If the log lacks the supplied identifier.
    """
    for document in context.snapshot.invoices:
        if document.document_id == document_id:
            return document
    log.warning("Document lookup failed for id '%s'", document_id)
    raise UnknownReferenceError(f"Unknown document id: {document_id}")


def find_customer_by_name(context: RuntimeContext, name: str) -> Optional[Customer]:
    """Return the first customer whose name matches ``name`` case-insensitively."""
    wanted = name.strip().casefold()
    if not wanted:
        return None
    for customer in context.snapshot.customers.values():
        if customer.name.strip().casefold() == wanted:
            return customer
    return None


def find_product_by_name(context: RuntimeContext, name: str) -> Optional[Product]:
    """Return the first product whose name matches ``name`` case-insensitively."""
    wanted = name.strip().casefold()
    if not wanted:
        return None
    for product in context.snapshot.products.values():
        if product.name.strip().casefold() == wanted:
            return product
    return None


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: str = "",
    address: str = "",
    timestamp: Optional[datetime] = None,
) -> Customer:
    """Register a new customer with a zero debt balance.

    Raises:
        ValidationError: If ``name`` is blank.
    """
    name = (name or "").strip()
    if not name:
        log.error("Customer creation rejected: name is required")
        raise ValidationError("Customer name is required")

    created_at = _resolve_timestamp(timestamp)
    customer_id = _unique_id(generate_record_id(prefix="CUST-", when=created_at), context.snapshot.customers)
    customer = Customer(
        customer_id=customer_id,
        name=name,
        phone=(phone or "").strip(),
        address=(address or "").strip(),
        total_debt=Decimal("0"),
        created_at=created_at,
    )
    context.snapshot.customers[customer_id] = customer
    log.info("Added customer '%s' (%s)", customer_id, name)
    return customer


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    unit: Optional[str] = None,
    default_price: Decimal = Decimal("0"),
    stock: int = 0,
    timestamp: Optional[datetime] = None,
) -> Product:
    """Register a new catalog product with an opening stock count.

    Raises:
        ValidationError: If ``name`` is blank or ``default_price`` is negative.
    """
    name = (name or "").strip()
    if not name:
        log.error("Product creation rejected: name is required")
        raise ValidationError("Product name is required")
    require_nonnegative_money(default_price)

    created_at = _resolve_timestamp(timestamp)
    product_id = _unique_id(generate_record_id(prefix="PROD-", when=created_at), context.snapshot.products)
    product = Product(
        product_id=product_id,
        name=name,
        unit=(unit or "").strip() or context.settings.default_unit,
        default_price=default_price,
        stock=int(stock),
        created_at=created_at,
    )
    context.snapshot.products[product_id] = product
    log.info("Added product '%s' (%s, stock=%s)", product_id, name, product.stock)
    return product


def ensure_walk_in_customer(context: RuntimeContext) -> Customer:
    """Return the walk-in placeholder customer, creating it on first use."""
    existing = context.snapshot.customers.get(WALK_IN_CUSTOMER_ID)
    if existing is not None:
        return existing
    customer = Customer(
        customer_id=WALK_IN_CUSTOMER_ID,
        name=context.settings.walk_in_customer_name,
        created_at=_resolve_timestamp(None),
    )
    context.snapshot.customers[WALK_IN_CUSTOMER_ID] = customer
    log.info("Created walk-in customer placeholder '%s'", customer.name)
    return customer


def resolve_price(context: RuntimeContext, customer_id: str, product_id: str) -> Decimal:
    """Price a product for a customer: remembered price, else catalog price.

    Raises:
        UnknownReferenceError: If ``product_id`` is unknown.
    """
    product = get_product(context, product_id)
    return context.pricing.resolve_price(customer_id, product_id, product.default_price)


def compose_line_item(
    context: RuntimeContext,
    customer_id: Optional[str],
    product_id: str,
    quantity: int = 1,
) -> LineItem:
    """Build a draft line for ``product_id`` priced for ``customer_id``.

    A customer must be chosen first because the unit price depends on what
    that customer last paid for the product.

    Raises:
        ValidationError: If no customer is given or ``quantity`` is not positive.
        UnknownReferenceError: If the product is unknown.
    """
    if not customer_id:
        log.error("Line composition rejected: no customer selected")
        raise ValidationError("Select a customer before adding products")
    require_positive_quantity(quantity)
    product = get_product(context, product_id)
    unit_price = context.pricing.resolve_price(customer_id, product_id, product.default_price)
    return LineItem(product_id=product.product_id, name=product.name, quantity=quantity, unit_price=unit_price)


def add_item_to_draft(draft: DraftDocument, item: LineItem) -> DraftDocument:
    """Return ``draft`` with ``item`` added, merging repeated products.

    Adding a product already on the draft bumps that line's quantity and keeps
    its existing unit price.
    """
    items = list(draft.items)
    for index, existing in enumerate(items):
        if existing.product_id == item.product_id:
            items[index] = replace(existing, quantity=existing.quantity + item.quantity)
            break
    else:
        items.append(item)
    return replace(draft, items=tuple(items))


def validate_draft(draft: DraftDocument) -> DocumentType:
    """Check a draft's shape before any lookup or mutation happens.

    Returns:
        DocumentType: The draft's type, normalized to the enum.

    Raises:
        ValidationError: If the customer is missing, the type is unknown, the
            line items are empty (or present on a payment), or a quantity,
            price, or paid amount is out of range.
    """
    if not draft.customer_id:
        log.error("Posting rejected: no customer on draft")
        raise ValidationError("A customer is required to post a document")
    try:
        document_type = DocumentType(draft.document_type)
    except ValueError as exc:
        log.error("Posting rejected: unsupported document type %r", draft.document_type)
        raise ValidationError(f"Unsupported document type: {draft.document_type}") from exc

    if document_type is DocumentType.PAYMENT:
        if draft.items:
            log.error("Posting rejected: payment draft carries line items")
            raise ValidationError("Payment documents carry no line items")
    elif not draft.items:
        log.error("Posting rejected: %s draft has no line items", document_type.value)
        raise ValidationError("At least one line item is required")

    for item in draft.items:
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.unit_price)
    require_nonnegative_money(draft.paid_amount)
    return document_type


def _check_policies(context: RuntimeContext, effect: posting_rules.PostingEffect) -> None:
    settings = context.settings
    if effect.unknown_product_ids:
        if settings.unknown_product_policy is UnknownProductPolicy.REJECT:
            log.error("Posting rejected: unknown products %s", ", ".join(effect.unknown_product_ids))
            raise UnknownReferenceError(
                f"Unknown product id(s): {', '.join(effect.unknown_product_ids)}"
            )
        log.warning(
            "Skipping stock effect for unknown products: %s",
            ", ".join(effect.unknown_product_ids),
        )

    if not settings.allow_negative_stock:
        products = context.snapshot.products
        short = [
            product_id
            for product_id, delta in effect.stock_deltas.items()
            if delta < 0 and products[product_id].stock + delta < 0
        ]
        if short:
            log.error("Posting rejected: insufficient stock for %s", ", ".join(short))
            raise InsufficientStockError(f"Insufficient stock for: {', '.join(short)}")


def post_document(context: RuntimeContext, draft: DraftDocument) -> Document:
    """Validate a draft, apply its ledger effects, and append it to the log.

    The work happens in two phases. The first phase validates the draft,
    resolves the customer, computes the total, and asks the posting rules for
    the document's effect; policy checks run here too. Nothing is written
    until all of that succeeded. The second phase commits the customer debt,
    the stock deltas, the pricing memory updates, and the new log entry, and
    cannot fail. A rejected post therefore leaves the snapshot untouched.

    Args:
        context (RuntimeContext): Runtime context holding the live snapshot.
        draft (DraftDocument): Document to post.

    Returns:
        Document: The posted document, with ``status`` set to ``active``.

    Raises:
        ValidationError: If the draft is malformed.
        UnknownReferenceError: If the customer is unknown, or a product is
            unknown while the ``reject`` policy is configured.
        InsufficientStockError: If negative stock is disallowed and a line
            would take a product below zero.
    """
    document_type = validate_draft(draft)
    customer = get_customer(context, draft.customer_id)
    snapshot = context.snapshot

    items = tuple(draft.items)
    total_amount = posting_rules.document_total(items)
    effect = posting_rules.apply_posting(
        customer,
        snapshot.products,
        document_type,
        items,
        total_amount,
        draft.paid_amount,
    )
    _check_policies(context, effect)

    timestamp = _resolve_timestamp(draft.timestamp)
    taken = {existing.document_id for existing in snapshot.invoices}
    document = Document(
        document_id=_unique_id(generate_record_id(when=timestamp), taken),
        document_type=document_type,
        customer_id=customer.customer_id,
        customer_name=draft.customer_name or customer.name,
        items=items,
        total_amount=total_amount,
        paid_amount=draft.paid_amount,
        status=DocumentStatus.ACTIVE,
        created_at=timestamp,
        note=draft.note,
    )

    snapshot.customers[customer.customer_id] = replace(
        customer,
        total_debt=effect.debt_after,
        last_transaction=timestamp,
    )
    for product_id, delta in effect.stock_deltas.items():
        product = snapshot.products[product_id]
        snapshot.products[product_id] = replace(product, stock=product.stock + delta)
    context.pricing.apply(effect.pricing_updates)
    snapshot.invoices.append(document)

    log.info(
        "Posted %s '%s' for customer '%s' (total=%s, paid=%s, debt %s -> %s)",
        document_type.value.upper(),
        document.document_id,
        customer.customer_id,
        total_amount,
        draft.paid_amount,
        effect.debt_before,
        effect.debt_after,
    )
    return document


def record_payment(
    context: RuntimeContext,
    customer_id: str,
    amount: Decimal,
    *,
    note: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Document:
    """Post a PAYMENT document collecting ``amount`` from a customer.

    Raises:
        ValidationError: If ``amount`` is zero or negative.
        UnknownReferenceError: If the customer is unknown.
    """
    if amount <= Decimal("0"):
        log.error("Payment rejected: amount must be positive (got %s)", amount)
        raise ValidationError("Payment amount must be greater than zero")
    draft = DraftDocument(
        document_type=DocumentType.PAYMENT,
        customer_id=customer_id,
        paid_amount=amount,
        note=note or DEFAULT_PAYMENT_NOTE,
        timestamp=timestamp,
    )
    return post_document(context, draft)


def available_transfers(document_type: Union[DocumentType, str]) -> Tuple[DocumentType, ...]:
    """Return the draft types a document of ``document_type`` may seed."""
    return ALLOWED_TRANSFERS.get(DocumentType(document_type), ())


def transfer_document(document: Document, target_type: Union[DocumentType, str]) -> DraftDocument:
    """Build a new draft of ``target_type`` pre-filled from ``document``.

    The draft copies the customer and the line items; the paid amount starts
    at zero and the note is left empty. ``document`` itself is neither
    modified nor linked to the draft.

    Raises:
        ValidationError: If the type pair is not an allowed transfer.
    """
    target = DocumentType(target_type)
    if target not in available_transfers(document.document_type):
        log.error(
            "Transfer rejected: %s cannot seed a %s draft",
            document.document_type.value,
            target.value,
        )
        raise ValidationError(
            f"Cannot transfer a {document.document_type.value} into a {target.value}"
        )
    return DraftDocument(
        document_type=target,
        customer_id=document.customer_id,
        items=tuple(replace(item) for item in document.items),
        paid_amount=Decimal("0"),
    )


def update_document_status(
    context: RuntimeContext,
    document_id: str,
    status: Union[DocumentStatus, str],
) -> Document:
    """Change the status marker of a QUOTE or ORDER document.

    Monetary fields are never touched. Balance-moving documents (SALE,
    RETURN, PAYMENT) keep their status so customer debt and stock always agree
    with the log.

    Raises:
        UnknownReferenceError: If the document is unknown.
        ValidationError: If the document type does not allow status changes or
            ``status`` is not a known status.
    """
    try:
        new_status = DocumentStatus(status)
    except ValueError as exc:
        raise ValidationError(f"Unsupported document status: {status}") from exc

    invoices = context.snapshot.invoices
    for index, document in enumerate(invoices):
        if document.document_id != document_id:
            continue
        if document.document_type not in STATUS_EDITABLE_TYPES:
            log.error(
                "Status change rejected for '%s': %s documents are immutable",
                document_id,
                document.document_type.value,
            )
            raise ValidationError(
                f"Status of a {document.document_type.value} document cannot change"
            )
        updated = replace(document, status=new_status)
        invoices[index] = updated
        log.info("Document '%s' status %s -> %s", document_id, document.status.value, new_status.value)
        return updated

    log.warning("Document lookup failed for id '%s'", document_id)
    raise UnknownReferenceError(f"Unknown document id: {document_id}")


def import_customers(context: RuntimeContext, source: Path) -> List[Customer]:
    """Create one customer per row of a customer spreadsheet."""
    records = spreadsheet.read_customer_rows(source)
    created = [
        add_customer(context, name=record.name, phone=record.phone, address=record.address)
        for record in records
    ]
    log.info("Imported %d customers from '%s'", len(created), source)
    return created


def import_products(context: RuntimeContext, source: Path) -> List[Product]:
    """Create one product per row of a product spreadsheet."""
    records = spreadsheet.read_product_rows(source)
    created = [
        add_product(
            context,
            name=record.name,
            unit=record.unit,
            default_price=record.default_price,
            stock=record.stock,
        )
        for record in records
    ]
    log.info("Imported %d products from '%s'", len(created), source)
    return created


def import_invoices(context: RuntimeContext, source: Path) -> List[Document]:
    """Post one SALE per document code found in an invoice spreadsheet.

    Customers are matched by name and fall back to the walk-in placeholder;
    the sheet's customer name is still kept on the document. Products are
    matched by name; unmatched lines carry ``IMPORTED_PRODUCT_ID`` and are
    handled by the configured unknown-product policy. Each invoice posts
    atomically; the first rejected invoice stops the import.
    """
    records = spreadsheet.read_invoice_rows(
        source, default_customer=context.settings.walk_in_customer_name
    )
    posted: List[Document] = []
    for record in records:
        customer = find_customer_by_name(context, record.customer_name) or ensure_walk_in_customer(context)
        items = []
        for line in record.lines:
            product = find_product_by_name(context, line.name)
            items.append(
                LineItem(
                    product_id=product.product_id if product is not None else IMPORTED_PRODUCT_ID,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
            )
        draft = DraftDocument(
            document_type=DocumentType.SALE,
            customer_id=customer.customer_id,
            items=tuple(items),
            paid_amount=record.paid_amount,
            note=f"Imported invoice {record.code}",
            customer_name=record.customer_name or customer.name,
            timestamp=record.timestamp,
        )
        posted.append(post_document(context, draft))
    log.info("Imported %d invoices from '%s'", len(posted), source)
    return posted


def generate_record_id(*, prefix: str = "INV-", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier using UTC timestamps.

    Args:
        prefix (str): Designator prepended to the identifier. ``INV-`` for
            documents, ``CUST-`` and ``PROD-`` for master data.
        when (datetime | None): Timestamp used for producing the identifier.
            When ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _unique_id(candidate: str, taken: Collection[str]) -> str:
    if candidate not in taken:
        return candidate
    suffix = 2
    while f"{candidate}-{suffix}" in taken:
        suffix += 1
    return f"{candidate}-{suffix}"


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValidationError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValidationError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")
