"""Data access layer for the shop ledger.

This module provides low-level helpers that read from and write to the JSON
snapshot file holding every customer, product, posted document, and
negotiated price. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Snapshot lifecycle: loading, validating, exporting, and persisting the
   snapshot file.
3. Record conversion: turning persisted camelCase dictionaries into typed
   records and back, including the ``{seconds, nanoseconds}`` timestamp pair
   used at the storage boundary.
"""


from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from . import log
from .constants import DocumentStatus, DocumentType, UnknownProductPolicy


CONFIG_FILE_NAME = "config.ini"
BACKUP_FILE_PREFIX = "shop_ledger_backup"
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class DataImportError(Exception):
    """Raised when a snapshot or spreadsheet cannot be read into records."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    walk_in_customer_name: str = "Walk-in customer"
    default_unit: str = "unit"
    unknown_product_policy: UnknownProductPolicy = UnknownProductPolicy.SKIP
    allow_negative_stock: bool = True


@dataclass(frozen=True)
class Customer:
    """In-memory view of one customer and its running debt balance."""

    customer_id: str
    name: str
    phone: str = ""
    address: str = ""
    total_debt: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    last_transaction: Optional[datetime] = None


@dataclass(frozen=True)
class Product:
    """In-memory view of one catalog product and its stock count."""

    product_id: str
    name: str
    unit: str = "unit"
    default_price: Decimal = Decimal("0")
    stock: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LineItem:
    """One product line on a commercial document."""

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Document:
    """A posted commercial document as stored in the append-only log."""

    document_id: str
    document_type: DocumentType
    customer_id: str
    customer_name: str
    items: Tuple[LineItem, ...]
    total_amount: Decimal
    paid_amount: Decimal
    status: DocumentStatus
    created_at: datetime
    note: Optional[str] = None


@dataclass
class Snapshot:
    """The whole persisted data set, shared by reference between layers.

    ``customers`` and ``products`` keep insertion order so listings follow
    the order records were created in. ``invoices`` is the append-only
    document log; ``custom_prices`` backs the pricing memory and is keyed as
    ``"{customer_id}_{product_id}"``.
    """

    customers: Dict[str, Customer] = field(default_factory=dict)
    products: Dict[str, Product] = field(default_factory=dict)
    invoices: List[Document] = field(default_factory=list)
    custom_prices: Dict[str, Decimal] = field(default_factory=dict)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function
    walks up from the current working directory toward the filesystem root
    looking for a file named ``CONFIG_FILE_NAME``. The first match that exists
    on disk is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Defaults]`` and ``[Policy]`` are
    optional and fall back to the observed behavior of the ledger: a generic
    walk-in customer, ``unit`` as the product unit, unknown product lines
    skipped, and stock allowed to go negative. Relative ``DataFile`` entries
    are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required ``[System]`` options is missing.
        ValueError: If ``UnknownProducts`` or ``AllowNegativeStock`` hold an
            unsupported value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    walk_in_name = parser.get("Defaults", "WalkInCustomer", fallback="Walk-in customer")
    default_unit = parser.get("Defaults", "DefaultUnit", fallback="unit")
    policy_raw = parser.get("Policy", "UnknownProducts", fallback=UnknownProductPolicy.SKIP.value)
    try:
        unknown_policy = UnknownProductPolicy(policy_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported UnknownProducts policy: {policy_raw}") from exc
    allow_negative_stock = parser.getboolean("Policy", "AllowNegativeStock", fallback=True)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        walk_in_customer_name=walk_in_name,
        default_unit=default_unit,
        unknown_product_policy=unknown_policy,
        allow_negative_stock=allow_negative_stock,
    )


def load_snapshot(data_file: Path) -> Snapshot:
    """Open the snapshot file and return its typed contents.

    A missing file is not an error: a brand new shop starts from an empty
    snapshot, which is written on the first persist. A file that exists but
    cannot be parsed raises :class:`DataImportError` so the caller never
    overwrites unreadable data with an empty snapshot.

    Args:
        data_file (Path): Filesystem path to the snapshot JSON file.

    Returns:
        Snapshot: Typed snapshot, empty when the file does not exist yet.

    Raises:
        DataImportError: If the file exists but is not a valid snapshot.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        log.info("No snapshot at '%s'; starting from an empty ledger", data_file)
        return Snapshot()
    return read_snapshot_file(data_file)


def read_snapshot_file(source: Path) -> Snapshot:
    """Read and validate a snapshot file without touching any live state.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        DataImportError: If the content is not valid JSON or does not describe
            a snapshot.
    """

    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Snapshot file not found: {source}")
    try:
        text = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DataImportError(f"Unable to read snapshot '{source}': {exc}") from exc
    return parse_snapshot(text)


def parse_snapshot(text: str) -> Snapshot:
    """Parse snapshot JSON text into a :class:`Snapshot`.

    Floats are decoded straight into :class:`~decimal.Decimal` so monetary
    values keep the digits written in the file.

    Raises:
        DataImportError: If the text is not JSON, is not an object, or holds a
            record that cannot be converted.
    """

    try:
        payload = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise DataImportError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise DataImportError("Snapshot must be a JSON object")
    return deserialize_snapshot(payload)


def save_snapshot(snapshot: Snapshot, destination: Path) -> None:
    """Persist the snapshot to disk at an explicitly provided destination.

    The file is written next to its destination first and then moved into
    place, so an interrupted write never leaves a truncated snapshot behind.
    Parent directories are created on demand.

    Args:
        snapshot (Snapshot): Snapshot to persist.
        destination (Path): Filesystem path that should receive the JSON.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(serialize_snapshot(snapshot), handle, ensure_ascii=False, indent=2)
    os.replace(tmp, dest)


def export_snapshot(snapshot: Snapshot, directory: Path, *, when: Optional[date] = None) -> Path:
    """Write a dated backup copy of ``snapshot`` into ``directory``.

    Args:
        snapshot (Snapshot): Snapshot to export verbatim.
        directory (Path): Folder receiving the backup file.
        when (date | None): Date stamped into the file name; today (UTC) when
            omitted.

    Returns:
        Path: Location of the written backup file.
    """

    stamp = (when or datetime.now(UTC).date()).isoformat()
    target = Path(directory).expanduser().resolve() / f"{BACKUP_FILE_PREFIX}_{stamp}.json"
    save_snapshot(snapshot, target)
    return target


def to_timestamp_pair(moment: datetime) -> Dict[str, int]:
    """Convert a datetime into the persisted ``{seconds, nanoseconds}`` pair.

    Naive datetimes are taken to be UTC.
    """

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    delta = moment - EPOCH
    seconds = delta.days * 86400 + delta.seconds
    return {"seconds": seconds, "nanoseconds": delta.microseconds * 1000}


def from_timestamp_pair(raw: Any) -> datetime:
    """Convert a persisted timestamp into a timezone-aware UTC datetime.

    Besides the canonical ``{seconds, nanoseconds}`` pair, legacy snapshots
    may carry an ISO-8601 string or a number of epoch milliseconds; both are
    accepted.

    Raises:
        ValueError: If ``raw`` matches none of the accepted shapes.
    """

    if isinstance(raw, Mapping) and "seconds" in raw:
        seconds = int(raw["seconds"])
        nanoseconds = int(raw.get("nanoseconds") or 0)
        return EPOCH + timedelta(seconds=seconds, microseconds=nanoseconds // 1000)
    if isinstance(raw, str):
        parsed = datetime.fromisoformat(raw)
        return parsed.astimezone(UTC) if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool):
        return EPOCH + timedelta(milliseconds=float(raw))
    raise ValueError(f"Unrecognised timestamp value: {raw!r}")


def _money_to_json(amount: Decimal) -> Any:
    # JSON numbers on disk; integral amounts stay integers. Amounts a float
    # cannot hold exactly are written as decimal strings.
    if amount == amount.to_integral_value():
        return int(amount)
    as_float = float(amount)
    if Decimal(repr(as_float)) == amount:
        return as_float
    return str(amount)


def _to_decimal(raw: Any, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(str(raw))


def _optional_timestamp(raw: Any) -> Optional[datetime]:
    return from_timestamp_pair(raw) if raw else None


def serialize_customer(record: Customer) -> Dict[str, Any]:
    """Convert a customer record into its persisted camelCase mapping."""

    payload: Dict[str, Any] = {
        "id": record.customer_id,
        "name": record.name,
        "phone": record.phone,
        "address": record.address,
        "totalDebt": _money_to_json(record.total_debt),
    }
    if record.created_at is not None:
        payload["createdAt"] = to_timestamp_pair(record.created_at)
    if record.last_transaction is not None:
        payload["lastTransaction"] = to_timestamp_pair(record.last_transaction)
    return payload


def serialize_product(record: Product) -> Dict[str, Any]:
    """Convert a product record into its persisted camelCase mapping."""

    payload: Dict[str, Any] = {
        "id": record.product_id,
        "name": record.name,
        "unit": record.unit,
        "defaultPrice": _money_to_json(record.default_price),
        "stock": record.stock,
    }
    if record.created_at is not None:
        payload["createdAt"] = to_timestamp_pair(record.created_at)
    return payload


def serialize_line_item(record: LineItem) -> Dict[str, Any]:
    return {
        "productId": record.product_id,
        "name": record.name,
        "qty": record.quantity,
        "price": _money_to_json(record.unit_price),
    }


def serialize_document(record: Document) -> Dict[str, Any]:
    """Convert a posted document into its persisted camelCase mapping.

    Enum fields are written as their string values and ``created_at`` as the
    ``{seconds, nanoseconds}`` pair. ``note`` is omitted when absent.
    """

    payload: Dict[str, Any] = {
        "id": record.document_id,
        "type": record.document_type.value,
        "customerId": record.customer_id,
        "customerName": record.customer_name,
        "items": [serialize_line_item(item) for item in record.items],
        "totalAmount": _money_to_json(record.total_amount),
        "paidAmount": _money_to_json(record.paid_amount),
        "status": record.status.value,
        "createdAt": to_timestamp_pair(record.created_at),
    }
    if record.note is not None:
        payload["note"] = record.note
    return payload


def serialize_snapshot(snapshot: Snapshot) -> Dict[str, Any]:
    """Convert the whole snapshot into the persisted four-field structure."""

    return {
        "customers": [serialize_customer(c) for c in snapshot.customers.values()],
        "products": [serialize_product(p) for p in snapshot.products.values()],
        "invoices": [serialize_document(d) for d in snapshot.invoices],
        "customPrices": {key: _money_to_json(value) for key, value in snapshot.custom_prices.items()},
    }


def deserialize_customer(raw: Mapping[str, Any]) -> Customer:
    """Convert a persisted customer mapping into a :class:`Customer`."""

    return Customer(
        customer_id=str(raw["id"]),
        name=str(raw["name"]),
        phone=str(raw.get("phone") or ""),
        address=str(raw.get("address") or ""),
        total_debt=_to_decimal(raw.get("totalDebt")),
        created_at=_optional_timestamp(raw.get("createdAt")),
        last_transaction=_optional_timestamp(raw.get("lastTransaction")),
    )


def deserialize_product(raw: Mapping[str, Any]) -> Product:
    """Convert a persisted product mapping into a :class:`Product`.

    Stock is coerced to ``int`` because the ledger counts whole units.
    """

    return Product(
        product_id=str(raw["id"]),
        name=str(raw["name"]),
        unit=str(raw.get("unit") or "unit"),
        default_price=_to_decimal(raw.get("defaultPrice")),
        stock=int(raw.get("stock") or 0),
        created_at=_optional_timestamp(raw.get("createdAt")),
    )


def deserialize_line_item(raw: Mapping[str, Any]) -> LineItem:
    return LineItem(
        product_id=str(raw["productId"]),
        name=str(raw.get("name") or ""),
        quantity=int(raw["qty"]),
        unit_price=_to_decimal(raw.get("price")),
    )


def deserialize_document(raw: Mapping[str, Any]) -> Document:
    """Convert a persisted invoice mapping into a :class:`Document`.

    ``status`` defaults to ``active`` for legacy records that predate the
    field; ``customerName`` defaults to an empty string.
    """

    note = raw.get("note")
    return Document(
        document_id=str(raw["id"]),
        document_type=DocumentType(raw["type"]),
        customer_id=str(raw["customerId"]),
        customer_name=str(raw.get("customerName") or ""),
        items=tuple(deserialize_line_item(item) for item in raw.get("items") or []),
        total_amount=_to_decimal(raw.get("totalAmount")),
        paid_amount=_to_decimal(raw.get("paidAmount")),
        status=DocumentStatus(raw.get("status") or DocumentStatus.ACTIVE.value),
        created_at=from_timestamp_pair(raw["createdAt"]),
        note=str(note) if note is not None else None,
    )


def deserialize_snapshot(payload: Mapping[str, Any]) -> Snapshot:
    """Convert the persisted four-field structure into a :class:`Snapshot`.

    Missing top-level collections are treated as empty. Any record that fails
    conversion aborts the whole load so a half-read snapshot never reaches
    the business layer.

    Raises:
        DataImportError: If a collection has the wrong shape or a record is
            malformed.
    """

    try:
        raw_customers = payload.get("customers") or []
        raw_products = payload.get("products") or []
        raw_invoices = payload.get("invoices") or []
        raw_prices = payload.get("customPrices") or {}
        if not all(isinstance(group, list) for group in (raw_customers, raw_products, raw_invoices)):
            raise TypeError("customers, products and invoices must be lists")
        if not isinstance(raw_prices, dict):
            raise TypeError("customPrices must be an object")

        customers = [deserialize_customer(raw) for raw in raw_customers]
        products = [deserialize_product(raw) for raw in raw_products]
        invoices = [deserialize_document(raw) for raw in raw_invoices]
        custom_prices = {str(key): _to_decimal(value) for key, value in raw_prices.items()}
    except (KeyError, TypeError, ValueError, InvalidOperation, AttributeError) as exc:
        raise DataImportError(f"Malformed snapshot: {exc}") from exc

    return Snapshot(
        customers={customer.customer_id: customer for customer in customers},
        products={product.product_id: product for product in products},
        invoices=invoices,
        custom_prices=custom_prices,
    )
