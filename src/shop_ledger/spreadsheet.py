"""Spreadsheet import collaborator.

Reads customer, product, and invoice sheets from ``.xlsx`` workbooks into
plain records. Only the first worksheet is read; the header row and any row
whose first cell is empty are skipped. Nothing here touches the snapshot:
:mod:`core_logic` turns the records into customers, products, and posted
documents.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from . import log
from .constants import ImportKind
from .data_manager import DataImportError


TEMPLATE_COLUMNS: Mapping[ImportKind, Sequence[str]] = {
    ImportKind.CUSTOMERS: ["Name", "Phone", "Address"],
    ImportKind.PRODUCTS: ["Name", "Unit", "DefaultPrice", "Stock"],
    ImportKind.INVOICES: ["Code", "Date", "Customer", "Product", "Quantity", "UnitPrice", "Paid"],
}

DEFAULT_INVOICE_CUSTOMER = "Walk-in customer"
DEFAULT_INVOICE_PRODUCT = "Item"


@dataclass(frozen=True)
class CustomerRecord:
    name: str
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class ProductRecord:
    name: str
    unit: Optional[str] = None
    default_price: Decimal = Decimal("0")
    stock: int = 0


@dataclass(frozen=True)
class InvoiceLine:
    name: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class InvoiceRecord:
    """One invoice assembled from every sheet row sharing a document code."""

    code: str
    timestamp: Optional[datetime]
    customer_name: str
    paid_amount: Decimal
    lines: Tuple[InvoiceLine, ...]


def _text(value: object, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _decimal(value: object, *, row: int, column: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise DataImportError(f"Row {row}: {column} is not a number: {value!r}") from exc


def _integer(value: object, *, row: int, column: str, default: int = 0) -> int:
    if value is None or value == "":
        return default
    amount = _decimal(value, row=row, column=column)
    if amount != amount.to_integral_value():
        raise DataImportError(f"Row {row}: {column} must be a whole number: {value!r}")
    return int(amount)


def parse_sheet_date(value: object) -> Optional[datetime]:
    """Interpret a date cell as a UTC datetime.

    Accepts real datetimes, Excel serial numbers, and ISO-8601 strings. A
    blank or unreadable value yields ``None`` so the document is stamped at
    posting time.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = from_excel(value)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            log.warning("Unreadable invoice date %r; using posting time", value)
            return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def read_sheet_rows(source: Path) -> List[Tuple[int, Tuple[object, ...]]]:
    """Return ``(row_number, values)`` for every data row of the first sheet.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        DataImportError: If the file is not a readable ``.xlsx`` workbook.
    """

    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Spreadsheet not found: {source}")
    try:
        workbook = openpyxl.load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise DataImportError(f"Unable to read spreadsheet '{source}': {exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        rows = [
            (index, tuple(raw))
            for index, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
            if raw and _text(raw[0])
        ]
    finally:
        workbook.close()
    log.debug("Read %d data rows from '%s'", len(rows), source)
    return rows


def _cell(raw: Sequence[object], index: int) -> object:
    return raw[index] if index < len(raw) else None


def read_customer_rows(source: Path) -> List[CustomerRecord]:
    """Read a customer sheet: A name, B phone, C address."""

    return [
        CustomerRecord(
            name=_text(_cell(raw, 0)),
            phone=_text(_cell(raw, 1)),
            address=_text(_cell(raw, 2)),
        )
        for _, raw in read_sheet_rows(source)
    ]


def read_product_rows(source: Path) -> List[ProductRecord]:
    """Read a product sheet: A name, B unit, C default price, D opening stock.

    A blank unit is left as ``None`` so the configured default applies.
    """

    records = []
    for row, raw in read_sheet_rows(source):
        records.append(
            ProductRecord(
                name=_text(_cell(raw, 0)),
                unit=_text(_cell(raw, 1)) or None,
                default_price=_decimal(_cell(raw, 2), row=row, column="DefaultPrice"),
                stock=_integer(_cell(raw, 3), row=row, column="Stock"),
            )
        )
    return records


def read_invoice_rows(
    source: Path,
    *,
    default_customer: str = DEFAULT_INVOICE_CUSTOMER,
) -> List[InvoiceRecord]:
    """Read an invoice sheet and group its rows by document code.

    Columns are A code, B date, C customer name, D product name, E quantity
    (default 1), F unit price, G paid amount. Date, customer, and paid amount
    come from the first row of each code; every row contributes one line.
    Invoices are returned in the order their code first appears. Rows without
    a customer name are credited to ``default_customer``.

    Raises:
        DataImportError: If a quantity or amount cell is not numeric, or a
            quantity is not a whole number.
    """

    headers: Dict[str, Tuple[Optional[datetime], str, Decimal]] = {}
    lines: Dict[str, List[InvoiceLine]] = {}
    for row, raw in read_sheet_rows(source):
        code = _text(_cell(raw, 0))
        if code not in headers:
            headers[code] = (
                parse_sheet_date(_cell(raw, 1)),
                _text(_cell(raw, 2), default_customer),
                _decimal(_cell(raw, 6), row=row, column="Paid"),
            )
            lines[code] = []
        lines[code].append(
            InvoiceLine(
                name=_text(_cell(raw, 3), DEFAULT_INVOICE_PRODUCT),
                quantity=_integer(_cell(raw, 4), row=row, column="Quantity", default=1),
                unit_price=_decimal(_cell(raw, 5), row=row, column="UnitPrice"),
            )
        )

    return [
        InvoiceRecord(
            code=code,
            timestamp=timestamp,
            customer_name=customer_name,
            paid_amount=paid_amount,
            lines=tuple(lines[code]),
        )
        for code, (timestamp, customer_name, paid_amount) in headers.items()
    ]


def create_import_template(
    destination: Path,
    kind: Union[ImportKind, str],
    *,
    overwrite: bool = False,
) -> Path:
    """Write a blank import workbook with bold column headers.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing template: {destination}")
    destination.parent.mkdir(parents=True, exist_ok=True)

    kind = ImportKind(kind)
    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = kind.value.capitalize()
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(TEMPLATE_COLUMNS[kind], start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font

    workbook.save(destination)
    log.info("Created %s import template at '%s'", kind.value, destination)
    return destination
