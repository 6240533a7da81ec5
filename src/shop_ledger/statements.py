"""Read-only statements rebuilt from the document log.

Every function here is a pure query: it takes the log (and, where needed,
the current customer records) and returns fresh row objects. Nothing is
cached between calls, so the same log always yields the same statement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log, posting_rules
from .constants import (
    REVENUE_SERIES_DAYS,
    SEARCH_RESULT_LIMIT,
    DebtLabel,
    DocumentStatus,
    DocumentType,
)
from .data_manager import Customer, Document, Product, Snapshot


BALANCE_TYPES = (DocumentType.SALE, DocumentType.RETURN, DocumentType.PAYMENT)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day window; ``None`` on either side is unbounded.

    ``tz`` picks the zone in which a timestamp's calendar day is taken. When
    omitted the timestamp's own zone is used, which is UTC for everything the
    ledger records.
    """

    start: Optional[date] = None
    end: Optional[date] = None
    tz: Optional[tzinfo] = None

    def day_of(self, moment: datetime) -> date:
        return local_day(moment, self.tz)

    def includes(self, moment: datetime) -> bool:
        day = self.day_of(moment)
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


@dataclass(frozen=True)
class DebtLedgerRow:
    document_id: str
    timestamp: datetime
    label: DebtLabel
    increase: Decimal
    decrease: Decimal
    note: Optional[str] = None


@dataclass(frozen=True)
class PriceHistoryRow:
    timestamp: datetime
    customer_name: str
    quantity: int
    unit_price: Decimal
    document_type: DocumentType
    document_id: str


@dataclass(frozen=True)
class DailyRevenue:
    day: date
    revenue: Decimal


@dataclass(frozen=True)
class DashboardSummary:
    """Headline figures for the shop overview."""

    total_debt: Decimal
    total_revenue: Decimal
    pending_count: int
    revenue_series: Tuple[DailyRevenue, ...]


def local_day(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Return the calendar day of ``moment``, taken in ``tz`` when given."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.date()


def _in_range(document: Document, date_range: Optional[DateRange]) -> bool:
    return date_range is None or date_range.includes(document.created_at)


def _is_cancelled(document: Document) -> bool:
    return document.status is DocumentStatus.CANCELLED


def debt_ledger(
    documents: Iterable[Document],
    customer_id: str,
    date_range: Optional[DateRange] = None,
) -> List[DebtLedgerRow]:
    """Build the debt statement of one customer, newest first.

    SALE documents add their unpaid remainder, PAYMENT documents subtract the
    amount paid, and RETURN documents subtract the refund. QUOTE and ORDER
    documents, cancelled documents, and documents outside ``date_range`` do
    not appear. Rows with equal timestamps come newest-posted first.

    Args:
        documents (Iterable[Document]): The document log in posting order.
        customer_id (str): Customer whose statement is built.
        date_range (DateRange | None): Optional inclusive day window.

    Returns:
        list[DebtLedgerRow]: Statement rows sorted by timestamp descending.
    """

    rows: List[DebtLedgerRow] = []
    for document in documents:
        if document.customer_id != customer_id or _is_cancelled(document):
            continue
        if document.document_type not in BALANCE_TYPES or not _in_range(document, date_range):
            continue
        remainder = document.total_amount - document.paid_amount
        if document.document_type is DocumentType.SALE:
            label, increase, decrease = DebtLabel.PURCHASE, remainder, Decimal("0")
        elif document.document_type is DocumentType.PAYMENT:
            label, increase, decrease = DebtLabel.PAYMENT, Decimal("0"), document.paid_amount
        else:
            label, increase, decrease = DebtLabel.RETURN, Decimal("0"), remainder
        rows.append(
            DebtLedgerRow(
                document_id=document.document_id,
                timestamp=document.created_at,
                label=label,
                increase=increase,
                decrease=decrease,
                note=document.note,
            )
        )
    rows.sort(key=lambda row: row.timestamp)
    rows.reverse()
    log.debug("Built debt ledger for '%s' with %d rows", customer_id, len(rows))
    return rows


def product_price_history(
    documents: Iterable[Document],
    product_id: str,
    date_range: Optional[DateRange] = None,
) -> List[PriceHistoryRow]:
    """List every non-cancelled line that carried ``product_id``, newest first."""

    rows = [
        PriceHistoryRow(
            timestamp=document.created_at,
            customer_name=document.customer_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            document_type=document.document_type,
            document_id=document.document_id,
        )
        for document in documents
        if not _is_cancelled(document) and _in_range(document, date_range)
        for item in document.items
        if item.product_id == product_id
    ]
    rows.sort(key=lambda row: row.timestamp)
    rows.reverse()
    log.debug("Built price history for '%s' with %d rows", product_id, len(rows))
    return rows


def search_documents(
    documents: Iterable[Document],
    query: str = "",
    date_range: Optional[DateRange] = None,
    limit: int = SEARCH_RESULT_LIMIT,
) -> List[Document]:
    """Find documents whose id or customer name contains ``query``.

    Matching is a case-insensitive substring test; an empty query matches
    everything. The log is walked newest-posted first and the walk stops after
    ``limit`` matches.
    Cancelled documents are searchable like any other.
    """

    needle = (query or "").strip().casefold()
    matches: List[Document] = []
    for document in reversed(list(documents)):
        if len(matches) >= limit:
            break
        if not _in_range(document, date_range):
            continue
        if needle and needle not in document.document_id.casefold() and needle not in document.customer_name.casefold():
            continue
        matches.append(document)
    log.debug("Search for %r matched %d documents", query, len(matches))
    return matches


def _counts_as_revenue(document: Document) -> bool:
    return document.document_type is DocumentType.SALE and not _is_cancelled(document)


def revenue_series(
    documents: Iterable[Document],
    today: date,
    days: int = REVENUE_SERIES_DAYS,
    tz: Optional[tzinfo] = None,
) -> Tuple[DailyRevenue, ...]:
    """Return SALE revenue for the ``days`` calendar days ending ``today``.

    The series is ordered oldest day first and always has ``days`` entries;
    days without sales carry zero.
    """

    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    totals: Dict[date, Decimal] = {day: Decimal("0") for day in window}
    for document in documents:
        if not _counts_as_revenue(document):
            continue
        day = local_day(document.created_at, tz)
        if day in totals:
            totals[day] += document.total_amount
    return tuple(DailyRevenue(day=day, revenue=totals[day]) for day in window)


def summarize(
    snapshot: Snapshot,
    today: Optional[date] = None,
    days: int = REVENUE_SERIES_DAYS,
    tz: Optional[tzinfo] = None,
) -> DashboardSummary:
    """Aggregate the shop overview from the snapshot.

    Args:
        snapshot (Snapshot): Live snapshot; customers supply the debt total and
            the log supplies everything else.
        today (date | None): Last day of the revenue series. Defaults to the
            current day in ``tz`` (UTC when ``tz`` is omitted).
        days (int): Length of the revenue series.
        tz (tzinfo | None): Zone used to bucket timestamps into days.

    Returns:
        DashboardSummary: Outstanding debt, lifetime SALE revenue, number of
            pending ORDER documents, and the trailing revenue series.
    """

    if today is None:
        today = local_day(datetime.now(UTC), tz)
    documents = snapshot.invoices
    total_debt = sum((customer.total_debt for customer in snapshot.customers.values()), Decimal("0"))
    total_revenue = sum(
        (document.total_amount for document in documents if _counts_as_revenue(document)),
        Decimal("0"),
    )
    pending_count = sum(
        1
        for document in documents
        if document.document_type is DocumentType.ORDER and document.status is DocumentStatus.PENDING
    )
    series = revenue_series(documents, today, days=days, tz=tz)
    log.debug(
        "Summarized dashboard: debt=%s revenue=%s pending=%d",
        total_debt,
        total_revenue,
        pending_count,
    )
    return DashboardSummary(
        total_debt=total_debt,
        total_revenue=total_revenue,
        pending_count=pending_count,
        revenue_series=series,
    )


def replay_customer_debts(
    documents: Sequence[Document],
    customer_ids: Optional[Iterable[str]] = None,
) -> Dict[str, Decimal]:
    """Recompute every customer's debt by replaying the log from zero.

    Only SALE, RETURN, and PAYMENT documents move debt; they are replayed
    through the same posting rules the engine commits with, so the result
    must equal ``Customer.total_debt`` for every customer.
    """

    balances: Dict[str, Decimal] = {cid: Decimal("0") for cid in customer_ids or ()}
    for document in documents:
        if document.document_type not in BALANCE_TYPES:
            continue
        current = balances.get(document.customer_id, Decimal("0"))
        effect = posting_rules.apply_posting(
            Customer(customer_id=document.customer_id, name=document.customer_name, total_debt=current),
            {},
            document.document_type,
            document.items,
            document.total_amount,
            document.paid_amount,
        )
        balances[document.customer_id] = effect.debt_after
    return balances


def replay_stock_movements(
    documents: Sequence[Document],
    opening_stock: Mapping[str, int],
) -> Dict[str, int]:
    """Recompute stock from opening counts plus every SALE and RETURN line.

    Products missing from ``opening_stock`` are treated as unknown and their
    lines are ignored, matching how the engine skips them.
    """

    products = {pid: Product(product_id=pid, name=pid, stock=qty) for pid, qty in opening_stock.items()}
    stock: Dict[str, int] = dict(opening_stock)
    for document in documents:
        if document.document_type not in (DocumentType.SALE, DocumentType.RETURN):
            continue
        effect = posting_rules.apply_posting(
            Customer(customer_id=document.customer_id, name=document.customer_name),
            products,
            document.document_type,
            document.items,
            document.total_amount,
            document.paid_amount,
        )
        for product_id, delta in effect.stock_deltas.items():
            stock[product_id] += delta
    return stock
