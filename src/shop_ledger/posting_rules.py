"""Ledger mutation rules keyed by document type.

Each rule is a pure function that looks at the current customer and product
records and returns the :class:`PostingEffect` a document would have. Rules
never mutate their inputs; the posting engine in :mod:`core_logic` decides
whether to commit the effect.

    type     | customer debt                   | stock per line | pricing memory
    ---------+---------------------------------+----------------+---------------
    QUOTE    | unchanged                       | unchanged      | unchanged
    ORDER    | unchanged                       | unchanged      | unchanged
    SALE     | debt + (total - paid)           | - quantity     | last price
    RETURN   | max(0, debt - (total - paid))   | + quantity     | unchanged
    PAYMENT  | max(0, debt - paid)             | unchanged      | unchanged
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Sequence, Tuple, Union

from .constants import DocumentType
from .data_manager import Customer, LineItem, Product


ZERO = Decimal("0")


@dataclass(frozen=True)
class PostingEffect:
    """Everything one document changes when it posts."""

    debt_before: Decimal
    debt_after: Decimal
    stock_deltas: Mapping[str, int] = field(default_factory=dict)
    pricing_updates: Mapping[Tuple[str, str], Decimal] = field(default_factory=dict)
    unknown_product_ids: Tuple[str, ...] = ()

    @property
    def debt_delta(self) -> Decimal:
        return self.debt_after - self.debt_before


PostingRule = Callable[
    [Customer, Mapping[str, Product], Sequence[LineItem], Decimal, Decimal],
    PostingEffect,
]


def document_total(items: Sequence[LineItem]) -> Decimal:
    """Sum ``quantity * unit_price`` over the line items."""

    return sum((item.line_total for item in items), ZERO)


def _stock_movement(
    products: Mapping[str, Product],
    items: Sequence[LineItem],
    direction: int,
) -> Tuple[Dict[str, int], Tuple[str, ...]]:
    # Lines for the same product accumulate; unknown ids are reported, not moved.
    deltas: Dict[str, int] = {}
    unknown: List[str] = []
    for item in items:
        if item.product_id not in products:
            if item.product_id not in unknown:
                unknown.append(item.product_id)
            continue
        deltas[item.product_id] = deltas.get(item.product_id, 0) + direction * item.quantity
    return deltas, tuple(unknown)


def no_effect_rule(
    customer: Customer,
    products: Mapping[str, Product],
    items: Sequence[LineItem],
    total_amount: Decimal,
    paid_amount: Decimal,
) -> PostingEffect:
    """QUOTE and ORDER documents are recorded without moving any balance."""

    return PostingEffect(debt_before=customer.total_debt, debt_after=customer.total_debt)


def sale_rule(
    customer: Customer,
    products: Mapping[str, Product],
    items: Sequence[LineItem],
    total_amount: Decimal,
    paid_amount: Decimal,
) -> PostingEffect:
    """A sale adds the unpaid remainder to debt and takes goods out of stock.

    The debt increase is not clamped, so an overpaid sale lowers the balance
    and may take it below zero. Every line with a known product updates the
    pricing memory for this customer; the last line wins when a product
    repeats.
    """

    deltas, unknown = _stock_movement(products, items, direction=-1)
    pricing = {
        (customer.customer_id, item.product_id): item.unit_price
        for item in items
        if item.product_id in products
    }
    return PostingEffect(
        debt_before=customer.total_debt,
        debt_after=customer.total_debt + (total_amount - paid_amount),
        stock_deltas=deltas,
        pricing_updates=pricing,
        unknown_product_ids=unknown,
    )


def return_rule(
    customer: Customer,
    products: Mapping[str, Product],
    items: Sequence[LineItem],
    total_amount: Decimal,
    paid_amount: Decimal,
) -> PostingEffect:
    """A return credits the refund against debt (floored at zero) and restocks."""

    deltas, unknown = _stock_movement(products, items, direction=1)
    refund = total_amount - paid_amount
    return PostingEffect(
        debt_before=customer.total_debt,
        debt_after=max(ZERO, customer.total_debt - refund),
        stock_deltas=deltas,
        unknown_product_ids=unknown,
    )


def payment_rule(
    customer: Customer,
    products: Mapping[str, Product],
    items: Sequence[LineItem],
    total_amount: Decimal,
    paid_amount: Decimal,
) -> PostingEffect:
    """A payment reduces debt by the amount paid, floored at zero."""

    return PostingEffect(
        debt_before=customer.total_debt,
        debt_after=max(ZERO, customer.total_debt - paid_amount),
    )


POSTING_RULES: Mapping[DocumentType, PostingRule] = {
    DocumentType.QUOTE: no_effect_rule,
    DocumentType.ORDER: no_effect_rule,
    DocumentType.SALE: sale_rule,
    DocumentType.RETURN: return_rule,
    DocumentType.PAYMENT: payment_rule,
}


def apply_posting(
    customer: Customer,
    products: Mapping[str, Product],
    document_type: Union[DocumentType, str],
    items: Sequence[LineItem],
    total_amount: Decimal,
    paid_amount: Decimal,
) -> PostingEffect:
    """Compute the effect of posting one document of ``document_type``.

    Args:
        customer (Customer): Current record of the document's customer.
        products (Mapping[str, Product]): Current product records by id.
        document_type (DocumentType | str): Type tag selecting the rule.
        items (Sequence[LineItem]): Line items of the document.
        total_amount (Decimal): Document total.
        paid_amount (Decimal): Amount paid on the document.

    Returns:
        PostingEffect: Debt before/after, per-product stock deltas, pricing
            memory updates, and product ids that matched no product.

    Raises:
        ValueError: If ``document_type`` is not a known document type.
    """

    rule = POSTING_RULES[DocumentType(document_type)]
    return rule(customer, products, items, total_amount, paid_amount)
