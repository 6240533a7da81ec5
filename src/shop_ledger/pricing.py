"""Last-negotiated-price memory per customer and product.

The memory is a thin view over ``Snapshot.custom_prices``: it owns no storage
of its own, so whatever it remembers is persisted with the snapshot.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator, Mapping, MutableMapping, Optional, Tuple

from . import log


def pricing_key(customer_id: str, product_id: str) -> str:
    """Build the persisted ``"{customer_id}_{product_id}"`` key."""

    return f"{customer_id}_{product_id}"


class PricingMemory:
    """Last-write-wins price cache keyed by (customer, product)."""

    def __init__(self, prices: MutableMapping[str, Decimal]) -> None:
        self._prices = prices

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self) -> Iterator[str]:
        return iter(self._prices)

    def lookup(self, customer_id: str, product_id: str) -> Optional[Decimal]:
        return self._prices.get(pricing_key(customer_id, product_id))

    def resolve_price(self, customer_id: str, product_id: str, catalog_default: Decimal) -> Decimal:
        """Return the remembered price for the pair, else ``catalog_default``.

        Lookups never fail; an absent pair simply falls back to the catalog.
        """

        remembered = self.lookup(customer_id, product_id)
        return remembered if remembered is not None else catalog_default

    def remember(self, customer_id: str, product_id: str, unit_price: Decimal) -> None:
        """Overwrite the remembered price for the pair unconditionally."""

        key = pricing_key(customer_id, product_id)
        previous = self._prices.get(key)
        self._prices[key] = unit_price
        if previous is not None and previous != unit_price:
            log.debug("Pricing memory '%s' changed from %s to %s", key, previous, unit_price)

    def apply(self, updates: Mapping[Tuple[str, str], Decimal]) -> None:
        for (customer_id, product_id), unit_price in updates.items():
            self.remember(customer_id, product_id, unit_price)
