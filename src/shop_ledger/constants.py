"""Enumerations shared across the shop ledger modules.

Centralises domain constants so that the storage layer, the posting engine,
the statement queries, and the CLI rely on a single source of truth for
document types, statuses, import kinds, and the reserved record ids.
"""

from __future__ import annotations

from enum import Enum


# Snapshot schema version expected by all layers when validating config.ini.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Placeholder identity used for customers that cannot be matched on import.
WALK_IN_CUSTOMER_ID = "WALK-IN"

# Product id carried by imported lines whose product name has no match.
IMPORTED_PRODUCT_ID = "IMPORTED"

# Maximum number of hits returned by a free-text document search.
SEARCH_RESULT_LIMIT = 50

# Length of the trailing revenue series shown on the dashboard.
REVENUE_SERIES_DAYS = 7


class DocumentType(str, Enum):
    """Enumerate the commercial document types recorded in the log."""

    QUOTE = "quote"
    ORDER = "order"
    SALE = "sale"
    RETURN = "return"
    PAYMENT = "payment"


class DocumentStatus(str, Enum):
    """Enumerate the lifecycle markers a posted document may carry."""

    ACTIVE = "active"
    OPEN = "open"
    PENDING = "pending"
    CANCELLED = "cancelled"


class DebtLabel(str, Enum):
    """Enumerate the row labels emitted by a customer debt statement."""

    PURCHASE = "purchase"
    PAYMENT = "payment"
    RETURN = "return"


class UnknownProductPolicy(str, Enum):
    """Enumerate how posting treats a line whose product id is unknown."""

    SKIP = "skip"
    REJECT = "reject"


class ImportKind(str, Enum):
    """Enumerate the spreadsheet layouts accepted by the import collaborator."""

    CUSTOMERS = "customers"
    PRODUCTS = "products"
    INVOICES = "invoices"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "WALK_IN_CUSTOMER_ID",
    "IMPORTED_PRODUCT_ID",
    "SEARCH_RESULT_LIMIT",
    "REVENUE_SERIES_DAYS",
    "DocumentType",
    "DocumentStatus",
    "DebtLabel",
    "UnknownProductPolicy",
    "ImportKind",
]
