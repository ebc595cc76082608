# Overview: Closed status vocabularies for every entity, plus transition tables.

"""
Status vocabularies (authoritative)

Every status column in the schema is written through one of the validate_*
helpers below. Codes are upper-case and compared exactly; display labels are
a UI concern.

ORDER STATE MACHINE:
    PENDING -> PROCESSING -> CHECKING -> LOADING -> IN_TRANSIT
    IN_TRANSIT -> DELIVERED | PARTIAL | RETURNED      (reconciliation)
    IN_TRANSIT -> LOADING                             (reconciliation reschedule)
    PENDING | PROCESSING | CHECKING | LOADING -> CANCELLED

    DELIVERED, PARTIAL and RETURNED may be re-asserted against each other by a
    later reconciliation run of the same load. CANCELLED is terminal.

CHEQUE STATE MACHINE:
    PENDING -> DEPOSITED -> PASSED | RETURNED

    PASSED and RETURNED are terminal.
"""

from __future__ import annotations

from typing import Literal

from .errors import ValidationError


# =============================================================================
# ORDERS
# =============================================================================

ORDER_PENDING = "PENDING"
ORDER_PROCESSING = "PROCESSING"
ORDER_CHECKING = "CHECKING"
ORDER_LOADING = "LOADING"
ORDER_IN_TRANSIT = "IN_TRANSIT"
ORDER_DELIVERED = "DELIVERED"
ORDER_PARTIAL = "PARTIAL"
ORDER_RETURNED = "RETURNED"
ORDER_CANCELLED = "CANCELLED"

OrderStatus = Literal[
    "PENDING", "PROCESSING", "CHECKING", "LOADING", "IN_TRANSIT",
    "DELIVERED", "PARTIAL", "RETURNED", "CANCELLED",
]

ORDER_STATUSES = frozenset({
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_CHECKING,
    ORDER_LOADING,
    ORDER_IN_TRANSIT,
    ORDER_DELIVERED,
    ORDER_PARTIAL,
    ORDER_RETURNED,
    ORDER_CANCELLED,
})

# Outcomes the reconciliation engine may assert for an in-transit order
ORDER_DELIVERY_OUTCOMES = frozenset({ORDER_DELIVERED, ORDER_PARTIAL, ORDER_RETURNED})
RECONCILE_TARGETS = ORDER_DELIVERY_OUTCOMES | {ORDER_LOADING}

# Orders that can still be cancelled
ORDER_CANCELLABLE = frozenset({ORDER_PENDING, ORDER_PROCESSING, ORDER_CHECKING, ORDER_LOADING})

# Orders whose invoice amount can no longer be edited outside reconciliation
ORDER_FINAL = ORDER_DELIVERY_OUTCOMES | {ORDER_CANCELLED}

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_PENDING: frozenset({ORDER_PROCESSING, ORDER_CANCELLED}),
    ORDER_PROCESSING: frozenset({ORDER_CHECKING, ORDER_CANCELLED}),
    ORDER_CHECKING: frozenset({ORDER_LOADING, ORDER_IN_TRANSIT, ORDER_CANCELLED}),
    ORDER_LOADING: frozenset({ORDER_IN_TRANSIT, ORDER_CANCELLED}),
    ORDER_IN_TRANSIT: frozenset({ORDER_DELIVERED, ORDER_PARTIAL, ORDER_RETURNED, ORDER_LOADING}),
    ORDER_DELIVERED: frozenset({ORDER_PARTIAL, ORDER_RETURNED}),
    ORDER_PARTIAL: frozenset({ORDER_DELIVERED, ORDER_RETURNED}),
    ORDER_RETURNED: frozenset({ORDER_DELIVERED, ORDER_PARTIAL}),
    ORDER_CANCELLED: frozenset(),
}


# =============================================================================
# CHEQUES
# =============================================================================

CHEQUE_PENDING = "PENDING"
CHEQUE_DEPOSITED = "DEPOSITED"
CHEQUE_PASSED = "PASSED"
CHEQUE_RETURNED = "RETURNED"

ChequeStatus = Literal["PENDING", "DEPOSITED", "PASSED", "RETURNED"]

CHEQUE_STATUSES = frozenset({CHEQUE_PENDING, CHEQUE_DEPOSITED, CHEQUE_PASSED, CHEQUE_RETURNED})

CHEQUE_TRANSITIONS: dict[str, frozenset[str]] = {
    CHEQUE_PENDING: frozenset({CHEQUE_DEPOSITED}),
    CHEQUE_DEPOSITED: frozenset({CHEQUE_PASSED, CHEQUE_RETURNED}),
    CHEQUE_PASSED: frozenset(),
    CHEQUE_RETURNED: frozenset(),
}


# =============================================================================
# PURCHASES, PAYMENTS, CLAIMS, ACCOUNTS
# =============================================================================

PURCHASE_ORDERED = "ORDERED"
PURCHASE_RECEIVED = "RECEIVED"
PURCHASE_STATUSES = frozenset({PURCHASE_ORDERED, PURCHASE_RECEIVED})

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PARTIAL = "PARTIAL"
PAYMENT_PAID = "PAID"
PAYMENT_STATUSES = frozenset({PAYMENT_UNPAID, PAYMENT_PARTIAL, PAYMENT_PAID})

# Customer payment records (not to be confused with invoice payment status)
PAYMENT_RECORD_COMPLETED = "COMPLETED"
PAYMENT_RECORD_REVERSED = "REVERSED"

METHOD_CASH = "CASH"
METHOD_CHEQUE = "CHEQUE"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
PAYMENT_METHODS = frozenset({METHOD_CASH, METHOD_CHEQUE, METHOD_BANK_TRANSFER})

CLAIM_UNCLAIMED = "UNCLAIMED"
CLAIM_APPROVED = "APPROVED"
CLAIM_STATUSES = frozenset({CLAIM_UNCLAIMED, CLAIM_APPROVED})

ACCOUNT_CASH = "CASH"
ACCOUNT_SAVINGS = "SAVINGS"
ACCOUNT_CURRENT = "CURRENT"
ACCOUNT_TYPES = frozenset({ACCOUNT_CASH, ACCOUNT_SAVINGS, ACCOUNT_CURRENT})


def _validate(value: str, allowed: frozenset[str], label: str) -> str:
    if value not in allowed:
        raise ValidationError(
            f"Invalid {label} '{value}'. Must be one of: {', '.join(sorted(allowed))}"
        )
    return value


def validate_order_status(value: str) -> str:
    return _validate(value, ORDER_STATUSES, "order status")


def validate_cheque_status(value: str) -> str:
    return _validate(value, CHEQUE_STATUSES, "cheque status")


def validate_payment_status(value: str) -> str:
    return _validate(value, PAYMENT_STATUSES, "payment status")


def validate_payment_method(value: str) -> str:
    return _validate(value, PAYMENT_METHODS, "payment method")


def validate_account_type(value: str) -> str:
    return _validate(value, ACCOUNT_TYPES, "account type")


def can_transition_order(from_status: str, to_status: str) -> bool:
    validate_order_status(from_status)
    validate_order_status(to_status)
    return to_status in ORDER_TRANSITIONS[from_status]


def can_transition_cheque(from_status: str, to_status: str) -> bool:
    validate_cheque_status(from_status)
    validate_cheque_status(to_status)
    return to_status in CHEQUE_TRANSITIONS[from_status]


def derive_payment_status(total_cents: int, paid_cents: int) -> str:
    """UNPAID until money arrives, PAID once the invoice total is covered."""
    if paid_cents <= 0:
        return PAYMENT_UNPAID
    if paid_cents >= total_cents:
        return PAYMENT_PAID
    return PAYMENT_PARTIAL
