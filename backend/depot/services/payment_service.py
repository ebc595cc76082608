# Overview: Customer payments against orders and the receivable (customer outstanding) they move.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationError
from ..models import Cheque, Customer, Order, Payment
from ..statuses import (
    CHEQUE_PENDING,
    METHOD_CHEQUE,
    ORDER_CANCELLED,
    PAYMENT_RECORD_COMPLETED,
    PAYMENT_RECORD_REVERSED,
    derive_payment_status,
    validate_payment_method,
)
from ..time_utils import normalize_datetime, parse_business_date, utcnow
from .concurrency import lock_for_update, run_atomic
from .history_service import ENTITY_PAYMENT, record_transition
"""
Receivable Invariants (authoritative)

- customer.outstanding_cents == sum(total of billed orders) - sum(COMPLETED payments)
- order.paid_cents == sum(amount of the order's COMPLETED payments)
- A payment is reversed at most once; a reversed payment never counts again.
"""


def _adjust_outstanding_locked(customer_id: int, delta_cents: int) -> Customer:
    """Move a customer's receivable by delta. Does not commit."""
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFound(f"Customer {customer_id} not found", entity_id=customer_id)
    if delta_cents:
        customer.outstanding_cents = (customer.outstanding_cents or 0) + delta_cents
    return customer


def _recompute_order_payment_locked(order: Order) -> Order:
    """Re-derive paid amount and payment status from COMPLETED payments."""
    db.session.flush()
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.order_id == order.id, Payment.status == PAYMENT_RECORD_COMPLETED)
        .scalar()
    )
    order.paid_cents = int(paid or 0)
    order.payment_status = derive_payment_status(order.total_cents, order.paid_cents)
    return order


def _record_payment_locked(
    order: Order,
    *,
    method: str,
    amount_cents: int,
    cheque_number: str | None = None,
    cheque_date=None,
    bank_ref: str | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> Payment:
    method = validate_payment_method((method or "").strip().upper())

    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if order.status == ORDER_CANCELLED:
        raise InvalidTransition(f"Order {order.id} is cancelled", entity_id=order.id)

    cheque_day = None
    if method == METHOD_CHEQUE:
        if not cheque_number or not str(cheque_number).strip():
            raise ValidationError("cheque_number is required for cheque payments")
        try:
            cheque_day = parse_business_date(cheque_date) if cheque_date else utcnow().date()
        except ValueError:
            raise ValidationError("cheque_date must be an ISO date")

    payment = Payment(
        business_id=order.business_id,
        order_id=order.id,
        customer_id=order.customer_id,
        method=method,
        amount_cents=amount_cents,
        status=PAYMENT_RECORD_COMPLETED,
        note=note,
        created_by_user_id=actor_user_id,
    )
    db.session.add(payment)
    db.session.flush()

    if method == METHOD_CHEQUE:
        cheque = Cheque(
            business_id=order.business_id,
            payment_id=payment.id,
            cheque_number=str(cheque_number).strip(),
            amount_cents=amount_cents,
            cheque_date=cheque_day,
            bank_ref=bank_ref,
            status=CHEQUE_PENDING,
        )
        db.session.add(cheque)
        db.session.flush()

    _adjust_outstanding_locked(order.customer_id, -amount_cents)
    _recompute_order_payment_locked(order)
    return payment


def record_payment(
    *,
    order_id: int,
    method: str,
    amount_cents: int,
    cheque_number: str | None = None,
    cheque_date=None,
    bank_ref: str | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> Payment:
    """
    Record a customer payment against an order.

    Cheque payments create a PENDING cheque; its money only reaches an
    account when the cheque clears.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFound(f"Order {order_id} not found", entity_id=order_id)
        return _record_payment_locked(
            order,
            method=method,
            amount_cents=amount_cents,
            cheque_number=cheque_number,
            cheque_date=cheque_date,
            bank_ref=bank_ref,
            note=note,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def _reverse_payment_locked(
    payment: Payment,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> Payment:
    """Void a payment and restore the receivable. Does not commit."""
    if payment.status != PAYMENT_RECORD_COMPLETED:
        raise InvalidTransition(f"Payment {payment.id} is already reversed", entity_id=payment.id)

    payment.status = PAYMENT_RECORD_REVERSED
    payment.reversed_at = normalize_datetime(occurred_at)
    payment.reversed_by_user_id = actor_user_id
    payment.reversal_reason = reason

    _adjust_outstanding_locked(payment.customer_id, payment.amount_cents)

    order = lock_for_update(db.session.query(Order).filter_by(id=payment.order_id)).first()
    _recompute_order_payment_locked(order)

    record_transition(
        entity_type=ENTITY_PAYMENT,
        entity_id=payment.id,
        previous_state=PAYMENT_RECORD_COMPLETED,
        new_state=PAYMENT_RECORD_REVERSED,
        business_id=payment.business_id,
        actor_user_id=actor_user_id,
        reason=reason,
        payload={"order_id": payment.order_id, "amount_cents": payment.amount_cents},
        occurred_at=occurred_at,
    )
    return payment


def reverse_payment(*, payment_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Payment:
    """Void a cash or bank-transfer payment. Cheque payments go through the cheque registry."""
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFound(f"Payment {payment_id} not found", entity_id=payment_id)
        if payment.method == METHOD_CHEQUE:
            raise InvalidTransition(
                f"Payment {payment_id} is a cheque payment; return the cheque instead",
                entity_id=payment_id,
            )
        return _reverse_payment_locked(payment, reason=reason, actor_user_id=actor_user_id)

    return run_atomic(_op)


def get_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if not payment:
        raise NotFound(f"Payment {payment_id} not found", entity_id=payment_id)
    return payment
