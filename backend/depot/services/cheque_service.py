# backend/depot/services/cheque_service.py
"""
Cheque registry.

LIFECYCLE:
1. PENDING: in hand (created with a CHEQUE payment)
2. DEPOSITED: banked into an account; provisional, no balance movement
3. PASSED: cleared; amount credited to the deposit account (terminal)
4. RETURNED: bounced while deposited; payment reversed (terminal)

Returning a PENDING cheque is the "handed back unbanked" action: the cheque
stays PENDING, no account entry is written, and the payment it represented
is voided so the customer owes the amount again.

Every transition records a history entry keyed cheque:<id>:<target>, so a
replayed transition is rejected even if it slipped past the status check.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationError
from ..models import Cheque, Payment
from ..statuses import (
    CHEQUE_DEPOSITED,
    CHEQUE_PASSED,
    CHEQUE_PENDING,
    CHEQUE_RETURNED,
    PAYMENT_RECORD_COMPLETED,
    can_transition_cheque,
    validate_cheque_status,
)
from ..time_utils import normalize_datetime
from .account_service import _apply_cheque_effect_locked, _get_account_locked
from .concurrency import lock_for_update, run_atomic
from .history_service import ENTITY_CHEQUE, record_transition
from .payment_service import _reverse_payment_locked


HANDED_BACK = "HANDED_BACK"


def idempotency_key(cheque_id: int, target: str) -> str:
    return f"cheque:{cheque_id}:{target}"


def _get_cheque_locked(cheque_id: int) -> Cheque:
    cheque = lock_for_update(db.session.query(Cheque).filter_by(id=cheque_id)).first()
    if not cheque:
        raise NotFound(f"Cheque {cheque_id} not found", entity_id=cheque_id)
    return cheque


def _require_edge(cheque: Cheque, target: str) -> None:
    if not can_transition_cheque(cheque.status, target):
        raise InvalidTransition(
            f"Cheque {cheque.cheque_number} cannot move from {cheque.status} to {target}",
            entity_id=cheque.id,
        )


def _record(cheque: Cheque, previous: str, target: str, *, key_target: str | None = None,
            occurred_at=None, reason: str | None = None, actor_user_id: int | None = None,
            payload: dict | None = None) -> None:
    record_transition(
        entity_type=ENTITY_CHEQUE,
        entity_id=cheque.id,
        previous_state=previous,
        new_state=target,
        business_id=cheque.business_id,
        actor_user_id=actor_user_id,
        reason=reason,
        payload=payload,
        idempotency_key=idempotency_key(cheque.id, key_target or target),
        occurred_at=occurred_at,
    )


def _payment_locked(cheque: Cheque) -> Payment:
    return lock_for_update(db.session.query(Payment).filter_by(id=cheque.payment_id)).first()


def deposit_cheque(
    cheque_id: int,
    *,
    account_id: int,
    deposited_at=None,
    actor_user_id: int | None = None,
) -> Cheque:
    """PENDING -> DEPOSITED. Records the deposit account; moves no money."""
    def _op():
        cheque = _get_cheque_locked(cheque_id)
        _require_edge(cheque, CHEQUE_DEPOSITED)

        payment = _payment_locked(cheque)
        if payment is None or payment.status != PAYMENT_RECORD_COMPLETED:
            raise InvalidTransition(
                f"Cheque {cheque.cheque_number} was handed back; its payment is reversed",
                entity_id=cheque.id,
            )

        account = _get_account_locked(account_id)
        if account.business_id != cheque.business_id:
            raise ValidationError("Deposit account belongs to another business", entity_id=account_id)
        if not account.is_active:
            raise ValidationError(f"Account {account.name} is inactive", entity_id=account_id)

        when = normalize_datetime(deposited_at)
        cheque.status = CHEQUE_DEPOSITED
        cheque.deposit_account_id = account.id
        cheque.deposited_at = when
        _record(
            cheque,
            CHEQUE_PENDING,
            CHEQUE_DEPOSITED,
            occurred_at=when,
            actor_user_id=actor_user_id,
            payload={"account_id": account.id},
        )
        return cheque

    return run_atomic(_op)


def clear_cheque(cheque_id: int, *, cleared_at=None, actor_user_id: int | None = None) -> Cheque:
    """DEPOSITED -> PASSED. Credits the cheque amount to its deposit account."""
    def _op():
        cheque = _get_cheque_locked(cheque_id)
        _require_edge(cheque, CHEQUE_PASSED)

        account = _get_account_locked(cheque.deposit_account_id)
        when = normalize_datetime(cleared_at)
        txn = _apply_cheque_effect_locked(
            account,
            cheque.amount_cents,
            cheque_id=cheque.id,
            occurred_at=when,
            note=f"cheque {cheque.cheque_number} cleared",
            actor_user_id=actor_user_id,
        )

        cheque.status = CHEQUE_PASSED
        cheque.cleared_at = when
        _record(
            cheque,
            CHEQUE_DEPOSITED,
            CHEQUE_PASSED,
            occurred_at=when,
            actor_user_id=actor_user_id,
            payload={"account_id": account.id, "transaction_no": txn.transaction_no},
        )
        return cheque

    return run_atomic(_op)


def _return_deposited_locked(cheque: Cheque, *, reason: str | None, occurred_at=None,
                             actor_user_id: int | None = None) -> Cheque:
    """
    DEPOSITED -> RETURNED. Reverses the payment. No account entry: money
    only moves on clear, and PASSED cannot be returned. Does not commit.
    """
    _require_edge(cheque, CHEQUE_RETURNED)
    when = normalize_datetime(occurred_at)

    payment = _payment_locked(cheque)
    if payment is not None and payment.status == PAYMENT_RECORD_COMPLETED:
        _reverse_payment_locked(
            payment,
            reason=reason or "cheque returned",
            actor_user_id=actor_user_id,
            occurred_at=when,
        )

    cheque.status = CHEQUE_RETURNED
    cheque.returned_at = when
    cheque.return_reason = reason
    _record(
        cheque,
        CHEQUE_DEPOSITED,
        CHEQUE_RETURNED,
        occurred_at=when,
        reason=reason,
        actor_user_id=actor_user_id,
        payload={"amount_cents": cheque.amount_cents},
    )
    return cheque


def _hand_back_locked(cheque: Cheque, *, reason: str | None, occurred_at=None,
                      actor_user_id: int | None = None) -> Cheque:
    """
    Return of a PENDING cheque: no status change and no account entry, but
    the payment is voided so the receivable is restored. Does not commit.
    """
    payment = _payment_locked(cheque)
    if payment is None or payment.status != PAYMENT_RECORD_COMPLETED:
        raise InvalidTransition(
            f"Cheque {cheque.cheque_number} was already handed back",
            entity_id=cheque.id,
        )

    when = normalize_datetime(occurred_at)
    _reverse_payment_locked(
        payment,
        reason=reason or "cheque handed back unbanked",
        actor_user_id=actor_user_id,
        occurred_at=when,
    )
    cheque.return_reason = reason
    current_app.logger.warning(
        "Cheque %s returned while PENDING; handed back unbanked, payment %s voided",
        cheque.cheque_number,
        payment.id,
    )
    _record(
        cheque,
        CHEQUE_PENDING,
        CHEQUE_PENDING,
        key_target=HANDED_BACK,
        occurred_at=when,
        reason=reason or "handed back unbanked",
        actor_user_id=actor_user_id,
        payload={"amount_cents": cheque.amount_cents},
    )
    return cheque


def _return_cheque_locked(cheque: Cheque, *, reason: str | None = None, occurred_at=None,
                          actor_user_id: int | None = None) -> Cheque:
    if cheque.status == CHEQUE_PENDING:
        return _hand_back_locked(cheque, reason=reason, occurred_at=occurred_at, actor_user_id=actor_user_id)
    return _return_deposited_locked(cheque, reason=reason, occurred_at=occurred_at, actor_user_id=actor_user_id)


def return_cheque(
    cheque_id: int,
    *,
    reason: str | None = None,
    returned_at=None,
    actor_user_id: int | None = None,
) -> Cheque:
    """
    Return a cheque.

    DEPOSITED -> RETURNED; PENDING is handed back (stays PENDING).
    PASSED and RETURNED cheques raise InvalidTransition with no ledger change.
    """
    def _op():
        cheque = _get_cheque_locked(cheque_id)
        return _return_cheque_locked(
            cheque,
            reason=reason,
            occurred_at=returned_at,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def get_cheque(cheque_id: int) -> Cheque:
    cheque = db.session.query(Cheque).filter_by(id=cheque_id).first()
    if not cheque:
        raise NotFound(f"Cheque {cheque_id} not found", entity_id=cheque_id)
    return cheque


def list_cheques(*, business_id: int | None = None, status: str | None = None) -> list[Cheque]:
    query = db.session.query(Cheque)
    if business_id is not None:
        query = query.filter(Cheque.business_id == business_id)
    if status:
        query = query.filter(Cheque.status == validate_cheque_status(status.strip().upper()))
    return query.order_by(Cheque.cheque_date.asc(), Cheque.id.asc()).all()


def cheques_for_order(order_id: int) -> list[Cheque]:
    return (
        db.session.query(Cheque)
        .join(Payment, Payment.id == Cheque.payment_id)
        .filter(Payment.order_id == order_id)
        .order_by(Cheque.id.asc())
        .all()
    )
