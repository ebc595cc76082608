# backend/depot/services/reconciliation_service.py
"""
Reconciliation engine: records what actually happened to each order of a load.

WHY: After a delivery run the operator asserts, per order, the outcome
(DELIVERED, PARTIAL, RETURNED, or LOADING to reschedule), the final invoice
amount and the collection status. The engine persists those assertions,
reports the difference against the dispatched snapshot, and optionally
closes the load.

RESILIENCE: Operators retry after timeouts and work from stale screens, so
updates for unknown orders, orders not on this load, or orders already moved
elsewhere are skipped with a warning rather than failing the batch.
Re-submitting an identical update is a no-op; a changed one is applied as a
new audited transition. A closed load accepts only no-op re-submissions.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationError
from ..models import LoadSheet, Order
from ..statuses import (
    CHEQUE_DEPOSITED,
    CHEQUE_PENDING,
    METHOD_CASH,
    METHOD_CHEQUE,
    ORDER_LOADING,
    ORDER_RETURNED,
    PAYMENT_PAID,
    PAYMENT_RECORD_COMPLETED,
    PAYMENT_STATUSES,
    RECONCILE_TARGETS,
    can_transition_order,
)
from ..time_utils import utcnow
from .cheque_service import _hand_back_locked, _return_deposited_locked
from .concurrency import lock_for_update, lock_many, run_atomic
from .history_service import ENTITY_ORDER, record_transition
from .load_service import close_load_locked
from .order_service import AMOUNT_RECONCILE, _set_total_locked, _transition_locked
from .payment_service import _record_payment_locked, _reverse_payment_locked


SKIP_UNKNOWN = "unknown_order"
SKIP_NOT_ON_LOAD = "not_on_load"
SKIP_MOVED = "moved_to_another_load"
SKIP_INVALID = "invalid_transition"


def _validate_updates(updates) -> list[dict]:
    if updates is None:
        return []
    if not isinstance(updates, list):
        raise ValidationError("updates must be a list")

    cleaned = []
    seen = set()
    for idx, update in enumerate(updates):
        if not isinstance(update, dict):
            raise ValidationError("update must be an object", line=idx)

        order_id = update.get("order_id")
        if isinstance(order_id, bool) or not isinstance(order_id, int):
            raise ValidationError("order_id must be an integer", line=idx)
        if order_id in seen:
            raise ValidationError(f"Order {order_id} is listed twice", line=idx, entity_id=order_id)
        seen.add(order_id)

        status = update.get("status")
        status = status.strip().upper() if isinstance(status, str) else status
        if status not in RECONCILE_TARGETS:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(RECONCILE_TARGETS))}",
                line=idx,
                entity_id=order_id,
            )

        payment_status = update.get("payment_status")
        if payment_status is not None:
            payment_status = payment_status.strip().upper() if isinstance(payment_status, str) else payment_status
            if payment_status not in PAYMENT_STATUSES:
                raise ValidationError(
                    f"payment_status must be one of: {', '.join(sorted(PAYMENT_STATUSES))}",
                    line=idx,
                    entity_id=order_id,
                )

        final = update.get("final_amount_cents")
        if final is not None and (isinstance(final, bool) or not isinstance(final, int) or final < 0):
            raise ValidationError("final_amount_cents must be a non-negative integer", line=idx, entity_id=order_id)

        cleaned.append({
            "order_id": order_id,
            "status": status,
            "payment_status": payment_status,
            "final_amount_cents": final,
            "notes": update.get("notes"),
        })
    return cleaned


def _is_noop(order: Order, update: dict) -> bool:
    if order.status != update["status"]:
        return False
    if update["final_amount_cents"] is not None and update["final_amount_cents"] != order.total_cents:
        return False
    if update["payment_status"] is not None and update["payment_status"] != order.payment_status:
        return False
    return True


def _reverse_order_payments_locked(order: Order, *, reason: str, actor_user_id: int | None) -> list[dict]:
    """
    Undo the collections of a returned order.

    Deposited cheques are returned, pending cheques handed back, cash and
    transfer payments voided. Cleared cheques are left alone and reported.
    """
    warnings = []
    for payment in list(order.payments):
        if payment.status != PAYMENT_RECORD_COMPLETED:
            continue
        if payment.method != METHOD_CHEQUE:
            _reverse_payment_locked(payment, reason=reason, actor_user_id=actor_user_id)
            continue

        cheque = payment.cheque
        if cheque.status == CHEQUE_DEPOSITED:
            _return_deposited_locked(cheque, reason=reason, actor_user_id=actor_user_id)
        elif cheque.status == CHEQUE_PENDING:
            _hand_back_locked(cheque, reason=reason, actor_user_id=actor_user_id)
        else:
            current_app.logger.warning(
                "Order %s returned but cheque %s is %s; payment left in place",
                order.order_number,
                cheque.cheque_number,
                cheque.status,
            )
            warnings.append({"order_id": order.id, "cheque_id": cheque.id, "cheque_status": cheque.status})
    return warnings


def _apply_update_locked(load: LoadSheet, order: Order, update: dict, *, actor_user_id: int | None) -> dict:
    previous_status = order.status
    previous_total = order.total_cents
    dispatched = order.dispatched_cents
    final = update["final_amount_cents"] if update["final_amount_cents"] is not None else order.total_cents
    diff = final - (dispatched if dispatched is not None else final)
    target = update["status"]
    reason = update["notes"] or "reconciliation"
    payload = {
        "load_id": load.id,
        "dispatched_cents": dispatched,
        "final_cents": final,
        "diff_cents": diff,
    }
    warnings = []

    if final != order.total_cents:
        _set_total_locked(
            order,
            final,
            kind=AMOUNT_RECONCILE,
            load_id=load.id,
            reason=update["notes"],
            actor_user_id=actor_user_id,
        )

    if target != previous_status:
        if target == ORDER_LOADING:
            order.load_id = None
        _transition_locked(order, target, actor_user_id=actor_user_id, reason=reason, payload=payload)
        if target == ORDER_RETURNED:
            warnings = _reverse_order_payments_locked(
                order,
                reason=f"order {order.order_number} returned",
                actor_user_id=actor_user_id,
            )
    else:
        record_transition(
            entity_type=ENTITY_ORDER,
            entity_id=order.id,
            previous_state=previous_status,
            new_state=target,
            business_id=order.business_id,
            actor_user_id=actor_user_id,
            reason=reason,
            payload=payload,
        )

    asserted = update["payment_status"]
    if asserted == PAYMENT_PAID:
        due = order.total_cents - order.paid_cents
        if due > 0:
            _record_payment_locked(
                order,
                method=METHOD_CASH,
                amount_cents=due,
                note=f"collected on {load.load_number}",
                actor_user_id=actor_user_id,
            )
    elif asserted is not None:
        order.payment_status = asserted

    line = next((ln for ln in load.lines if ln.order_id == order.id), None)
    if line is not None:
        line.resolved_status = target
        line.resolved_at = utcnow()
        if update["notes"] is not None:
            line.notes = update["notes"]

    return {
        "order_id": order.id,
        "previous_status": previous_status,
        "status": order.status,
        "previous_total_cents": previous_total,
        "dispatched_cents": dispatched,
        "final_cents": final,
        "diff_cents": diff,
        "payment_status": order.payment_status,
        "changed": True,
        "warnings": warnings,
    }


def finalize_reconciliation(
    load_id: int,
    *,
    updates: list[dict] | None,
    close_load: bool = False,
    actor_user_id: int | None = None,
) -> dict:
    """
    Apply operator-asserted outcomes to the orders of a load.

    updates: [{order_id, status, payment_status, notes, final_amount_cents}]
    status is DELIVERED, PARTIAL, RETURNED or LOADING (reschedule).

    Returns {"load", "applied", "skipped", "closed"}; orders of the load not
    named in updates are left as they are.
    """
    def _op():
        load = lock_for_update(db.session.query(LoadSheet).filter_by(id=load_id)).first()
        if not load:
            raise NotFound(f"Load {load_id} not found", entity_id=load_id)

        cleaned = _validate_updates(updates)
        manifest = {line.order_id for line in load.lines}
        orders = {order.id: order for order in lock_many(Order, [u["order_id"] for u in cleaned])}

        plan = []
        skipped = []
        for update in cleaned:
            order_id = update["order_id"]
            order = orders.get(order_id)

            if order is None or order.business_id != load.business_id:
                skipped.append({"order_id": order_id, "reason": SKIP_UNKNOWN})
            elif order_id not in manifest:
                skipped.append({"order_id": order_id, "reason": SKIP_NOT_ON_LOAD})
            elif order.load_id != load.id:
                rescheduled_here = order.load_id is None and order.status == ORDER_LOADING
                if rescheduled_here and _is_noop(order, update):
                    plan.append((order, update, False))
                else:
                    skipped.append({"order_id": order_id, "reason": SKIP_MOVED})
            elif _is_noop(order, update):
                plan.append((order, update, False))
            elif order.status != update["status"] and not can_transition_order(order.status, update["status"]):
                skipped.append({"order_id": order_id, "reason": SKIP_INVALID, "status": order.status})
            else:
                plan.append((order, update, True))

        for entry in skipped:
            current_app.logger.warning(
                "Reconciliation of load %s skipped order %s: %s",
                load.load_number,
                entry["order_id"],
                entry["reason"],
            )

        changes = [(order, update) for order, update, changed in plan if changed]
        if not load.is_open and changes:
            first = changes[0][0]
            raise InvalidTransition(
                f"Load {load.load_number} is closed; order {first.id} can no longer change",
                entity_id=first.id,
            )

        applied = []
        for order, update, changed in plan:
            if changed:
                applied.append(_apply_update_locked(load, order, update, actor_user_id=actor_user_id))
            else:
                dispatched = order.dispatched_cents
                applied.append({
                    "order_id": order.id,
                    "previous_status": order.status,
                    "status": order.status,
                    "previous_total_cents": order.total_cents,
                    "dispatched_cents": dispatched,
                    "final_cents": order.total_cents,
                    "diff_cents": order.total_cents - (dispatched if dispatched is not None else order.total_cents),
                    "payment_status": order.payment_status,
                    "changed": False,
                    "warnings": [],
                })

        closed_now = False
        if close_load and load.is_open:
            close_load_locked(load, actor_user_id=actor_user_id)
            closed_now = True

        db.session.flush()
        return {
            "load": load,
            "applied": applied,
            "skipped": skipped,
            "closed": not load.is_open,
            "closed_now": closed_now,
        }

    return run_atomic(_op)
