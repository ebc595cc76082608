# Overview: Order state machine, invoice amount ledger and load assignment.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import AlreadyLoaded, InvalidTransition, NotFound, ValidationError
from ..models import Customer, LoadSheet, LoadSheetLine, Order, OrderAmountEntry, OrderLine, Product
from ..statuses import (
    ORDER_CANCELLABLE,
    ORDER_CANCELLED,
    ORDER_CHECKING,
    ORDER_FINAL,
    ORDER_IN_TRANSIT,
    ORDER_LOADING,
    ORDER_PENDING,
    ORDER_PROCESSING,
    can_transition_order,
    derive_payment_status,
)
from ..time_utils import parse_business_date, utcnow
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number
from .history_service import ENTITY_ORDER, get_history, record_transition
from .payment_service import _adjust_outstanding_locked


AMOUNT_OPENING = "OPENING"
AMOUNT_EDIT = "EDIT"
AMOUNT_DISPATCH = "DISPATCH"
AMOUNT_RECONCILE = "RECONCILE"

# Orders that can be invoiced
ORDER_BILLABLE = frozenset({ORDER_PROCESSING, ORDER_CHECKING, ORDER_LOADING, ORDER_IN_TRANSIT})


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFound(f"Order {order_id} not found", entity_id=order_id)
    return order


def _append_amount_entry(
    order: Order,
    *,
    kind: str,
    amount_cents: int,
    previous_cents: int | None = None,
    load_id: int | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> OrderAmountEntry:
    entry = OrderAmountEntry(
        kind=kind,
        previous_cents=previous_cents,
        amount_cents=amount_cents,
        load_id=load_id,
        reason=reason,
        actor_user_id=actor_user_id,
        created_at=utcnow(),
    )
    # Appending through the relationship keeps dispatched_cents current in-session
    order.amount_entries.append(entry)
    db.session.flush()
    return entry


def _transition_locked(
    order: Order,
    target: str,
    *,
    actor_user_id: int | None = None,
    reason: str | None = None,
    payload: dict | None = None,
) -> Order:
    """Apply one legal status change plus its history record. Does not commit."""
    if not can_transition_order(order.status, target):
        raise InvalidTransition(
            f"Order {order.id} cannot move from {order.status} to {target}",
            entity_id=order.id,
        )
    previous = order.status
    order.status = target
    record_transition(
        entity_type=ENTITY_ORDER,
        entity_id=order.id,
        previous_state=previous,
        new_state=target,
        business_id=order.business_id,
        actor_user_id=actor_user_id,
        reason=reason,
        payload=payload,
    )
    return order


def _set_total_locked(
    order: Order,
    new_total_cents: int,
    *,
    kind: str,
    load_id: int | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> int:
    """
    Change the invoice total through the amount ledger.

    Billed orders move the customer's receivable by the same delta.
    Returns the delta (0 means nothing was written).
    """
    delta = new_total_cents - order.total_cents
    if not delta:
        return 0

    _append_amount_entry(
        order,
        kind=kind,
        previous_cents=order.total_cents,
        amount_cents=new_total_cents,
        load_id=load_id,
        reason=reason,
        actor_user_id=actor_user_id,
    )
    order.total_cents = new_total_cents
    order.payment_status = derive_payment_status(order.total_cents, order.paid_cents)

    if order.invoice_no:
        _adjust_outstanding_locked(order.customer_id, delta)
    return delta


def _validate_order_lines(business_id: int, lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    cleaned = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("line must be an object", line=idx)

        values = {}
        for key, minimum in (("quantity", 0), ("free_quantity", 0), ("unit_price_cents", 0)):
            raw = line.get(key, 0)
            if isinstance(raw, bool) or not isinstance(raw, int) or raw < minimum:
                raise ValidationError(f"{key} must be a non-negative integer", line=idx)
            values[key] = raw
        if values["quantity"] + values["free_quantity"] <= 0:
            raise ValidationError("line has no quantity", line=idx)

        product_id = line.get("product_id")
        product = db.session.query(Product).filter_by(id=product_id, business_id=business_id).first()
        if not product:
            raise NotFound(f"Product {product_id} not found", entity_id=product_id, line=idx)

        values["product_id"] = product.id
        cleaned.append(values)
    return cleaned


def create_order(
    *,
    business_id: int,
    customer_id: int,
    lines: list[dict],
    order_date=None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """
    Create a PENDING order.

    total = sum(quantity * unit_price) over the lines; free quantities are
    not charged and become free-issue claims.
    """
    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id, business_id=business_id).first()
        if not customer:
            raise NotFound(f"Customer {customer_id} not found", entity_id=customer_id)

        cleaned = _validate_order_lines(business_id, lines)
        try:
            day = parse_business_date(order_date) if order_date else utcnow().date()
        except ValueError:
            raise ValidationError("order_date must be an ISO date")

        order = Order(
            business_id=business_id,
            customer_id=customer.id,
            order_number=next_document_number(
                business_id=business_id,
                document_type="ORDER",
                base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
            ),
            status=ORDER_PENDING,
            total_cents=0,
            paid_cents=0,
            order_date=day,
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        db.session.add(order)
        db.session.flush()

        total = 0
        for values in cleaned:
            line_total = values["quantity"] * values["unit_price_cents"]
            total += line_total
            db.session.add(OrderLine(
                order_id=order.id,
                product_id=values["product_id"],
                quantity=values["quantity"],
                free_quantity=values["free_quantity"],
                unit_price_cents=values["unit_price_cents"],
                line_total_cents=line_total,
            ))

        order.total_cents = total
        order.payment_status = derive_payment_status(total, 0)
        _append_amount_entry(order, kind=AMOUNT_OPENING, amount_cents=total, actor_user_id=actor_user_id)

        record_transition(
            entity_type=ENTITY_ORDER,
            entity_id=order.id,
            previous_state=None,
            new_state=ORDER_PENDING,
            business_id=business_id,
            actor_user_id=actor_user_id,
            reason="created",
        )
        return order

    return run_atomic(_op)


def approve_order(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """PENDING -> PROCESSING."""
    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_PENDING:
            raise InvalidTransition(f"Order {order_id} is {order.status}, not PENDING", entity_id=order_id)
        return _transition_locked(order, ORDER_PROCESSING, actor_user_id=actor_user_id, reason="approved")

    return run_atomic(_op)


def send_to_checking(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """PROCESSING -> CHECKING."""
    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_PROCESSING:
            raise InvalidTransition(f"Order {order_id} is {order.status}, not PROCESSING", entity_id=order_id)
        return _transition_locked(order, ORDER_CHECKING, actor_user_id=actor_user_id, reason="sent to checking")

    return run_atomic(_op)


def pass_qc(order_id: int, *, force: bool = False, actor_user_id: int | None = None) -> Order:
    """
    CHECKING -> LOADING.

    force only marks the history reason (verification was incomplete); the
    transition itself is unconditional.
    """
    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_CHECKING:
            raise InvalidTransition(f"Order {order_id} is {order.status}, not CHECKING", entity_id=order_id)
        reason = "qc passed (forced)" if force else "qc passed"
        return _transition_locked(order, ORDER_LOADING, actor_user_id=actor_user_id, reason=reason)

    return run_atomic(_op)


def reject_order(order_id: int, *, reason: str | None = None, actor_user_id: int | None = None) -> Order:
    """Cancel an order that has not left the depot."""
    def _op():
        order = _get_order_locked(order_id)
        if order.status not in ORDER_CANCELLABLE:
            raise InvalidTransition(f"Order {order_id} cannot be cancelled from {order.status}", entity_id=order_id)
        return _transition_locked(order, ORDER_CANCELLED, actor_user_id=actor_user_id, reason=reason or "rejected")

    return run_atomic(_op)


def _assign_to_load_locked(order: Order, load: LoadSheet, *, actor_user_id: int | None = None) -> Order:
    """
    LOADING/CHECKING -> IN_TRANSIT on the given load.

    The DISPATCH amount entry is written the first time an order leaves;
    re-loading a rescheduled order keeps the original snapshot.
    """
    if order.load_id is not None and order.load_id != load.id:
        current = db.session.query(LoadSheet).filter_by(id=order.load_id).first()
        if current is not None and current.is_open:
            raise AlreadyLoaded(
                f"Order {order.id} is already on open load {current.load_number}",
                entity_id=order.id,
            )
    if order.status not in (ORDER_LOADING, ORDER_CHECKING):
        raise InvalidTransition(
            f"Order {order.id} is {order.status}; only LOADING or CHECKING orders can be loaded",
            entity_id=order.id,
        )

    order.load_id = load.id
    _transition_locked(
        order,
        ORDER_IN_TRANSIT,
        actor_user_id=actor_user_id,
        reason=f"loaded on {load.load_number}",
        payload={"load_id": load.id},
    )

    if order.dispatched_cents is None:
        _append_amount_entry(
            order,
            kind=AMOUNT_DISPATCH,
            amount_cents=order.total_cents,
            load_id=load.id,
            actor_user_id=actor_user_id,
        )
    return order


def assign_to_load(order_id: int, load_id: int, *, actor_user_id: int | None = None) -> Order:
    """Attach a single order to an existing open load (appended to the manifest)."""
    def _op():
        load = lock_for_update(db.session.query(LoadSheet).filter_by(id=load_id)).first()
        if not load:
            raise NotFound(f"Load {load_id} not found", entity_id=load_id)
        if not load.is_open:
            raise InvalidTransition(f"Load {load.load_number} is closed", entity_id=load_id)

        order = _get_order_locked(order_id)
        if order.business_id != load.business_id:
            raise NotFound(f"Order {order_id} not found", entity_id=order_id)
        if order.load_id == load.id:
            raise AlreadyLoaded(f"Order {order_id} is already on load {load.load_number}", entity_id=order_id)

        _assign_to_load_locked(order, load, actor_user_id=actor_user_id)

        line = db.session.query(LoadSheetLine).filter_by(load_id=load.id, order_id=order.id).first()
        if line is None:
            position = max((ln.position for ln in load.lines), default=-1) + 1
            db.session.add(LoadSheetLine(load_id=load.id, order_id=order.id, position=position))
        else:
            line.resolved_status = None
            line.resolved_at = None
        db.session.flush()
        return order

    return run_atomic(_op)


def issue_invoice(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """Bill an order: assign its invoice number once and add the total to the receivable."""
    def _op():
        order = _get_order_locked(order_id)
        if order.invoice_no:
            raise InvalidTransition(f"Order {order_id} is already invoiced as {order.invoice_no}", entity_id=order_id)
        if order.status not in ORDER_BILLABLE:
            raise InvalidTransition(f"Order {order_id} cannot be invoiced while {order.status}", entity_id=order_id)

        order.invoice_no = next_document_number(
            business_id=order.business_id,
            document_type="INVOICE",
            base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
        )
        order.billed_at = utcnow()
        _adjust_outstanding_locked(order.customer_id, order.total_cents)
        db.session.flush()
        return order

    return run_atomic(_op)


def edit_invoice_amount(
    order_id: int,
    *,
    new_total_cents: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """
    Invoice editing entry point. Allowed until the order reaches a final
    state; in particular while IN_TRANSIT, which is what reconciliation later
    compares against the dispatched snapshot.
    """
    def _op():
        if isinstance(new_total_cents, bool) or not isinstance(new_total_cents, int) or new_total_cents < 0:
            raise ValidationError("new_total_cents must be a non-negative integer")

        order = _get_order_locked(order_id)
        if order.status in ORDER_FINAL:
            raise InvalidTransition(f"Order {order_id} is {order.status}; invoice is final", entity_id=order_id)

        _set_total_locked(
            order,
            new_total_cents,
            kind=AMOUNT_EDIT,
            load_id=order.load_id,
            reason=reason,
            actor_user_id=actor_user_id,
        )
        db.session.flush()
        return order

    return run_atomic(_op)


def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFound(f"Order {order_id} not found", entity_id=order_id)
    return order


def get_order_history(order_id: int):
    order = get_order(order_id)
    return get_history(ENTITY_ORDER, order.id)


def list_orders(*, business_id: int, status: str | None = None) -> list[Order]:
    query = db.session.query(Order).filter_by(business_id=business_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.id.asc()).all()
