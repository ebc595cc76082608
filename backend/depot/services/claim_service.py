# backend/depot/services/claim_service.py
"""
Free-issue claim converter.

WHY: Free quantities handed to customers are claimed back from the supplier.
Converting a batch of claims produces one zero-cost free bill (FB-<year>-<n>)
that restocks the warehouse, and marks every claim APPROVED.

IDEMPOTENCY: claim rows are locked and checked inside the transaction that
approves them, so converting the same ids twice fails with AlreadyClaimed
instead of crediting stock twice.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import AlreadyClaimed, NotFound, ValidationError
from ..models import Order, OrderLine, Purchase, PurchaseLine, Supplier
from ..statuses import (
    CLAIM_APPROVED,
    CLAIM_UNCLAIMED,
    ORDER_CANCELLED,
    PAYMENT_PAID,
    PURCHASE_RECEIVED,
)
from ..time_utils import normalize_datetime, utcnow
from .concurrency import lock_many, run_atomic
from .document_service import next_document_number
from .purchase_service import _resolve_location
from .stock_service import MOVEMENT_CLAIM_RECEIVE, _receive_locked


def convert_claims(
    *,
    item_ids: list[int],
    supplier_id: int,
    business_id: int | None = None,
    note: str | None = None,
    location_id: int | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> Purchase:
    """
    Convert free-issue claims (order line ids) into a received free bill.

    Raises:
        ValidationError: empty/malformed ids, line without free quantity,
            claims from several businesses
        NotFound: unknown line or supplier (lines of another business count
            as unknown when business_id is given)
        AlreadyClaimed: any id already APPROVED (details list every such id)
    """
    def _op():
        if not isinstance(item_ids, list) or not item_ids:
            raise ValidationError("item_ids must be a non-empty list")
        for idx, item_id in enumerate(item_ids):
            if isinstance(item_id, bool) or not isinstance(item_id, int):
                raise ValidationError("item id must be an integer", line=idx, entity_id=item_id)

        claims = {line.id: line for line in lock_many(OrderLine, item_ids)}

        orders = {}
        for idx, item_id in enumerate(item_ids):
            if item_id not in claims:
                raise NotFound(f"Order line {item_id} not found", line=idx, entity_id=item_id)
            order = db.session.get(Order, claims[item_id].order_id)
            if business_id is not None and order.business_id != business_id:
                raise NotFound(f"Order line {item_id} not found", line=idx, entity_id=item_id)
            orders[item_id] = order

        already = sorted(line.id for line in claims.values() if line.claim_status == CLAIM_APPROVED)
        if already:
            raise AlreadyClaimed(
                f"Claims already converted: {', '.join(str(i) for i in already)}",
                entity_id=already[0],
                details={"item_ids": already},
            )

        business_ids = set()
        for idx, item_id in enumerate(item_ids):
            line = claims[item_id]
            if line.free_quantity <= 0:
                raise ValidationError(f"Order line {item_id} has no free quantity", line=idx, entity_id=item_id)
            order = orders[item_id]
            if order.status == ORDER_CANCELLED:
                raise ValidationError(f"Order line {item_id} belongs to a cancelled order", line=idx, entity_id=item_id)
            business_ids.add(order.business_id)
        if len(business_ids) != 1:
            raise ValidationError("Claims must belong to a single business")
        owner_id = business_ids.pop()

        supplier = db.session.query(Supplier).filter_by(id=supplier_id, business_id=owner_id).first()
        if not supplier:
            raise NotFound(f"Supplier {supplier_id} not found", entity_id=supplier_id)

        location = _resolve_location(owner_id, location_id)

        # Group by product, first-seen order
        grouped: dict[int, int] = {}
        for line in sorted(claims.values(), key=lambda ln: ln.id):
            grouped[line.product_id] = grouped.get(line.product_id, 0) + line.free_quantity

        when = normalize_datetime(occurred_at)
        purchase = Purchase(
            business_id=owner_id,
            supplier_id=supplier.id,
            location_id=location.id,
            document_number=next_document_number(
                business_id=owner_id,
                document_type="FREE_BILL",
                base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
                year=when.year,
            ),
            status=PURCHASE_RECEIVED,
            payment_status=PAYMENT_PAID,
            total_cents=0,
            paid_cents=0,
            is_free_issue=True,
            note=note,
            purchase_date=when.date(),
            received_at=when,
            created_by_user_id=actor_user_id,
            received_by_user_id=actor_user_id,
        )
        db.session.add(purchase)
        db.session.flush()

        for product_id, quantity in grouped.items():
            purchase.lines.append(PurchaseLine(
                product_id=product_id,
                quantity=quantity,
                free_quantity=0,
                unit_cost_cents=0,
                line_total_cents=0,
            ))

        _receive_locked(
            location,
            [{"product_id": pid, "quantity": qty} for pid, qty in grouped.items()],
            movement_type=MOVEMENT_CLAIM_RECEIVE,
            document_number=purchase.document_number,
            purchase_id=purchase.id,
            reason=note,
            actor_user_id=actor_user_id,
            occurred_at=when,
        )

        claimed_at = utcnow()
        for line in claims.values():
            line.claim_status = CLAIM_APPROVED
            line.claim_purchase_id = purchase.id
            line.claimed_at = claimed_at

        db.session.flush()
        return purchase

    return run_atomic(_op)


def list_claimable(business_id: int) -> list[OrderLine]:
    """Unclaimed free-issue lines of the business's live orders, oldest first."""
    return (
        db.session.query(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            Order.business_id == business_id,
            Order.status != ORDER_CANCELLED,
            OrderLine.free_quantity > 0,
            OrderLine.claim_status == CLAIM_UNCLAIMED,
        )
        .order_by(OrderLine.id.asc())
        .all()
    )
