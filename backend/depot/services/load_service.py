# backend/depot/services/load_service.py
"""
Load aggregator: batches LOADING orders onto one delivery run.

WHY: A load sheet is the delivery manifest for one vehicle, crew and date.
A half-loaded manifest is operationally meaningless, so creation is
all-or-nothing: every order is validated before any is mutated, and the
first offending order is reported with its position in the request.

LIFECYCLE:
1. OPEN: created here; every order IN_TRANSIT with its dispatched snapshot
2. CLOSED: by reconciliation; immutable afterwards
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import AlreadyLoaded, InvalidTransition, NotFound, ValidationError
from ..models import LoadSheet, LoadSheetLine, Order
from ..statuses import ORDER_LOADING
from ..time_utils import parse_business_date, utcnow
from .concurrency import lock_many, run_atomic
from .document_service import next_document_number
from .history_service import ENTITY_LOAD, record_transition
from .order_service import _assign_to_load_locked


LOAD_OPEN = "OPEN"
LOAD_CLOSED = "CLOSED"


def _validate_order_ids(order_ids) -> list[int]:
    if not isinstance(order_ids, list) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")

    seen = set()
    for idx, order_id in enumerate(order_ids):
        if isinstance(order_id, bool) or not isinstance(order_id, int):
            raise ValidationError("order id must be an integer", line=idx, entity_id=order_id)
        if order_id in seen:
            raise ValidationError(f"Order {order_id} is listed twice", line=idx, entity_id=order_id)
        seen.add(order_id)
    return list(order_ids)


def create_load(
    *,
    business_id: int,
    order_ids: list[int],
    vehicle_ref: str,
    responsible_person_id: int,
    load_date,
    helper_ref: str | None = None,
    actor_user_id: int | None = None,
) -> LoadSheet:
    """
    Create an OPEN load sheet and move every order to IN_TRANSIT.

    Raises (nothing is written in any of these cases):
        ValidationError: empty/duplicate ids, missing vehicle or crew, bad date
        NotFound: unknown order (or another business's order)
        AlreadyLoaded: order attached to an open load
        InvalidTransition: order not in LOADING status
    """
    def _op():
        ids = _validate_order_ids(order_ids)

        if not isinstance(vehicle_ref, str) or not vehicle_ref.strip():
            raise ValidationError("vehicle_ref is required")
        if isinstance(responsible_person_id, bool) or not isinstance(responsible_person_id, int):
            raise ValidationError("responsible_person_id must be an integer")
        try:
            day = parse_business_date(load_date)
        except ValueError:
            raise ValidationError("load_date must be an ISO date")

        # Lock in id order, validate in submitted order
        by_id = {order.id: order for order in lock_many(Order, ids)}

        open_loads = {}
        for idx, order_id in enumerate(ids):
            order = by_id.get(order_id)
            if order is None or order.business_id != business_id:
                raise NotFound(f"Order {order_id} not found", line=idx, entity_id=order_id)

            if order.load_id is not None:
                if order.load_id not in open_loads:
                    attached = db.session.query(LoadSheet).filter_by(id=order.load_id).first()
                    open_loads[order.load_id] = attached if attached is not None and attached.is_open else None
                attached = open_loads[order.load_id]
                if attached is not None:
                    raise AlreadyLoaded(
                        f"Order {order_id} is already on open load {attached.load_number}",
                        line=idx,
                        entity_id=order_id,
                    )

            if order.status != ORDER_LOADING:
                raise InvalidTransition(
                    f"Order {order_id} is {order.status}, not LOADING",
                    line=idx,
                    entity_id=order_id,
                )

        load = LoadSheet(
            business_id=business_id,
            load_number=next_document_number(
                business_id=business_id,
                document_type="LOAD",
                base=current_app.config.get("LOAD_NUMBER_BASE", 1000),
                year=day.year,
            ),
            vehicle_ref=vehicle_ref.strip(),
            responsible_person_id=responsible_person_id,
            helper_ref=helper_ref,
            load_date=day,
            is_open=True,
            created_by_user_id=actor_user_id,
        )
        db.session.add(load)
        db.session.flush()

        for position, order_id in enumerate(ids):
            db.session.add(LoadSheetLine(load_id=load.id, order_id=order_id, position=position))
            _assign_to_load_locked(by_id[order_id], load, actor_user_id=actor_user_id)

        record_transition(
            entity_type=ENTITY_LOAD,
            entity_id=load.id,
            previous_state=None,
            new_state=LOAD_OPEN,
            business_id=business_id,
            actor_user_id=actor_user_id,
            reason="created",
            payload={"order_ids": ids, "vehicle_ref": load.vehicle_ref},
        )
        db.session.flush()
        return load

    return run_atomic(_op)


def get_load(load_id: int) -> LoadSheet:
    load = db.session.query(LoadSheet).filter_by(id=load_id).first()
    if not load:
        raise NotFound(f"Load {load_id} not found", entity_id=load_id)
    return load


def list_loads(*, business_id: int | None = None, open_only: bool = False) -> list[LoadSheet]:
    query = db.session.query(LoadSheet)
    if business_id is not None:
        query = query.filter(LoadSheet.business_id == business_id)
    if open_only:
        query = query.filter(LoadSheet.is_open.is_(True))
    return query.order_by(LoadSheet.id.asc()).all()


def list_open_loads(business_id: int | None = None) -> list[LoadSheet]:
    return list_loads(business_id=business_id, open_only=True)


def close_load_locked(load: LoadSheet, *, actor_user_id: int | None = None, reason: str | None = None) -> LoadSheet:
    """OPEN -> CLOSED. Does not commit."""
    if not load.is_open:
        raise InvalidTransition(f"Load {load.load_number} is already closed", entity_id=load.id)
    load.is_open = False
    load.closed_at = utcnow()
    load.closed_by_user_id = actor_user_id
    record_transition(
        entity_type=ENTITY_LOAD,
        entity_id=load.id,
        previous_state=LOAD_OPEN,
        new_state=LOAD_CLOSED,
        business_id=load.business_id,
        actor_user_id=actor_user_id,
        reason=reason or "reconciled",
    )
    return load
