# Overview: Stock ledger; good/damaged positions per (location, product) and their movement audit.

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Location, Product, StockMovement, StockPosition
from ..time_utils import normalize_datetime
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number
"""
Stock Ledger Invariants (authoritative)

- good_quantity >= 0 and damaged_quantity >= 0 after every call.
- Every position change writes exactly one StockMovement with the deltas and
  the resulting quantities.
- Multi-line calls validate every line first (reporting the line index), then
  lock positions in (location_id, product_id) order and apply all or nothing.
- reportDamage conserves stock: good_before - good_after == damaged_after - damaged_before.
"""

MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_CLAIM_RECEIVE = "CLAIM_RECEIVE"
MOVEMENT_ADJUST = "ADJUST"
MOVEMENT_DAMAGE = "DAMAGE"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"


def _get_location(location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location:
        raise NotFound(f"Location {location_id} not found", entity_id=location_id)
    if not location.is_active:
        raise ValidationError(f"Location {location.name} is inactive", entity_id=location_id)
    return location


def _validate_lines(location: Location, lines, *, quantity_key: str, allow_zero: bool = False,
                    extra_keys: tuple[str, ...] = (), business_id: int | None = None) -> list[dict]:
    """
    Normalize request lines; the first bad line is reported by index.

    Products must exist and belong to the location's business. At a global
    location they must belong to business_id when one is given.
    """
    owner_id = location.business_id if location.business_id is not None else business_id
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    cleaned = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("line must be an object", line=idx)

        qty = line.get(quantity_key)
        minimum = 0 if allow_zero else 1
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < minimum:
            word = "non-negative" if allow_zero else "positive"
            raise ValidationError(f"{quantity_key} must be a {word} integer", line=idx)

        product_id = line.get("product_id")
        product = db.session.query(Product).filter_by(id=product_id).first() if product_id is not None else None
        if product is None or (owner_id is not None and product.business_id != owner_id):
            raise NotFound(f"Product {product_id} not found", line=idx, entity_id=product_id)

        values = {"product_id": product.id, "quantity": qty}
        for key in extra_keys:
            values[key] = line.get(key)
        cleaned.append(values)
    return cleaned


def _positions_locked(pairs) -> dict[tuple[int, int], StockPosition]:
    """
    Lock (and create when missing) the positions for (location_id, product_id)
    pairs, in sorted order. Does not commit.
    """
    keys = sorted(set(pairs))
    if not keys:
        return {}

    query = (
        db.session.query(StockPosition)
        .filter(or_(*[
            and_(StockPosition.location_id == loc_id, StockPosition.product_id == prod_id)
            for loc_id, prod_id in keys
        ]))
        .order_by(StockPosition.location_id.asc(), StockPosition.product_id.asc())
    )
    positions = {(p.location_id, p.product_id): p for p in lock_for_update(query).all()}

    for loc_id, prod_id in keys:
        if (loc_id, prod_id) not in positions:
            position = StockPosition(location_id=loc_id, product_id=prod_id, good_quantity=0, damaged_quantity=0)
            db.session.add(position)
            positions[(loc_id, prod_id)] = position
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise StaleDataError("stock position created concurrently") from exc
    return positions


def _move(position: StockPosition, *, movement_type: str, good_delta: int = 0, damaged_delta: int = 0,
          document_number: str | None = None, purchase_id: int | None = None, damage_type: str | None = None,
          reason: str | None = None, actor_user_id: int | None = None, occurred_at=None) -> StockMovement:
    position.good_quantity += good_delta
    position.damaged_quantity += damaged_delta

    movement = StockMovement(
        location_id=position.location_id,
        product_id=position.product_id,
        movement_type=movement_type,
        good_delta=good_delta,
        damaged_delta=damaged_delta,
        good_after=position.good_quantity,
        damaged_after=position.damaged_quantity,
        document_number=document_number,
        purchase_id=purchase_id,
        damage_type=damage_type,
        reason=reason,
        actor_user_id=actor_user_id,
        occurred_at=normalize_datetime(occurred_at),
    )
    db.session.add(movement)
    return movement


def _document_number(location: Location, document_type: str, business_id: int | None = None) -> str:
    return next_document_number(
        business_id=location.business_id if location.business_id is not None else business_id,
        document_type=document_type,
        base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
    )


def _receive_locked(
    location: Location,
    lines: list[dict],
    *,
    movement_type: str = MOVEMENT_RECEIVE,
    document_number: str | None = None,
    purchase_id: int | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> list[StockMovement]:
    """Increase good quantity for already-validated lines. Does not commit."""
    positions = _positions_locked((location.id, line["product_id"]) for line in lines)
    movements = [
        _move(
            positions[(location.id, line["product_id"])],
            movement_type=movement_type,
            good_delta=line["quantity"],
            document_number=document_number,
            purchase_id=purchase_id,
            reason=reason,
            actor_user_id=actor_user_id,
            occurred_at=occurred_at,
        )
        for line in lines
    ]
    db.session.flush()
    return movements


def receive_purchase(
    *,
    location_id: int,
    business_id: int | None = None,
    lines: list[dict],
    document_number: str | None = None,
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> list[StockMovement]:
    """Increase good quantity: lines [{product_id, quantity}]."""
    def _op():
        location = _get_location(location_id)
        cleaned = _validate_lines(location, lines, quantity_key="quantity", business_id=business_id)
        return _receive_locked(
            location,
            cleaned,
            document_number=document_number,
            reason=reason,
            actor_user_id=actor_user_id,
            occurred_at=occurred_at,
        )

    return run_atomic(_op)


def report_damage(
    *,
    location_id: int,
    business_id: int | None = None,
    lines: list[dict],
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> list[StockMovement]:
    """
    Move good stock to damaged: lines [{product_id, quantity, damage_type}].

    Raises InsufficientStock (with the line index) when good quantity is
    short; no line is applied in that case.
    """
    def _op():
        location = _get_location(location_id)
        cleaned = _validate_lines(location, lines, quantity_key="quantity", extra_keys=("damage_type",),
                                 business_id=business_id)
        positions = _positions_locked((location.id, line["product_id"]) for line in cleaned)

        # Plan against running totals so repeated products in one batch are checked together
        projected = {key: pos.good_quantity for key, pos in positions.items()}
        for idx, line in enumerate(cleaned):
            key = (location.id, line["product_id"])
            if projected[key] < line["quantity"]:
                raise InsufficientStock(
                    f"Product {line['product_id']} has {projected[key]} good units; cannot damage {line['quantity']}",
                    line=idx,
                    entity_id=line["product_id"],
                    details={"available": projected[key], "requested": line["quantity"]},
                )
            projected[key] -= line["quantity"]

        doc = _document_number(location, "DAMAGE", business_id)
        movements = [
            _move(
                positions[(location.id, line["product_id"])],
                movement_type=MOVEMENT_DAMAGE,
                good_delta=-line["quantity"],
                damaged_delta=line["quantity"],
                document_number=doc,
                damage_type=line.get("damage_type"),
                reason=reason,
                actor_user_id=actor_user_id,
                occurred_at=occurred_at,
            )
            for line in cleaned
        ]
        db.session.flush()
        return movements

    return run_atomic(_op)


def adjust_stock(
    *,
    location_id: int,
    business_id: int | None = None,
    lines: list[dict],
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> list[StockMovement]:
    """
    Set good quantity absolutely (physical count): lines [{product_id, new_quantity}].

    The delta is recorded on the movement; a line matching the current
    quantity still writes a zero-delta movement as count evidence.
    """
    def _op():
        location = _get_location(location_id)
        cleaned = _validate_lines(location, lines, quantity_key="new_quantity", allow_zero=True,
                                 business_id=business_id)
        seen = set()
        for idx, line in enumerate(cleaned):
            if line["product_id"] in seen:
                raise ValidationError(f"Product {line['product_id']} is counted twice", line=idx)
            seen.add(line["product_id"])

        positions = _positions_locked((location.id, line["product_id"]) for line in cleaned)
        doc = _document_number(location, "ADJUSTMENT", business_id)
        movements = []
        for line in cleaned:
            position = positions[(location.id, line["product_id"])]
            movements.append(_move(
                position,
                movement_type=MOVEMENT_ADJUST,
                good_delta=line["quantity"] - position.good_quantity,
                document_number=doc,
                reason=reason,
                actor_user_id=actor_user_id,
                occurred_at=occurred_at,
            ))
        db.session.flush()
        return movements

    return run_atomic(_op)


def transfer_stock(
    *,
    business_id: int | None = None,
    source_location_id: int,
    dest_location_id: int,
    lines: list[dict],
    reason: str | None = None,
    actor_user_id: int | None = None,
    occurred_at=None,
) -> list[StockMovement]:
    """
    Move good stock between locations: lines [{product_id, quantity}].

    Writes a TRANSFER_OUT and a TRANSFER_IN movement per line under one
    document number.
    """
    def _op():
        if source_location_id == dest_location_id:
            raise ValidationError("Cannot transfer stock to the same location")
        source = _get_location(source_location_id)
        dest = _get_location(dest_location_id)
        cleaned = _validate_lines(source, lines, quantity_key="quantity", business_id=business_id)
        for idx, line in enumerate(cleaned):
            product = db.session.get(Product, line["product_id"])
            if dest.business_id is not None and product.business_id != dest.business_id:
                raise ValidationError(
                    f"Product {product.id} does not belong to the destination business",
                    line=idx,
                    entity_id=product.id,
                )

        pairs = [(source.id, line["product_id"]) for line in cleaned]
        pairs += [(dest.id, line["product_id"]) for line in cleaned]
        positions = _positions_locked(pairs)

        projected = {key: positions[key].good_quantity for key in pairs[:len(cleaned)]}
        for idx, line in enumerate(cleaned):
            key = (source.id, line["product_id"])
            if projected[key] < line["quantity"]:
                raise InsufficientStock(
                    f"Product {line['product_id']} has {projected[key]} good units; cannot transfer {line['quantity']}",
                    line=idx,
                    entity_id=line["product_id"],
                    details={"available": projected[key], "requested": line["quantity"]},
                )
            projected[key] -= line["quantity"]

        doc = _document_number(source, "TRANSFER", business_id)
        movements = []
        for line in cleaned:
            common = dict(document_number=doc, reason=reason, actor_user_id=actor_user_id, occurred_at=occurred_at)
            movements.append(_move(
                positions[(source.id, line["product_id"])],
                movement_type=MOVEMENT_TRANSFER_OUT,
                good_delta=-line["quantity"],
                **common,
            ))
            movements.append(_move(
                positions[(dest.id, line["product_id"])],
                movement_type=MOVEMENT_TRANSFER_IN,
                good_delta=line["quantity"],
                **common,
            ))
        db.session.flush()
        return movements

    return run_atomic(_op)


def get_position(location_id: int, product_id: int) -> dict:
    """Current good/damaged quantities; zero when the product was never stocked here."""
    position = db.session.query(StockPosition).filter_by(location_id=location_id, product_id=product_id).first()
    if position is None:
        return {
            "location_id": location_id,
            "product_id": product_id,
            "good_quantity": 0,
            "damaged_quantity": 0,
        }
    return position.to_dict()


def list_movements(*, business_id: int | None = None, location_id: int | None = None, product_id: int | None = None,
                   document_number: str | None = None, limit: int = 200) -> list[StockMovement]:
    """
    Movement audit, oldest first.

    With business_id, only movements of that business's locations and of its
    products at global locations are returned.
    """
    query = db.session.query(StockMovement)
    if business_id is not None:
        query = (
            query.join(Location, Location.id == StockMovement.location_id)
            .join(Product, Product.id == StockMovement.product_id)
            .filter(or_(
                Location.business_id == business_id,
                and_(Location.business_id.is_(None), Product.business_id == business_id),
            ))
        )
    if location_id is not None:
        query = query.filter(StockMovement.location_id == location_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if document_number:
        query = query.filter(StockMovement.document_number == document_number)
    limit = max(1, min(int(limit or 200), 1000))
    return query.order_by(StockMovement.id.asc()).limit(limit).all()
