# Overview: Supplier purchases (bills) and their one-time posting to stock.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationError
from ..models import Location, Purchase, PurchaseLine, Product, Supplier, SupplierPayment
from ..statuses import (
    METHOD_CHEQUE,
    PAYMENT_UNPAID,
    PURCHASE_ORDERED,
    PURCHASE_RECEIVED,
    derive_payment_status,
    validate_payment_method,
)
from ..time_utils import normalize_datetime, parse_business_date, utcnow
from .account_service import TXN_WITHDRAWAL, _check_debit, _get_account_locked, _post_entry, _require_amount
from .business_service import _default_warehouse_locked
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number
from .stock_service import MOVEMENT_RECEIVE, _receive_locked


def _resolve_location(business_id: int, location_id: int | None) -> Location:
    """Explicit location (business-owned or global) or the business's default warehouse."""
    if location_id is None:
        return _default_warehouse_locked(business_id)
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or (location.business_id is not None and location.business_id != business_id):
        raise NotFound(f"Location {location_id} not found", entity_id=location_id)
    return location


def _validate_purchase_lines(business_id: int, lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list")

    cleaned = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("line must be an object", line=idx)
        values = {}
        for key in ("quantity", "free_quantity", "unit_cost_cents"):
            raw = line.get(key, 0)
            if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
                raise ValidationError(f"{key} must be a non-negative integer", line=idx)
            values[key] = raw
        if values["quantity"] + values["free_quantity"] <= 0:
            raise ValidationError("line has no quantity", line=idx)

        product_id = line.get("product_id")
        product = db.session.query(Product).filter_by(id=product_id, business_id=business_id).first()
        if not product:
            raise NotFound(f"Product {product_id} not found", line=idx, entity_id=product_id)
        values["product_id"] = product.id
        cleaned.append(values)
    return cleaned


def _mark_received_locked(purchase: Purchase, *, actor_user_id: int | None = None, occurred_at=None) -> Purchase:
    """ORDERED -> RECEIVED; posts quantity + free quantity of every line. Does not commit."""
    if purchase.status != PURCHASE_ORDERED:
        raise InvalidTransition(
            f"Purchase {purchase.document_number} is already {purchase.status}",
            entity_id=purchase.id,
        )

    location = db.session.query(Location).filter_by(id=purchase.location_id).first()
    stock_lines = [
        {"product_id": line.product_id, "quantity": line.quantity + line.free_quantity}
        for line in purchase.lines
        if line.quantity + line.free_quantity > 0
    ]
    _receive_locked(
        location,
        stock_lines,
        movement_type=MOVEMENT_RECEIVE,
        document_number=purchase.document_number,
        purchase_id=purchase.id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at,
    )

    purchase.status = PURCHASE_RECEIVED
    purchase.received_at = normalize_datetime(occurred_at)
    purchase.received_by_user_id = actor_user_id
    return purchase


def create_purchase(
    *,
    business_id: int,
    supplier_id: int,
    lines: list[dict],
    location_id: int | None = None,
    invoice_no: str | None = None,
    purchase_date=None,
    receive: bool = False,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> Purchase:
    """
    Record a supplier bill PO-<n>.

    lines: [{product_id, quantity, unit_cost_cents, free_quantity}]
    total = sum(quantity * unit_cost); free quantity is not charged.
    receive=True posts stock immediately.
    """
    def _op():
        supplier = db.session.query(Supplier).filter_by(id=supplier_id, business_id=business_id).first()
        if not supplier:
            raise NotFound(f"Supplier {supplier_id} not found", entity_id=supplier_id)

        location = _resolve_location(business_id, location_id)
        cleaned = _validate_purchase_lines(business_id, lines)
        try:
            day = parse_business_date(purchase_date) if purchase_date else utcnow().date()
        except ValueError:
            raise ValidationError("purchase_date must be an ISO date")

        purchase = Purchase(
            business_id=business_id,
            supplier_id=supplier.id,
            location_id=location.id,
            document_number=next_document_number(
                business_id=business_id,
                document_type="PURCHASE",
                base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
            ),
            invoice_no=invoice_no,
            status=PURCHASE_ORDERED,
            payment_status=PAYMENT_UNPAID,
            total_cents=0,
            paid_cents=0,
            is_free_issue=False,
            note=note,
            purchase_date=day,
            created_by_user_id=actor_user_id,
        )
        db.session.add(purchase)
        db.session.flush()

        total = 0
        for values in cleaned:
            line_total = values["quantity"] * values["unit_cost_cents"]
            total += line_total
            purchase.lines.append(PurchaseLine(
                product_id=values["product_id"],
                quantity=values["quantity"],
                free_quantity=values["free_quantity"],
                unit_cost_cents=values["unit_cost_cents"],
                line_total_cents=line_total,
            ))
        purchase.total_cents = total
        db.session.flush()

        if receive:
            _mark_received_locked(purchase, actor_user_id=actor_user_id)
        return purchase

    return run_atomic(_op)


def mark_received(purchase_id: int, *, actor_user_id: int | None = None, received_at=None) -> Purchase:
    def _op():
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if not purchase:
            raise NotFound(f"Purchase {purchase_id} not found", entity_id=purchase_id)
        return _mark_received_locked(purchase, actor_user_id=actor_user_id, occurred_at=received_at)

    return run_atomic(_op)


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.query(Purchase).filter_by(id=purchase_id).first()
    if not purchase:
        raise NotFound(f"Purchase {purchase_id} not found", entity_id=purchase_id)
    return purchase


def pay_supplier(
    purchase_id: int,
    *,
    account_id: int,
    amount_cents: int,
    method: str = "BANK_TRANSFER",
    business_id: int | None = None,
    note: str | None = None,
    paid_at=None,
    actor_user_id: int | None = None,
) -> SupplierPayment:
    """
    Pay a supplier bill out of a company account.

    Posts one WITHDRAWAL on the account (same overdraft rule as transfers)
    and raises the purchase's paid amount; payment_status follows
    derive_payment_status.

    Raises:
        ValidationError: bad amount or method, amount above what is still
            owed, account of another business
        NotFound: unknown purchase or account
        InsufficientFunds: the withdrawal would overdraw the account
    """
    def _op():
        amount = _require_amount(amount_cents)
        kind = validate_payment_method((method or "").strip().upper())
        if kind == METHOD_CHEQUE:
            raise ValidationError("Supplier payments are made by cash or bank transfer")

        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if not purchase or (business_id is not None and purchase.business_id != business_id):
            raise NotFound(f"Purchase {purchase_id} not found", entity_id=purchase_id)

        owed = purchase.total_cents - purchase.paid_cents
        if amount > owed:
            raise ValidationError(
                f"Purchase {purchase.document_number} has {max(owed, 0)} cents outstanding; cannot pay {amount}",
                entity_id=purchase.id,
                details={"outstanding_cents": max(owed, 0), "amount_cents": amount},
            )

        account = _get_account_locked(account_id)
        if account.business_id != purchase.business_id:
            raise ValidationError("Account belongs to a different business", entity_id=account_id)
        _check_debit(account, amount)

        when = normalize_datetime(paid_at)
        payment_number = next_document_number(
            business_id=purchase.business_id,
            document_type="SUPPLIER_PAYMENT",
            base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
        )
        txn = _post_entry(
            business_id=purchase.business_id,
            transaction_type=TXN_WITHDRAWAL,
            amount_cents=amount,
            from_account=account,
            occurred_at=when,
            note=f"supplier payment {payment_number} for {purchase.document_number}",
            actor_user_id=actor_user_id,
        )

        payment = SupplierPayment(
            business_id=purchase.business_id,
            purchase_id=purchase.id,
            supplier_id=purchase.supplier_id,
            account_id=account.id,
            account_transaction_id=txn.id,
            payment_number=payment_number,
            method=kind,
            amount_cents=amount,
            note=note,
            actor_user_id=actor_user_id,
            paid_at=when,
        )
        db.session.add(payment)

        purchase.paid_cents += amount
        purchase.payment_status = derive_payment_status(purchase.total_cents, purchase.paid_cents)
        db.session.flush()
        return payment

    return run_atomic(_op)


def list_supplier_payments(purchase_id: int) -> list[SupplierPayment]:
    get_purchase(purchase_id)
    return (
        db.session.query(SupplierPayment)
        .filter_by(purchase_id=purchase_id)
        .order_by(SupplierPayment.id.asc())
        .all()
    )
