from __future__ import annotations

from ..extensions import db
from depot.time_utils import to_utc_z, to_iso_date


class Order(db.Model):
    """
    Customer order and its invoice header.

    LIFECYCLE: see depot.statuses (ORDER STATE MACHINE).

    AMOUNTS:
    - total_cents is the current invoice total (mutable through invoice edits
      and reconciliation).
    - dispatched_cents is NOT a column. It is derived from the append-only
      amount ledger (first DISPATCH entry), so it cannot be overwritten.
    - paid_cents is the sum of COMPLETED payments.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("business_id", "order_number", name="uq_orders_business_number"),
        db.UniqueConstraint("business_id", "invoice_no", name="uq_orders_business_invoice"),
        db.Index("ix_orders_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    invoice_no = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID")

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    # Current load (set while IN_TRANSIT, cleared on reschedule)
    load_id = db.Column(db.Integer, db.ForeignKey("load_sheets.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    order_date = db.Column(db.Date, nullable=False)
    billed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    load = db.relationship("LoadSheet", foreign_keys=[load_id])
    amount_entries = db.relationship(
        "OrderAmountEntry",
        backref="order",
        lazy=True,
        order_by="OrderAmountEntry.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def dispatched_cents(self) -> int | None:
        for entry in self.amount_entries:
            if entry.kind == "DISPATCH":
                return entry.amount_cents
        return None

    @property
    def due_cents(self) -> int:
        return max(0, self.total_cents - self.paid_cents)

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "invoice_no": self.invoice_no,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_cents": self.total_cents,
            "dispatched_cents": self.dispatched_cents,
            "paid_cents": self.paid_cents,
            "due_cents": self.due_cents,
            "load_id": self.load_id,
            "notes": self.notes,
            "order_date": to_iso_date(self.order_date),
            "billed_at": to_utc_z(self.billed_at) if self.billed_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderLine(db.Model):
    """
    Order line. A line with free_quantity > 0 is a free-issue claim against
    the supplier; claim_status moves UNCLAIMED -> APPROVED exactly once, when
    the claim is converted into a free bill (claim_purchase_id).
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_claim", "claim_status", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    claim_status = db.Column(db.String(16), nullable=False, default="UNCLAIMED")
    claim_purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLine.id"))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "free_quantity": self.free_quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "claim_status": self.claim_status,
            "claim_purchase_id": self.claim_purchase_id,
            "claimed_at": to_utc_z(self.claimed_at) if self.claimed_at else None,
        }


class OrderAmountEntry(db.Model):
    """
    Append-only ledger of an order's invoice total.

    kind:
    - OPENING: total at order creation
    - EDIT: invoice edited (before dispatch or while in transit)
    - DISPATCH: snapshot taken when the order first leaves on a load
    - RECONCILE: operator-asserted final amount
    """
    __tablename__ = "order_amount_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)
    previous_cents = db.Column(db.Integer, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    load_id = db.Column(db.Integer, db.ForeignKey("load_sheets.id"), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "kind": self.kind,
            "previous_cents": self.previous_cents,
            "amount_cents": self.amount_cents,
            "load_id": self.load_id,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class LoadSheet(db.Model):
    """
    Delivery load: one vehicle and crew, one date, an ordered list of orders.

    LIFECYCLE:
    1. OPEN (is_open=True): orders in transit, reconciliation may run
    2. CLOSED: immutable; only no-op reconciliation re-submissions accepted

    Vehicle, responsible person and helper are opaque references to
    external reference data.
    """
    __tablename__ = "load_sheets"
    __table_args__ = (
        db.UniqueConstraint("business_id", "load_number", name="uq_load_sheets_business_number"),
        db.Index("ix_load_sheets_business_open", "business_id", "is_open"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # LOAD-2026-1001
    load_number = db.Column(db.String(64), nullable=False)

    vehicle_ref = db.Column(db.String(64), nullable=False)
    responsible_person_id = db.Column(db.Integer, nullable=False)
    helper_ref = db.Column(db.String(120), nullable=True)
    load_date = db.Column(db.Date, nullable=False)

    is_open = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_ids(self) -> list[int]:
        return [line.order_id for line in self.lines]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "load_number": self.load_number,
            "vehicle_ref": self.vehicle_ref,
            "responsible_person_id": self.responsible_person_id,
            "helper_ref": self.helper_ref,
            "load_date": to_iso_date(self.load_date),
            "is_open": self.is_open,
            "created_by_user_id": self.created_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class LoadSheetLine(db.Model):
    __tablename__ = "load_sheet_lines"
    __table_args__ = (
        db.UniqueConstraint("load_id", "order_id", name="uq_load_sheet_lines_load_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    load_id = db.Column(db.Integer, db.ForeignKey("load_sheets.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Last status asserted by reconciliation for this order on this load
    resolved_status = db.Column(db.String(16), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    load = db.relationship(
        "LoadSheet",
        backref=db.backref("lines", lazy=True, order_by="LoadSheetLine.position"),
    )
    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "load_id": self.load_id,
            "order_id": self.order_id,
            "position": self.position,
            "resolved_status": self.resolved_status,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "notes": self.notes,
        }
