from __future__ import annotations

from ..extensions import db
from depot.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to businesses via business_id.
    Quantities everywhere are integers in the product's base unit of measure.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit_of_measure = db.Column(db.String(16), nullable=False, default="unit")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "unit_of_measure": self.unit_of_measure,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockPosition(db.Model):
    """
    Good / damaged quantity of one product at one location.

    INVARIANTS:
    - good_quantity >= 0 and damaged_quantity >= 0 (also enforced by CHECK)
    - every change is paired with exactly one StockMovement row
    - version_id guards read-modify-write races on backends without row locks
    """
    __tablename__ = "stock_positions"
    __table_args__ = (
        db.UniqueConstraint("location_id", "product_id", name="uq_stock_positions_location_product"),
        db.CheckConstraint("good_quantity >= 0", name="ck_stock_positions_good_nonneg"),
        db.CheckConstraint("damaged_quantity >= 0", name="ck_stock_positions_damaged_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    good_quantity = db.Column(db.Integer, nullable=False, default=0)
    damaged_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    location = db.relationship("Location")
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "product_id": self.product_id,
            "good_quantity": self.good_quantity,
            "damaged_quantity": self.damaged_quantity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of stock mutations.

    movement_type: RECEIVE, CLAIM_RECEIVE, ADJUST, DAMAGE, TRANSFER_OUT, TRANSFER_IN
    good_after / damaged_after capture the position right after the change.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_location_product", "location_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    good_delta = db.Column(db.Integer, nullable=False, default=0)
    damaged_delta = db.Column(db.Integer, nullable=False, default=0)
    good_after = db.Column(db.Integer, nullable=False)
    damaged_after = db.Column(db.Integer, nullable=False)

    document_number = db.Column(db.String(64), nullable=True, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    damage_type = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "good_delta": self.good_delta,
            "damaged_delta": self.damaged_delta,
            "good_after": self.good_after,
            "damaged_after": self.damaged_after,
            "document_number": self.document_number,
            "purchase_id": self.purchase_id,
            "damage_type": self.damage_type,
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Purchase(db.Model):
    """
    Supplier purchase (bill).

    LIFECYCLE:
    1. ORDERED: Recorded, stock not yet posted
    2. RECEIVED: Stock posted to the receiving location (exactly once)

    Free bills (is_free_issue) are generated by the claim converter: zero cost,
    RECEIVED and PAID at creation.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("business_id", "document_number", name="uq_purchases_business_docnum"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    # PO-1001 or FB-2026-1001
    document_number = db.Column(db.String(64), nullable=False)
    invoice_no = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ORDERED", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID")
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    is_free_issue = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    received_by_user_id = db.Column(db.Integer, nullable=True)
    purchase_date = db.Column(db.Date, nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "supplier_id": self.supplier_id,
            "location_id": self.location_id,
            "document_number": self.document_number,
            "invoice_no": self.invoice_no,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "is_free_issue": self.is_free_issue,
            "note": self.note,
            "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class PurchaseLine(db.Model):
    __tablename__ = "purchase_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    purchase = db.relationship(
        "Purchase",
        backref=db.backref("lines", lazy=True, order_by="PurchaseLine.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "free_quantity": self.free_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }
