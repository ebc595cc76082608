from __future__ import annotations

from ..extensions import db
from depot.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer (shop) of a business.

    outstanding_cents is the receivable: invoices add to it, payments
    subtract, reversed payments and returned cheques add back.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_business_shop", "business_id", "shop_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    shop_name = db.Column(db.String(255), nullable=False)
    route = db.Column(db.String(120), nullable=True)

    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} shop_name={self.shop_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "shop_name": self.shop_name,
            "route": self.route,
            "outstanding_cents": self.outstanding_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "contact_person": self.contact_person,
            "created_at": to_utc_z(self.created_at),
        }
