# Overview: Reference data setup (businesses, locations, customers, suppliers, products).

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import Business, Location, Customer, Supplier, Product
from .concurrency import run_atomic


def _require_business(business_id: int) -> Business:
    business = db.session.query(Business).filter_by(id=business_id).first()
    if not business:
        raise NotFound(f"Business {business_id} not found", entity_id=business_id)
    if not business.is_active:
        raise ValidationError(f"Business {business_id} is inactive", entity_id=business_id)
    return business


def _clean_name(value, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def create_business(*, name: str, code: str) -> Business:
    """Create a business unit together with its default warehouse."""
    def _op():
        clean_name = _clean_name(name, "name")
        clean_code = _clean_name(code, "code").upper()

        if db.session.query(Business).filter_by(code=clean_code).first():
            raise ValidationError(f"Business code {clean_code} already exists")

        business = Business(name=clean_name, code=clean_code, is_active=True)
        db.session.add(business)
        db.session.flush()

        _default_warehouse_locked(business.id)
        return business

    return run_atomic(_op)


def get_business_by_code(code: str) -> Business | None:
    return db.session.query(Business).filter_by(code=(code or "").strip().upper()).first()


def create_location(*, business_id: int | None, name: str) -> Location:
    """business_id None creates a global location shared by every business."""
    def _op():
        if business_id is not None:
            _require_business(business_id)
        clean_name = _clean_name(name, "name")

        existing = db.session.query(Location).filter_by(business_id=business_id, name=clean_name).first()
        if existing:
            raise ValidationError(f"Location {clean_name} already exists")

        location = Location(business_id=business_id, name=clean_name)
        db.session.add(location)
        db.session.flush()
        return location

    return run_atomic(_op)


def get_location(location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location:
        raise NotFound(f"Location {location_id} not found", entity_id=location_id)
    return location


def _default_warehouse_locked(business_id: int) -> Location:
    """
    Resolve the business's default receiving location, creating it if missing.

    Lookup order: business-owned location named DEFAULT_WAREHOUSE_NAME, then a
    global location of that name. Does not commit.
    """
    name = current_app.config.get("DEFAULT_WAREHOUSE_NAME", "Main Warehouse")

    location = db.session.query(Location).filter_by(business_id=business_id, name=name).first()
    if location:
        return location

    location = db.session.query(Location).filter(Location.business_id.is_(None), Location.name == name).first()
    if location:
        return location

    location = Location(business_id=business_id, name=name)
    db.session.add(location)
    db.session.flush()
    return location


def get_default_warehouse(business_id: int) -> Location:
    def _op():
        _require_business(business_id)
        return _default_warehouse_locked(business_id)

    return run_atomic(_op)


def create_customer(*, business_id: int, shop_name: str, route: str | None = None) -> Customer:
    def _op():
        _require_business(business_id)
        customer = Customer(
            business_id=business_id,
            shop_name=_clean_name(shop_name, "shop_name"),
            route=route,
            outstanding_cents=0,
        )
        db.session.add(customer)
        db.session.flush()
        return customer

    return run_atomic(_op)


def create_supplier(*, business_id: int, name: str, contact_person: str | None = None) -> Supplier:
    def _op():
        _require_business(business_id)
        supplier = Supplier(
            business_id=business_id,
            name=_clean_name(name, "name"),
            contact_person=contact_person,
        )
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_atomic(_op)


def create_product(*, business_id: int, sku: str, name: str, unit_of_measure: str = "unit") -> Product:
    def _op():
        _require_business(business_id)
        clean_sku = _clean_name(sku, "sku")

        if db.session.query(Product).filter_by(business_id=business_id, sku=clean_sku).first():
            raise ValidationError(f"SKU {clean_sku} already exists")

        product = Product(
            business_id=business_id,
            sku=clean_sku,
            name=_clean_name(name, "name"),
            unit_of_measure=unit_of_measure or "unit",
        )
        db.session.add(product)
        db.session.flush()
        return product

    return run_atomic(_op)
