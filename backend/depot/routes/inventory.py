# backend/depot/routes/inventory.py
"""
Stock ledger, purchase and free-issue claim API routes.

Every stock call is all-or-nothing; a rejected batch reports the offending
line index in the error body.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ensure_business_scope, require_business
from ..errors import DepotError
from ..extensions import db
from ..services import account_service, business_service, claim_service, purchase_service, stock_service
from ..validation import (
    get_json_body,
    optional_bool,
    optional_int,
    optional_str,
    require_amount,
    require_int,
    require_list,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


def _owned_location(location_id: int):
    return ensure_business_scope(business_service.get_location(location_id), "Location", location_id)


def _movements_response(movements, status: int = 200):
    document_number = movements[0].document_number if movements else None
    return jsonify({
        "document_number": document_number,
        "movements": [m.to_dict() for m in movements],
    }), status


# =============================================================================
# STOCK
# =============================================================================

@inventory_bp.route("/stock/receive", methods=["POST"])
@require_business
def receive_stock():
    """
    Request body:
    {
        "location_id": int,
        "lines": [{"product_id": int, "quantity": int}],
        "reason": str (optional)
    }
    """
    try:
        data = get_json_body()
        location_id = require_int(data, "location_id")
        _owned_location(location_id)
        movements = stock_service.receive_purchase(
            business_id=g.business_id,
            location_id=location_id,
            lines=require_list(data, "lines"),
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
            occurred_at=data.get("occurred_at"),
        )
        return _movements_response(movements, 201)

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.route("/stock/damage", methods=["POST"])
@require_business
def report_damage():
    """
    Request body:
    {
        "location_id": int,
        "lines": [{"product_id": int, "quantity": int, "damage_type": str}],
        "reason": str (optional)
    }

    Returns:
        201: Damage recorded
        422: Insufficient good stock on some line (nothing applied)
    """
    try:
        data = get_json_body()
        location_id = require_int(data, "location_id")
        _owned_location(location_id)
        movements = stock_service.report_damage(
            business_id=g.business_id,
            location_id=location_id,
            lines=require_list(data, "lines"),
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
            occurred_at=data.get("occurred_at"),
        )
        return _movements_response(movements, 201)

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to report damage")
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.route("/stock/adjust", methods=["POST"])
@require_business
def adjust_stock():
    """
    Request body:
    {
        "location_id": int,
        "lines": [{"product_id": int, "new_quantity": int}],
        "reason": str (optional)
    }
    """
    try:
        data = get_json_body()
        location_id = require_int(data, "location_id")
        _owned_location(location_id)
        movements = stock_service.adjust_stock(
            business_id=g.business_id,
            location_id=location_id,
            lines=require_list(data, "lines"),
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
            occurred_at=data.get("occurred_at"),
        )
        return _movements_response(movements, 201)

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.route("/stock/transfer", methods=["POST"])
@require_business
def transfer_stock():
    """
    Request body:
    {
        "source_location_id": int,
        "dest_location_id": int,
        "lines": [{"product_id": int, "quantity": int}],
        "reason": str (optional)
    }
    """
    try:
        data = get_json_body()
        source_id = require_int(data, "source_location_id")
        dest_id = require_int(data, "dest_location_id")
        _owned_location(source_id)
        _owned_location(dest_id)
        movements = stock_service.transfer_stock(
            business_id=g.business_id,
            source_location_id=source_id,
            dest_location_id=dest_id,
            lines=require_list(data, "lines"),
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
            occurred_at=data.get("occurred_at"),
        )
        return _movements_response(movements, 201)

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.get("/stock/<int:location_id>/<int:product_id>")
@require_business
def get_position(location_id: int, product_id: int):
    try:
        _owned_location(location_id)
        return jsonify(stock_service.get_position(location_id, product_id)), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/stock/movements")
@require_business
def list_movements():
    try:
        location_id = request.args.get("location_id", type=int)
        if location_id is not None:
            _owned_location(location_id)
        movements = stock_service.list_movements(
            business_id=g.business_id,
            location_id=location_id,
            product_id=request.args.get("product_id", type=int),
            document_number=request.args.get("document_number"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# PURCHASES
# =============================================================================

@inventory_bp.route("/purchases", methods=["POST"])
@require_business
def create_purchase():
    """
    Request body:
    {
        "supplier_id": int,
        "location_id": int (optional; default warehouse),
        "lines": [{"product_id": int, "quantity": int, "unit_cost_cents": int, "free_quantity": int}],
        "invoice_no": str (optional),
        "purchase_date": "YYYY-MM-DD" (optional),
        "receive": bool (optional)
    }
    """
    try:
        data = get_json_body()
        purchase = purchase_service.create_purchase(
            business_id=g.business_id,
            supplier_id=require_int(data, "supplier_id"),
            location_id=optional_int(data, "location_id"),
            lines=require_list(data, "lines"),
            invoice_no=optional_str(data, "invoice_no", max_length=64),
            purchase_date=data.get("purchase_date"),
            receive=optional_bool(data, "receive"),
            note=optional_str(data, "note", max_length=2000),
            actor_user_id=g.actor_id,
        )
        return jsonify(purchase.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.route("/purchases/<int:purchase_id>/receive", methods=["POST"])
@require_business
def receive_purchase(purchase_id: int):
    try:
        ensure_business_scope(purchase_service.get_purchase(purchase_id), "Purchase", purchase_id)
        purchase = purchase_service.mark_received(purchase_id, actor_user_id=g.actor_id)
        return jsonify(purchase.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase %s", purchase_id)
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.get("/purchases/<int:purchase_id>")
@require_business
def get_purchase(purchase_id: int):
    try:
        purchase = ensure_business_scope(purchase_service.get_purchase(purchase_id), "Purchase", purchase_id)
        return jsonify(purchase.to_dict()), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.route("/purchases/<int:purchase_id>/payments", methods=["POST"])
@require_business
def pay_supplier(purchase_id: int):
    """
    Pay a supplier bill from a company account.

    Request body:
    {
        "account_id": int,
        "amount_cents": int,
        "method": "CASH" | "BANK_TRANSFER" (optional; default BANK_TRANSFER),
        "note": str (optional)
    }

    Returns:
        201: Supplier payment
        400: Amount above the outstanding balance
        422: Insufficient funds in the account
    """
    try:
        data = get_json_body()
        account_id = require_int(data, "account_id")
        ensure_business_scope(account_service.get_account(account_id), "Account", account_id)
        payment = purchase_service.pay_supplier(
            purchase_id,
            account_id=account_id,
            amount_cents=require_amount(data, "amount_cents"),
            method=optional_str(data, "method", max_length=16) or "BANK_TRANSFER",
            business_id=g.business_id,
            note=optional_str(data, "note"),
            paid_at=data.get("paid_at"),
            actor_user_id=g.actor_id,
        )
        return jsonify(payment.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to pay supplier for purchase %s", purchase_id)
        return jsonify({"error": "Unexpected error"}), 500


@inventory_bp.get("/purchases/<int:purchase_id>/payments")
@require_business
def list_supplier_payments(purchase_id: int):
    try:
        ensure_business_scope(purchase_service.get_purchase(purchase_id), "Purchase", purchase_id)
        payments = purchase_service.list_supplier_payments(purchase_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# FREE-ISSUE CLAIMS
# =============================================================================

@inventory_bp.get("/claims")
@require_business
def list_claimable():
    lines = claim_service.list_claimable(g.business_id)
    return jsonify({"claims": [line.to_dict() for line in lines]}), 200


@inventory_bp.route("/claims/convert", methods=["POST"])
@require_business
def convert_claims():
    """
    Convert free-issue claims into a received free bill.

    Request body:
    {
        "item_ids": [int, ...],
        "supplier_id": int,
        "note": str (optional),
        "location_id": int (optional; default warehouse)
    }

    Returns:
        201: Free bill purchase
        409: Some claims already converted (details.item_ids)
    """
    try:
        data = get_json_body()
        location_id = optional_int(data, "location_id")
        if location_id is not None:
            _owned_location(location_id)
        purchase = claim_service.convert_claims(
            item_ids=require_list(data, "item_ids"),
            supplier_id=require_int(data, "supplier_id"),
            business_id=g.business_id,
            note=optional_str(data, "note", max_length=2000),
            location_id=location_id,
            actor_user_id=g.actor_id,
        )
        return jsonify(purchase.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to convert claims")
        return jsonify({"error": "Unexpected error"}), 500
