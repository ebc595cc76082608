# backend/depot/routes/orders.py
"""
Order lifecycle API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ensure_business_scope, require_business
from ..errors import DepotError
from ..extensions import db
from ..services import order_service, payment_service
from ..validation import (
    get_json_body,
    optional_bool,
    optional_str,
    require_amount,
    require_int,
    require_list,
    require_str,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    payload = order.to_dict()
    payload["lines"] = [line.to_dict() for line in order.lines]
    return payload


def _owned_order(order_id: int):
    return ensure_business_scope(order_service.get_order(order_id), "Order", order_id)


@orders_bp.route("", methods=["POST"])
@require_business
def create_order():
    """
    Create a PENDING order.

    Request body:
    {
        "customer_id": int,
        "lines": [{"product_id": int, "quantity": int, "unit_price_cents": int, "free_quantity": int}],
        "order_date": "YYYY-MM-DD" (optional),
        "notes": str (optional)
    }
    """
    try:
        data = get_json_body()
        order = order_service.create_order(
            business_id=g.business_id,
            customer_id=require_int(data, "customer_id"),
            lines=require_list(data, "lines"),
            order_date=data.get("order_date"),
            notes=optional_str(data, "notes", max_length=2000),
            actor_user_id=g.actor_id,
        )
        return jsonify(_order_payload(order)), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.get("")
@require_business
def list_orders():
    status = (request.args.get("status") or "").strip().upper() or None
    orders = order_service.list_orders(business_id=g.business_id, status=status)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
@require_business
def get_order(order_id: int):
    try:
        return jsonify(_order_payload(_owned_order(order_id))), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.route("/<int:order_id>/approve", methods=["POST"])
@require_business
def approve_order(order_id: int):
    """PENDING -> PROCESSING."""
    try:
        _owned_order(order_id)
        order = order_service.approve_order(order_id, actor_user_id=g.actor_id)
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/checking", methods=["POST"])
@require_business
def send_to_checking(order_id: int):
    """PROCESSING -> CHECKING."""
    try:
        _owned_order(order_id)
        order = order_service.send_to_checking(order_id, actor_user_id=g.actor_id)
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to send order %s to checking", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/pass-qc", methods=["POST"])
@require_business
def pass_qc(order_id: int):
    """
    CHECKING -> LOADING.

    Request body (optional):
    {
        "force": bool
    }
    """
    try:
        data = get_json_body()
        _owned_order(order_id)
        order = order_service.pass_qc(
            order_id,
            force=optional_bool(data, "force"),
            actor_user_id=g.actor_id,
        )
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to pass QC for order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/reject", methods=["POST"])
@require_business
def reject_order(order_id: int):
    try:
        data = get_json_body()
        _owned_order(order_id)
        order = order_service.reject_order(
            order_id,
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
        )
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/invoice", methods=["POST"])
@require_business
def issue_invoice(order_id: int):
    try:
        _owned_order(order_id)
        order = order_service.issue_invoice(order_id, actor_user_id=g.actor_id)
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to invoice order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/invoice", methods=["PATCH"])
@require_business
def edit_invoice(order_id: int):
    """
    Edit the invoice total.

    Request body:
    {
        "total_cents": int,
        "reason": str (optional)
    }
    """
    try:
        data = get_json_body()
        _owned_order(order_id)
        order = order_service.edit_invoice_amount(
            order_id,
            new_total_cents=require_int(data, "total_cents", minimum=0),
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
        )
        return jsonify(order.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to edit invoice of order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.route("/<int:order_id>/payments", methods=["POST"])
@require_business
def record_payment(order_id: int):
    """
    Record a customer payment.

    Request body:
    {
        "method": "CASH" | "CHEQUE" | "BANK_TRANSFER",
        "amount_cents": int,
        "cheque_number": str (CHEQUE only),
        "cheque_date": "YYYY-MM-DD" (CHEQUE only),
        "bank_ref": str (optional)
    }
    """
    try:
        data = get_json_body()
        _owned_order(order_id)
        payment = payment_service.record_payment(
            order_id=order_id,
            method=require_str(data, "method"),
            amount_cents=require_amount(data, "amount_cents"),
            cheque_number=optional_str(data, "cheque_number", max_length=64),
            cheque_date=data.get("cheque_date"),
            bank_ref=optional_str(data, "bank_ref", max_length=64),
            note=optional_str(data, "note"),
            actor_user_id=g.actor_id,
        )
        return jsonify(payment.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record payment for order %s", order_id)
        return jsonify({"error": "Unexpected error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_business
def order_history(order_id: int):
    try:
        order = _owned_order(order_id)
        history = order_service.get_order_history(order_id)
        return jsonify({
            "order": order.to_dict(),
            "history": [h.to_dict() for h in history],
            "amounts": [entry.to_dict() for entry in order.amount_entries],
        }), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code
