# backend/depot/routes/loads.py
"""
Load sheet and reconciliation API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ensure_business_scope, require_business
from ..errors import DepotError
from ..extensions import db
from ..services import load_service, reconciliation_service
from ..validation import get_json_body, optional_bool, optional_str, require_int, require_list, require_str


loads_bp = Blueprint("loads", __name__, url_prefix="/api/loads")


@loads_bp.route("", methods=["POST"])
@require_business
def create_load():
    """
    Create a load sheet from LOADING orders (all-or-nothing).

    Request body:
    {
        "order_ids": [int, ...],
        "vehicle_ref": str,
        "responsible_person_id": int,
        "helper_ref": str (optional),
        "load_date": "YYYY-MM-DD"
    }

    Returns:
        201: Load created, every order IN_TRANSIT
        400: Malformed batch (error carries "line")
        404: Unknown order
        409: Order already loaded or not in LOADING
    """
    try:
        data = get_json_body()
        load = load_service.create_load(
            business_id=g.business_id,
            order_ids=require_list(data, "order_ids"),
            vehicle_ref=require_str(data, "vehicle_ref", max_length=64),
            responsible_person_id=require_int(data, "responsible_person_id"),
            helper_ref=optional_str(data, "helper_ref", max_length=120),
            load_date=require_str(data, "load_date", max_length=32),
            actor_user_id=g.actor_id,
        )
        return jsonify(load.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create load")
        return jsonify({"error": "Unexpected error"}), 500


@loads_bp.get("")
@require_business
def list_loads():
    open_only = (request.args.get("open") or "").strip().lower() in ("1", "true", "yes")
    loads = load_service.list_loads(business_id=g.business_id, open_only=open_only)
    return jsonify({"loads": [load.to_dict() for load in loads]}), 200


@loads_bp.get("/<int:load_id>")
@require_business
def get_load(load_id: int):
    try:
        load = ensure_business_scope(load_service.get_load(load_id), "Load", load_id)
        return jsonify(load.to_dict()), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@loads_bp.route("/<int:load_id>/reconcile", methods=["POST"])
@require_business
def reconcile_load(load_id: int):
    """
    Finalize reconciliation of a load. Safe to re-submit.

    Request body:
    {
        "updates": [
            {
                "order_id": int,
                "status": "DELIVERED" | "PARTIAL" | "RETURNED" | "LOADING",
                "payment_status": "UNPAID" | "PARTIAL" | "PAID" (optional),
                "final_amount_cents": int (optional),
                "notes": str (optional)
            }
        ],
        "close_load": bool
    }

    Returns:
        200: {"load", "applied", "skipped", "closed"}
        409: Load closed and the submission would change something
    """
    try:
        data = get_json_body()
        ensure_business_scope(load_service.get_load(load_id), "Load", load_id)
        result = reconciliation_service.finalize_reconciliation(
            load_id,
            updates=data.get("updates") or [],
            close_load=optional_bool(data, "close_load"),
            actor_user_id=g.actor_id,
        )
        result["load"] = result["load"].to_dict()
        return jsonify(result), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile load %s", load_id)
        return jsonify({"error": "Unexpected error"}), 500
