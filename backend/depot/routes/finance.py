# backend/depot/routes/finance.py
"""
Account ledger and cheque registry API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ensure_business_scope, require_business
from ..errors import DepotError
from ..extensions import db
from ..services import account_service, cheque_service, payment_service
from ..validation import get_json_body, optional_bool, optional_int, optional_str, require_amount, require_int, require_str


finance_bp = Blueprint("finance", __name__, url_prefix="/api")


def _owned_account(account_id: int):
    return ensure_business_scope(account_service.get_account(account_id), "Account", account_id)


def _owned_cheque(cheque_id: int):
    return ensure_business_scope(cheque_service.get_cheque(cheque_id), "Cheque", cheque_id)


# =============================================================================
# ACCOUNTS
# =============================================================================

@finance_bp.route("/accounts", methods=["POST"])
@require_business
def create_account():
    """
    Request body:
    {
        "name": str,
        "account_type": "CASH" | "SAVINGS" | "CURRENT",
        "opening_balance_cents": int (optional),
        "allow_overdraft": bool (optional; CURRENT defaults to true),
        "bank_ref": str (optional)
    }
    """
    try:
        data = get_json_body()
        overdraft = data.get("allow_overdraft")
        account = account_service.create_account(
            business_id=g.business_id,
            name=require_str(data, "name", max_length=120),
            account_type=require_str(data, "account_type", max_length=16),
            opening_balance_cents=optional_int(data, "opening_balance_cents") or 0,
            allow_overdraft=None if overdraft is None else optional_bool(data, "allow_overdraft"),
            bank_ref=optional_str(data, "bank_ref", max_length=64),
            actor_user_id=g.actor_id,
        )
        return jsonify(account.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create account")
        return jsonify({"error": "Unexpected error"}), 500


@finance_bp.get("/accounts/<int:account_id>")
@require_business
def get_account(account_id: int):
    try:
        account = _owned_account(account_id)
        return jsonify({
            **account.to_dict(),
            "transactions": [t.to_dict() for t in account_service.list_transactions(account_id)],
        }), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@finance_bp.route("/accounts/transfer", methods=["POST"])
@require_business
def transfer_funds():
    """
    Request body:
    {
        "from_account_id": int,
        "to_account_id": int,
        "amount_cents": int,
        "occurred_at": ISO datetime (optional),
        "note": str (optional)
    }

    Returns:
        201: Transfer entry
        400: Same account / invalid amount
        422: Insufficient funds (balances untouched)
    """
    try:
        data = get_json_body()
        from_id = require_int(data, "from_account_id")
        to_id = require_int(data, "to_account_id")
        _owned_account(from_id)
        _owned_account(to_id)
        txn = account_service.transfer_funds(
            from_account_id=from_id,
            to_account_id=to_id,
            amount_cents=require_amount(data, "amount_cents"),
            occurred_at=data.get("occurred_at"),
            note=optional_str(data, "note"),
            actor_user_id=g.actor_id,
        )
        return jsonify(txn.to_dict()), 201

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to transfer funds")
        return jsonify({"error": "Unexpected error"}), 500


# =============================================================================
# CHEQUES
# =============================================================================

@finance_bp.get("/cheques")
@require_business
def list_cheques():
    try:
        cheques = cheque_service.list_cheques(
            business_id=g.business_id,
            status=request.args.get("status"),
        )
        return jsonify({"cheques": [c.to_dict() for c in cheques]}), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@finance_bp.get("/cheques/<int:cheque_id>")
@require_business
def get_cheque(cheque_id: int):
    try:
        return jsonify(_owned_cheque(cheque_id).to_dict()), 200
    except DepotError as e:
        return jsonify(e.to_dict()), e.status_code


@finance_bp.route("/cheques/<int:cheque_id>/deposit", methods=["POST"])
@require_business
def deposit_cheque(cheque_id: int):
    """
    Request body:
    {
        "account_id": int,
        "date": ISO date/datetime (optional)
    }
    """
    try:
        data = get_json_body()
        _owned_cheque(cheque_id)
        cheque = cheque_service.deposit_cheque(
            cheque_id,
            account_id=require_int(data, "account_id"),
            deposited_at=data.get("date"),
            actor_user_id=g.actor_id,
        )
        return jsonify(cheque.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deposit cheque %s", cheque_id)
        return jsonify({"error": "Unexpected error"}), 500


@finance_bp.route("/cheques/<int:cheque_id>/clear", methods=["POST"])
@require_business
def clear_cheque(cheque_id: int):
    try:
        data = get_json_body()
        _owned_cheque(cheque_id)
        cheque = cheque_service.clear_cheque(
            cheque_id,
            cleared_at=data.get("date"),
            actor_user_id=g.actor_id,
        )
        return jsonify(cheque.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to clear cheque %s", cheque_id)
        return jsonify({"error": "Unexpected error"}), 500


@finance_bp.route("/cheques/<int:cheque_id>/return", methods=["POST"])
@require_business
def return_cheque(cheque_id: int):
    """
    Request body:
    {
        "reason": str (optional),
        "date": ISO date/datetime (optional)
    }
    """
    try:
        data = get_json_body()
        _owned_cheque(cheque_id)
        cheque = cheque_service.return_cheque(
            cheque_id,
            reason=optional_str(data, "reason"),
            returned_at=data.get("date"),
            actor_user_id=g.actor_id,
        )
        return jsonify(cheque.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "code": "VALIDATION_ERROR"}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to return cheque %s", cheque_id)
        return jsonify({"error": "Unexpected error"}), 500


# =============================================================================
# PAYMENTS
# =============================================================================

@finance_bp.route("/payments/<int:payment_id>/reverse", methods=["POST"])
@require_business
def reverse_payment(payment_id: int):
    try:
        data = get_json_body()
        ensure_business_scope(payment_service.get_payment(payment_id), "Payment", payment_id)
        payment = payment_service.reverse_payment(
            payment_id=payment_id,
            reason=optional_str(data, "reason"),
            actor_user_id=g.actor_id,
        )
        return jsonify(payment.to_dict()), 200

    except DepotError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse payment %s", payment_id)
        return jsonify({"error": "Unexpected error"}), 500
