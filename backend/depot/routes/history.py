# backend/depot/routes/history.py
"""
Transition history feed for orders, cheques, loads and payments.
"""
from flask import Blueprint, g, jsonify

from ..decorators import require_business
from ..services import history_service


history_bp = Blueprint("history", __name__, url_prefix="/api/history")


@history_bp.get("/<entity_type>/<int:entity_id>")
@require_business
def entity_history(entity_type: str, entity_id: int):
    """
    Immutable transition records for one entity, oldest first.

    Returns:
        200: {"entity_type", "entity_id", "history": [...]}
        400: Unknown entity type
        404: Entity belongs to another business
    """
    entity_type = entity_type.strip().lower()
    if entity_type not in history_service.ENTITY_TYPES:
        return jsonify({
            "error": f"Unknown entity type: {entity_type}",
            "code": "VALIDATION_ERROR",
        }), 400

    records = history_service.get_history(entity_type, entity_id)
    if any(r.business_id is not None and r.business_id != g.business_id for r in records):
        return jsonify({"error": f"{entity_type} {entity_id} not found", "code": "NOT_FOUND"}), 404

    return jsonify({
        "entity_type": entity_type,
        "entity_id": entity_id,
        "history": [r.to_dict() for r in records],
    }), 200
