# Overview: Request context decorators for API routes (tenant and actor headers).

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .errors import NotFound
from .models import Business


BUSINESS_HEADER = "X-Business-Id"
ACTOR_HEADER = "X-Actor-Id"


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_business(f):
    """
    Establish tenant and actor context from request headers.

    Authentication happens upstream; this layer only trusts the headers the
    gateway forwards.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.business_id: The business (tenant) every lookup is scoped to - REQUIRED
    - g.actor_id: The acting user id, recorded on history entries (may be None)

    Returns 400 for missing or malformed headers and 404 for unknown or
    inactive businesses.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            business_id = _header_int(BUSINESS_HEADER)
            actor_id = _header_int(ACTOR_HEADER)
        except ValueError as e:
            return jsonify({"error": f"{e} header must be an integer", "code": "VALIDATION_ERROR"}), 400

        if business_id is None:
            return jsonify({"error": f"{BUSINESS_HEADER} header is required", "code": "VALIDATION_ERROR"}), 400

        business = db.session.query(Business).filter_by(id=business_id).first()
        if not business or not business.is_active:
            return jsonify({"error": "Business not found", "code": "NOT_FOUND"}), 404

        g.business_id = business.id
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def ensure_business_scope(entity, label: str, entity_id):
    """Hide entities of other businesses behind NotFound."""
    owner = getattr(entity, "business_id", None)
    if owner is not None and owner != g.business_id:
        raise NotFound(f"{label} {entity_id} not found", entity_id=entity_id)
    return entity
