# Overview: Append-only transition history for orders, cheques and loads.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..errors import InvalidTransition
from ..models import HistoryRecord
from ..time_utils import normalize_datetime
"""
History Invariants (authoritative)

- Every Order, Cheque and Load transition appends exactly one record.
- Records are written inside the same DB transaction as the transition.
- No updates or deletes of existing records.
- An idempotency key can be recorded at most once; a replay is rejected.
"""

ENTITY_ORDER = "order"
ENTITY_CHEQUE = "cheque"
ENTITY_LOAD = "load"
ENTITY_PAYMENT = "payment"

ENTITY_TYPES = frozenset({ENTITY_ORDER, ENTITY_CHEQUE, ENTITY_LOAD, ENTITY_PAYMENT})


def record_transition(
    *,
    entity_type: str,
    entity_id: int,
    previous_state: str | None,
    new_state: str,
    business_id: int | None = None,
    actor_user_id: int | None = None,
    reason: str | None = None,
    payload: dict | None = None,
    idempotency_key: str | None = None,
    occurred_at: Optional[datetime] = None,
) -> HistoryRecord:
    """
    Append a history record for a state transition.

    Does not commit. Raises InvalidTransition when idempotency_key was
    already recorded.
    """
    if idempotency_key:
        exists = (
            db.session.query(HistoryRecord.id)
            .filter_by(idempotency_key=idempotency_key)
            .first()
        )
        if exists:
            raise InvalidTransition(
                f"Transition {idempotency_key} already recorded",
                entity_id=entity_id,
            )

    record = HistoryRecord(
        business_id=business_id,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_state=previous_state,
        new_state=new_state,
        actor_user_id=actor_user_id,
        reason=reason,
        payload=json.dumps(payload, sort_keys=True) if payload else None,
        idempotency_key=idempotency_key,
        occurred_at=normalize_datetime(occurred_at),
    )
    db.session.add(record)
    db.session.flush()
    return record


def get_history(entity_type: str, entity_id: int) -> list[HistoryRecord]:
    """Oldest first."""
    return (
        db.session.query(HistoryRecord)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(HistoryRecord.id.asc())
        .all()
    )
