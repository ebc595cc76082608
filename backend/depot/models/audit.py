from __future__ import annotations

from ..extensions import db
from depot.time_utils import to_utc_z


class HistoryRecord(db.Model):
    """
    Append-only transition history for orders, cheques and loads.

    - Written inside the same DB transaction as the transition it records.
    - Never updated or deleted.
    - idempotency_key (when set) is unique: a replayed transition cannot be
      recorded twice.
    """
    __tablename__ = "history_records"
    __table_args__ = (
        db.Index("ix_history_records_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=True, index=True)

    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    previous_state = db.Column(db.String(32), nullable=True)
    new_state = db.Column(db.String(32), nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.Text, nullable=True)
    # JSON-encoded details (amounts, diff, load id)
    payload = db.Column(db.Text, nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "actor_user_id": self.actor_user_id,
            "reason": self.reason,
            "payload": self.payload,
            "idempotency_key": self.idempotency_key,
            "occurred_at": to_utc_z(self.occurred_at),
        }
