from __future__ import annotations

from ..extensions import db
from brewops.time_utils import to_utc_z, utcnow

ENTITY_TYPES = ("shop", "order", "user")


class ActivityLog(db.Model):
    """
    Append-only record of mutating actions.

    IMMUTABLE: Never update or delete. Rows are written after the primary
    mutation commits, so a missing row never means a missing mutation.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_entity_created", "entity_type", "entity_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(16), nullable=False)
    # No FK: deleted orders keep their audit trail
    entity_id = db.Column(db.Integer, nullable=False, index=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
        }
