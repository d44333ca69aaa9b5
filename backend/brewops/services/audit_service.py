# Overview: Best-effort activity log writer and reader.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog


def record_activity(
    *,
    actor_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    metadata: dict | None = None,
) -> ActivityLog | None:
    """
    Append one activity row after the primary mutation has committed.

    Failures are logged and swallowed: the mutation being recorded is
    already durable and must not be undone by its audit trail.
    """
    entry = ActivityLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata or {},
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to record activity %s for %s %s", action, entity_type, entity_id, exc_info=True
        )
        return None
    return entry


def list_activity(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor_id: int | None = None,
    limit: int = 200,
) -> list[ActivityLog]:
    query = db.session.query(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if actor_id is not None:
        query = query.filter(ActivityLog.actor_id == actor_id)
    return query.limit(limit).all()
