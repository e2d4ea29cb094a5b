import json
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Query, Session

from app.rukem.models import AuditEvent, User

AUDIT_PAGE_LIMIT = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append one audit event to the session. The caller's commit persists it
    together with the change it describes; a rollback drops both.

    Usable from scripts and service tests as well as from requests: request
    id and client IP are only filled in when a request is active.
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        client_ip=request.remote_addr if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        # dates and amounts in metadata are stored as their string form
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def query_events(
    s: Session,
    *,
    action: str = "",
    actor_email: str = "",
    entity_type: str = "",
    date_from: date | None = None,
    date_to: date | None = None,
) -> Query:
    """Newest first; `date_to` is inclusive."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())


def entity_history(s: Session, entity_type: str, entity_id: int | str) -> list[AuditEvent]:
    """All events about one record, oldest first (record detail pages)."""
    return (
        s.query(AuditEvent)
        .filter(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
        .all()
    )
