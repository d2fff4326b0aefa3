# Overview: Best-effort audit trail written after the business transaction commits.

from __future__ import annotations

from flask import current_app, has_request_context, request

from ..extensions import db
from ..models import AuditLog


def log_action(
    *,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    user_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog | None:
    """
    Record one audit entry in its own short transaction.

    Call only after the business unit of work has committed. A failure here
    is logged and rolled back; it never propagates, so an audit outage can
    not undo or fail a committed action.
    """
    if not current_app.config.get("AUDIT_LOG_ENABLED", True):
        return None

    ip_address = request.remote_addr if has_request_context() else None
    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to write audit log for %s %s #%s", action, entity_type, entity_id)
        return None


def list_entries(session, *, entity_type: str | None = None, entity_id: int | None = None, limit: int = 100) -> list[AuditLog]:
    query = session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.id.desc()).limit(max(1, min(limit, 500))).all()
