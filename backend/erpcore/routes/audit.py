# backend/erpcore/routes/audit.py
"""
Read-only access to the audit trail written after each committed action.
"""
from flask import Blueprint, request, jsonify

from ..services import audit_service
from ..extensions import db
from ..validation import coerce_int, optional_str


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
def list_audit_logs_route():
    """
    Newest entries first.

    Query params: entity_type, entity_id, limit (default 100, max 500).
    """
    args = request.args
    entries = audit_service.list_entries(
        db.session,
        entity_type=optional_str(args.get("entity_type"), "entity_type", max_length=64),
        entity_id=coerce_int(args.get("entity_id"), "entity_id", required=False),
        limit=coerce_int(args.get("limit"), "limit", required=False, default=100),
    )
    return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200
