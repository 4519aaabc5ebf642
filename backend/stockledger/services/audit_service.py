# Overview: Service-layer operations for the audit trail; append-only, no domain logic.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import AuditLog
"""
Audit Trail Invariants (authoritative)

- Append-only log of create/update/delete actions.
- No domain/business logic in the audit trail itself.
- Entries are written inside the same DB transaction as the change they record
  (flush only; the calling service commits or rolls back).
- Sensitive values are masked before they are stored.
"""

SENSITIVE_FIELDS = {"password", "password_hash", "token", "token_hash", "secret", "api_key"}
MASK = "***MASKED***"
# Bookkeeping columns left out of change descriptions
UNTRACKED_FIELDS = {"updated_at"}


def _jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def mask_sensitive_fields(data: dict | None) -> dict | None:
    if data is None:
        return None
    return {k: (MASK if k in SENSITIVE_FIELDS else _jsonable(v)) for k, v in data.items()}


def append_audit_log(
    *,
    action: str,
    model_type: str | None = None,
    model_id: int | None = None,
    user_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    description: str | None = None,
) -> AuditLog:
    """
    Append-only audit entry.

    - No deletes/updates of existing entries.
    - created_at is system time (db default).
    - An "updated" entry without a description gets "Changed: <fields>".
    """
    if description is None and action == "updated" and old_values is not None and new_values is not None:
        description = describe_changes(old_values, new_values)

    entry = AuditLog(
        action=action,
        model_type=model_type,
        model_id=model_id,
        user_id=user_id,
        old_values=mask_sensitive_fields(old_values),
        new_values=mask_sensitive_fields(new_values),
        description=description,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def changed_fields(old_values: dict, new_values: dict) -> list[str]:
    return sorted(
        k for k, v in new_values.items()
        if k not in UNTRACKED_FIELDS and old_values.get(k) != v
    )


def describe_changes(old_values: dict, new_values: dict) -> str:
    fields = changed_fields(old_values, new_values)
    if not fields:
        return "No changes"
    return f"Changed: {', '.join(fields)}"


def list_audit_logs(
    *,
    model_type: str | None = None,
    model_id: int | None = None,
    action: str | None = None,
    limit: int = 200,
) -> list[AuditLog]:
    q = db.session.query(AuditLog)
    if model_type:
        q = q.filter(AuditLog.model_type == model_type)
    if model_id is not None:
        q = q.filter(AuditLog.model_id == model_id)
    if action:
        q = q.filter(AuditLog.action == action)
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
