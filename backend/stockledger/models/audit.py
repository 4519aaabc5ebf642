from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Audit trail of create/update/delete actions.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Written in the same DB transaction as the change it records, so a rolled
    back operation leaves no audit row behind.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_model", "model_type", "model_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    action = db.Column(db.String(32), nullable=False, index=True)  # created, updated, deleted
    model_type = db.Column(db.String(64), nullable=True)  # e.g. Purchase, Sale, StockMovement
    model_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "model_type": self.model_type,
            "model_id": self.model_id,
            "user_id": self.user_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
