from __future__ import annotations

from ..extensions import db
from grid_manager.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only audit trail for business mutations.

    - Written inside the same DB transaction as the change it records.
    - old_values/new_values hold only the fields that changed.
    - Never updated or deleted.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_resource", "org_id", "resource", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(32), nullable=False)  # CREATE, UPDATE, STATUS_CHANGE, ...
    resource = db.Column(db.String(32), nullable=False)  # SALE, PURCHASE, PRODUCT, ...
    resource_id = db.Column(db.Integer, nullable=False)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "occurred_at": to_utc_z(self.occurred_at),
        }
