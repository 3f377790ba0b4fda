# Overview: Append-only audit trail writer.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog
from grid_manager.time_utils import utcnow
from . import settings_service


ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_STATUS_CHANGE = "STATUS_CHANGE"


def record(
    *,
    org_id: int,
    user_id: int | None,
    action: str,
    resource: str,
    resource_id: int,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog | None:
    """
    Append an audit entry to the current transaction.

    - Flushes but never commits; the caller's commit makes it durable
      together with the change it describes.
    - Returns None when the organization has audit logging switched off.
    """
    if not settings_service.get_system_config(org_id).enable_audit_log:
        return None

    entry = AuditLog(
        org_id=org_id,
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        old_values=old_values,
        new_values=new_values,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
