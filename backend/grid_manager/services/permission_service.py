# Overview: Role checks and security event logging.

"""
Role-Based Access Checks and Security Event Logging

Roles are a fixed hierarchy: ADMIN > MANAGER > ANALYST > SELLER. A route
declares the minimum role it needs; higher roles always pass.

DESIGN PRINCIPLES:
- Fail closed: unknown roles rank below every real role
- Log denials only: successful checks are not logged
- Tenant isolation: security events carry org_id
"""

from ..extensions import db
from ..models import SecurityEvent
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_ANALYST, ROLE_SELLER
from grid_manager.time_utils import utcnow


ROLE_RANK = {
    ROLE_SELLER: 1,
    ROLE_ANALYST: 2,
    ROLE_MANAGER: 3,
    ROLE_ADMIN: 4,
}


class PermissionDeniedError(Exception):
    """Raised when a user's role is below what an operation requires."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    Commits immediately: a denial must be recorded even though the request
    that triggered it is about to fail.

    event_type examples:
    - ROLE_DENIED
    - LOGIN_FAILED
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def role_satisfies(role: str | None, minimum_role: str) -> bool:
    return ROLE_RANK.get(role or "", 0) >= ROLE_RANK[minimum_role]


def require_role(
    user,
    minimum_role: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Raise PermissionDeniedError unless user's role is at least minimum_role.

    Usage:
        require_role(g.current_user, ROLE_MANAGER, resource=request.path)
    """
    if role_satisfies(user.role, minimum_role):
        return

    log_security_event(
        user_id=user.id,
        event_type="ROLE_DENIED",
        success=False,
        resource=resource,
        action=minimum_role,
        reason=f"Role {user.role} is below required {minimum_role}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=user.org_id,
    )
    raise PermissionDeniedError(f"Requires role {minimum_role} or above")
