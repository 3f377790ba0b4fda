# Overview: Organization user management: listing, profile updates and password changes.

"""
User Management Service

Everything here is scoped to the acting user's organization. Rules on top
of the MANAGER+ route guard:
- only an ADMIN may modify an ADMIN or grant the ADMIN role
- nobody may deactivate themselves or change their own role
- deactivating a user or moving them to another branch revokes their
  sessions, because sessions capture the branch at login
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import User
from ..models.auth import ALL_ROLES, ALL_USER_STATUSES, ROLE_ADMIN, ROLE_MANAGER, USER_ACTIVE
from ..pagination import PageParams, paginate
from ..validation import ConflictError, ValidationError, require_choice
from . import audit_service, session_service
from .auth_service import create_user, hash_password, verify_password
from .permission_service import PermissionDeniedError, role_satisfies
from .tenant_service import Actor, TenantAccessError, get_scoped_or_none, require_branch_in_org, scoped_query


SORTABLE = {
    "name": User.name,
    "email": User.email,
    "role": User.role,
    "created_at": User.created_at,
    "last_login_at": User.last_login_at,
}

_AUDITED_FIELDS = ("name", "email", "role", "status", "branch_id")


class UserNotFoundError(Exception):
    def __init__(self, message: str = "User not found", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _snapshot(user: User) -> dict:
    return {name: getattr(user, name) for name in _AUDITED_FIELDS}


def get_user(org_id: int, user_id: int) -> User:
    user = get_scoped_or_none(User, user_id, org_id)
    if user is None:
        raise UserNotFoundError(details={"id": user_id})
    return user


def list_users(
    org_id: int,
    params: PageParams,
    *,
    role: str | None = None,
    status: str | None = None,
    branch_id: int | None = None,
) -> dict:
    query = scoped_query(User, org_id)
    if role:
        query = query.filter(User.role == require_choice(role, "role", ALL_ROLES))
    if status:
        query = query.filter(User.status == require_choice(status, "status", ALL_USER_STATUSES))
    if branch_id is not None:
        query = query.filter(User.branch_id == branch_id)
    if params.search:
        pattern = f"%{params.search.lower()}%"
        query = query.filter(or_(
            func.lower(User.name).like(pattern),
            func.lower(User.email).like(pattern),
        ))
    return paginate(query, params, sortable=SORTABLE)


def _guard_admin(actor: Actor, target: User, new_role: str | None = None) -> None:
    if actor.role == ROLE_ADMIN:
        return
    if target.role == ROLE_ADMIN:
        raise PermissionDeniedError("Only an ADMIN can modify an ADMIN user")
    if new_role == ROLE_ADMIN:
        raise PermissionDeniedError("Only an ADMIN can grant the ADMIN role")


def create_org_user(
    *,
    org_id: int,
    email: str,
    name: str,
    password: str,
    role: str,
    actor: Actor,
    branch_id: int | None = None,
) -> User:
    """create_user plus the ADMIN guard and an audit entry."""
    if actor.role != ROLE_ADMIN and role == ROLE_ADMIN:
        raise PermissionDeniedError("Only an ADMIN can grant the ADMIN role")

    user = create_user(
        org_id=org_id, email=email, name=name, password=password, role=role, branch_id=branch_id
    )
    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_CREATE,
        resource="user",
        resource_id=user.id,
        new_values=_snapshot(user),
    )
    db.session.commit()
    return user


def update_user(*, org_id: int, user_id: int, patch: dict, actor: Actor) -> User:
    """
    Apply a partial update of name, email, role, status and branch_id.

    Raises UserNotFoundError, PermissionDeniedError, ValidationError or
    ConflictError (email taken in this organization).
    """
    user = get_user(org_id, user_id)
    _guard_admin(actor, user, patch.get("role"))

    if "role" in patch:
        require_choice(patch["role"], "role", ALL_ROLES)
    if "status" in patch:
        require_choice(patch["status"], "status", ALL_USER_STATUSES)

    if user.id == actor.user_id:
        if patch.get("status", USER_ACTIVE) != USER_ACTIVE:
            raise ValidationError("You cannot deactivate your own account")
        if "role" in patch and patch["role"] != user.role:
            raise ValidationError("You cannot change your own role")

    if "email" in patch:
        email = (patch["email"] or "").strip().lower()
        if "@" not in email:
            raise ValidationError("email must be a valid email address")
        taken = (
            db.session.query(User.id)
            .filter(User.org_id == org_id, User.email == email, User.id != user.id)
            .first()
        )
        if taken:
            raise ConflictError("Email already exists in this organization", details={"email": email})
        patch["email"] = email

    if patch.get("branch_id") is not None:
        try:
            require_branch_in_org(patch["branch_id"], org_id)
        except TenantAccessError as e:
            raise ValidationError(str(e), details={"branch_id": patch["branch_id"]})

    before = _snapshot(user)
    for key, value in patch.items():
        setattr(user, key, value)
    after = _snapshot(user)

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_UPDATE,
        resource="user",
        resource_id=user.id,
        old_values=before,
        new_values=after,
    )
    db.session.commit()

    if after["status"] != USER_ACTIVE and before["status"] == USER_ACTIVE:
        revoked = session_service.revoke_all_user_sessions(user.id, reason="User deactivated")
        current_app.logger.info("User %s deactivated; revoked %s sessions", user.id, revoked)
    elif after["branch_id"] != before["branch_id"]:
        session_service.revoke_all_user_sessions(user.id, reason="Branch changed")

    return user


def change_password(
    *,
    org_id: int,
    user_id: int,
    new_password: str,
    actor: Actor,
    current_password: str | None = None,
) -> User:
    """
    Change a user's password.

    Users changing their own password must confirm the current one. Changing
    someone else's needs MANAGER or above (ADMIN for an ADMIN target) and
    signs that user out everywhere.

    Raises PasswordValidationError for a weak new password.
    """
    user = get_user(org_id, user_id)
    own = user.id == actor.user_id

    if own:
        if not verify_password(current_password or "", user.password_hash):
            raise ValidationError("Current password is incorrect")
    else:
        if not role_satisfies(actor.role, ROLE_MANAGER):
            raise PermissionDeniedError("Cannot change another user's password")
        _guard_admin(actor, user)

    user.password_hash = hash_password(new_password)
    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_UPDATE,
        resource="user",
        resource_id=user.id,
        new_values={"password_changed": True},
    )
    db.session.commit()

    if not own:
        session_service.revoke_all_user_sessions(user.id, reason="Password changed by another user")
    current_app.logger.info("Password changed for user %s by user %s", user.id, actor.user_id)
    return user
