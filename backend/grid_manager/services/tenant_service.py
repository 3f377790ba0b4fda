"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

SECURITY INVARIANTS:
1. Every authenticated request has g.org_id set
2. Branch and entity ids from client input are validated against g.org_id
3. Cross-tenant ids are reported as "not found", never as "forbidden",
   so a caller cannot learn that the id exists in another tenant
4. Cross-tenant access attempts are logged as security events
"""

import re
import unicodedata
from dataclasses import dataclass

from flask import g, has_request_context, request
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Organization, User
from ..models.auth import ROLE_ADMIN, USER_ACTIVE
from .auth_service import hash_password
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


@dataclass(frozen=True)
class Actor:
    """
    Who is acting, and in which tenant scope.

    org_id and branch_id come from the session, not from the user row, so
    the scope fixed at login holds for the whole session.
    """
    user_id: int
    org_id: int
    role: str
    branch_id: int | None = None

    @classmethod
    def from_context(cls, context) -> "Actor":
        return cls(
            user_id=context.user.id,
            org_id=context.org_id,
            role=context.user.role,
            branch_id=context.branch_id,
        )

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, org_id=user.org_id, role=user.role, branch_id=user.branch_id)


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    Raises TenantAccessError if org_id is not set.
    """
    if not hasattr(g, "org_id") or g.org_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.org_id


def require_branch_in_org(branch_id: int, org_id: int) -> Branch:
    """
    Validate that a branch belongs to the specified organization.

    Raises TenantAccessError if the branch doesn't exist or belongs to a
    different org.
    """
    branch = db.session.query(Branch).filter_by(id=branch_id).first()

    if not branch:
        raise TenantAccessError("Branch not found")

    if branch.org_id != org_id:
        _log_cross_tenant_attempt(
            f"Branch {branch_id} belongs to org {branch.org_id}, not {org_id}",
            org_id=org_id,
        )
        raise TenantAccessError("Branch not found")

    return branch


def get_org_branches(org_id: int) -> list[Branch]:
    return db.session.query(Branch).filter_by(org_id=org_id).order_by(Branch.name).all()


def validate_org_active(org_id: int) -> Organization:
    org = db.session.query(Organization).filter_by(id=org_id).first()

    if not org:
        raise TenantAccessError("Organization not found")

    if not org.is_active:
        raise TenantAccessError("Organization is not active")

    return org


def scoped_query(model, org_id: int | None = None):
    """
    Base query for an org-owned model, filtered to the tenant.

    Usage:
        customers = scoped_query(Customer).filter_by(is_active=True).all()
    """
    if org_id is None:
        org_id = get_current_org_id()
    return db.session.query(model).filter(model.org_id == org_id)


def get_scoped_or_none(model, entity_id: int, org_id: int):
    """
    Load an org-owned row by id; returns None when absent or cross-tenant.

    Cross-tenant hits are logged.
    """
    entity = db.session.query(model).filter_by(id=entity_id).first()
    if entity is None:
        return None
    if entity.org_id != org_id:
        _log_cross_tenant_attempt(
            f"{model.__name__} {entity_id} belongs to org {entity.org_id}, not {org_id}",
            org_id=org_id,
        )
        return None
    return entity


def _log_cross_tenant_attempt(reason: str, org_id: int | None = None) -> None:
    user = getattr(g, "current_user", None)
    in_request = has_request_context()

    log_security_event(
        user_id=user.id if user is not None else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path if in_request else None,
        action=request.method if in_request else None,
        reason=reason,
        ip_address=request.remote_addr if in_request else None,
        user_agent=request.headers.get("User-Agent") if in_request else None,
        org_id=org_id,
    )


class OrganizationError(ValueError):
    pass


def create_organization(name: str, slug: str) -> Organization:
    """Create a tenant. slug is lowercased and must be globally unique."""
    name = (name or "").strip()
    slug = (slug or "").strip().lower()
    if not name:
        raise OrganizationError("Organization name is required")
    if not slug or not slug.replace("-", "").replace("_", "").isalnum():
        raise OrganizationError("Slug must be letters, digits, '-' or '_'")
    if db.session.query(Organization).filter_by(slug=slug).first():
        raise OrganizationError(f"Organization with slug '{slug}' already exists")

    org = Organization(name=name, slug=slug, is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


def create_branch(org_id: int, name: str, address: str | None = None) -> Branch:
    validate_org_active(org_id)
    name = (name or "").strip()
    if not name:
        raise OrganizationError("Branch name is required")
    if db.session.query(Branch).filter_by(org_id=org_id, name=name).first():
        raise OrganizationError(f"Branch '{name}' already exists in this organization")

    branch = Branch(org_id=org_id, name=name, address=address, is_active=True)
    db.session.add(branch)
    db.session.commit()
    return branch


DEFAULT_BRANCH_NAME = "Main Branch"


def slugify(name: str) -> str:
    """ASCII slug of an organization name; accents are folded ("Ferretería" -> "ferreteria")."""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")
    return slug[:48] or "org"


def _unique_slug(base: str) -> str:
    slug, suffix = base, 2
    while db.session.query(Organization.id).filter_by(slug=slug).first():
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


def register_tenant(*, tenant_name: str, name: str, email: str, password: str):
    """
    Self-service signup: a new organization, its main branch and an ADMIN.

    All three rows commit together. The slug comes from tenant_name with a
    numeric suffix when taken. The email only has to be unique inside the
    new organization, so it may already exist in another tenant.

    Returns (organization, branch, user). Raises OrganizationError for bad
    input and PasswordValidationError for a weak password.
    """
    tenant_name = (tenant_name or "").strip()
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if len(tenant_name) < 2:
        raise OrganizationError("Organization name must be at least 2 characters")
    if not name:
        raise OrganizationError("Name is required")
    if "@" not in email:
        raise OrganizationError("A valid email is required")

    password_hash = hash_password(password)

    try:
        org = Organization(name=tenant_name, slug=_unique_slug(slugify(tenant_name)), is_active=True)
        db.session.add(org)
        db.session.flush()

        branch = Branch(org_id=org.id, name=DEFAULT_BRANCH_NAME, is_active=True)
        user = User(
            org_id=org.id,
            email=email,
            name=name,
            password_hash=password_hash,
            role=ROLE_ADMIN,
            status=USER_ACTIVE,
        )
        db.session.add_all([branch, user])
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise OrganizationError("Organization could not be created, please retry")

    return org, branch, user
