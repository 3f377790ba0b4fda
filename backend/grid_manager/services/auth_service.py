# Overview: User accounts, password hashing and credential checks.

"""
Authentication Service with Multi-Tenant Support

MULTI-TENANT: Users belong to exactly one organization (org_id).
Email uniqueness is tenant-scoped, so the same address may exist in two
organizations. Login may name the organization by slug to disambiguate.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special char
- Session tokens managed separately (see session_service.py)
- Authentication fails for inactive users and inactive organizations
"""

import re

import bcrypt

from ..extensions import db
from ..models import Branch, Organization, User
from ..models.auth import ALL_ROLES, ROLE_SELLER, USER_ACTIVE
from grid_manager.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserCreationError(ValueError):
    pass


def validate_password_strength(password: str) -> None:
    """
    Raises PasswordValidationError unless the password has at least 8
    characters including an uppercase letter, a lowercase letter, a digit
    and a special character.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    *,
    org_id: int,
    email: str,
    name: str,
    password: str,
    role: str = ROLE_SELLER,
    branch_id: int | None = None,
) -> User:
    """
    Create a user in an organization.

    Raises:
        UserCreationError: org missing/inactive, duplicate email, bad role,
            or branch outside the organization
        PasswordValidationError: weak password
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise UserCreationError("Organization not found")
    if not org.is_active:
        raise UserCreationError("Organization is not active")

    if role not in ALL_ROLES:
        raise UserCreationError(f"Invalid role: {role}")

    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise UserCreationError("A valid email is required")
    if not (name or "").strip():
        raise UserCreationError("Name is required")

    existing = db.session.query(User).filter_by(org_id=org_id, email=email).first()
    if existing:
        raise UserCreationError("Email already exists in this organization")

    if branch_id is not None:
        branch = db.session.query(Branch).filter_by(id=branch_id).first()
        if not branch or branch.org_id != org_id:
            raise UserCreationError("Branch does not belong to this organization")

    user = User(
        org_id=org_id,
        branch_id=branch_id,
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
        role=role,
        status=USER_ACTIVE,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str, org_slug: str | None = None) -> User | None:
    """
    Check credentials; returns the User or None.

    Without org_slug the email must identify exactly one active user;
    an address present in several organizations needs the slug.
    Updates last_login_at on success.
    """
    if not email or not password:
        return None

    query = (
        db.session.query(User)
        .join(Organization, Organization.id == User.org_id)
        .filter(
            User.email == email.strip().lower(),
            User.status == USER_ACTIVE,
            Organization.is_active.is_(True),
        )
    )
    if org_slug:
        query = query.filter(Organization.slug == org_slug.strip().lower())

    candidates = query.limit(2).all()
    if len(candidates) != 1:
        return None

    user = candidates[0]
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
