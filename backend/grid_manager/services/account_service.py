"""
Cash and bank accounts the business holds money in.

An account's balance changes only by recording a movement: the movement row,
the atomic balance increment and its audit entry commit together.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Account, AccountMovement
from ..models.accounts import ACCOUNT_TYPES
from ..models.orders import CURRENCIES
from ..pagination import PageParams, paginate
from ..validation import ConflictError, ValidationError, require_choice
from . import audit_service, settings_service
from .concurrency import begin_write, lock_for_update
from .tenant_service import Actor, get_scoped_or_none, scoped_query


SORTABLE = {
    "name": Account.name,
    "type": Account.type,
    "balance": Account.current_balance_cents,
    "created_at": Account.created_at,
}

MOVEMENT_SORTABLE = {
    "created_at": AccountMovement.created_at,
    "amount": AccountMovement.amount_cents,
}

_AUDITED_FIELDS = ("name", "type", "account_number", "currency", "is_active")


class AccountNotFoundError(Exception):
    def __init__(self, message: str = "Account not found", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _snapshot(account: Account) -> dict:
    return {name: getattr(account, name) for name in _AUDITED_FIELDS}


def get_account(org_id: int, account_id: int) -> Account:
    account = get_scoped_or_none(Account, account_id, org_id)
    if account is None:
        raise AccountNotFoundError(details={"id": account_id})
    return account


def list_accounts(
    org_id: int,
    params: PageParams,
    *,
    account_type: str | None = None,
    currency: str | None = None,
    active: bool | None = None,
) -> dict:
    query = scoped_query(Account, org_id)
    if account_type:
        query = query.filter(Account.type == require_choice(account_type, "type", ACCOUNT_TYPES))
    if currency:
        query = query.filter(Account.currency == require_choice(currency, "currency", CURRENCIES))
    if active is not None:
        query = query.filter(Account.is_active.is_(active))
    if params.search:
        pattern = f"%{params.search.lower()}%"
        query = query.filter(or_(
            func.lower(Account.name).like(pattern),
            func.lower(Account.account_number).like(pattern),
        ))
    return paginate(query, params, sortable=SORTABLE)


def _check_patch(patch: dict) -> None:
    if "name" in patch and len(patch["name"]) < 2:
        raise ValidationError("name must be at least 2 characters")
    if "type" in patch:
        require_choice(patch["type"], "type", ACCOUNT_TYPES)
    if "currency" in patch:
        require_choice(patch["currency"], "currency", CURRENCIES)


def _ensure_name_free(org_id: int, name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Account.id).filter(
        Account.org_id == org_id, func.lower(Account.name) == name.lower()
    )
    if exclude_id is not None:
        query = query.filter(Account.id != exclude_id)
    if query.first():
        raise ConflictError("Account name already exists", details={"name": name})


def create_account(*, org_id: int, patch: dict, actor: Actor) -> Account:
    """New accounts start at a zero balance in the org's default currency unless one is given."""
    patch = dict(patch)
    patch.setdefault("currency", settings_service.get_system_config(org_id).default_currency)
    _check_patch(patch)
    _ensure_name_free(org_id, patch["name"])

    account = Account(org_id=org_id, current_balance_cents=0, is_active=True)
    for key, value in patch.items():
        setattr(account, key, value)
    db.session.add(account)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_CREATE,
        resource="account",
        resource_id=account.id,
        new_values=_snapshot(account),
    )
    db.session.commit()
    return account


def update_account(*, org_id: int, account_id: int, patch: dict, actor: Actor) -> Account:
    account = get_account(org_id, account_id)
    _check_patch(patch)
    if "name" in patch and patch["name"].lower() != account.name.lower():
        _ensure_name_free(org_id, patch["name"], exclude_id=account.id)
    if "currency" in patch and patch["currency"] != account.currency and account.movements:
        raise ConflictError(
            "Cannot change the currency of an account with movements",
            details={"account_id": account.id},
        )

    before = _snapshot(account)
    for key, value in patch.items():
        setattr(account, key, value)

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_UPDATE,
        resource="account",
        resource_id=account.id,
        old_values=before,
        new_values=_snapshot(account),
    )
    db.session.commit()
    return account


def list_movements(org_id: int, account_id: int, params: PageParams, start=None, end=None) -> dict:
    """Movements of one account, newest first by default, optionally within [start, end]."""
    account = get_account(org_id, account_id)
    query = db.session.query(AccountMovement).filter(
        AccountMovement.org_id == org_id,
        AccountMovement.account_id == account.id,
    )
    if start is not None:
        query = query.filter(AccountMovement.created_at >= start)
    if end is not None:
        query = query.filter(AccountMovement.created_at <= end)
    return paginate(query, params, sortable=MOVEMENT_SORTABLE)


def record_movement(
    *,
    org_id: int,
    account_id: int,
    amount_cents: int,
    description: str | None,
    actor: Actor,
    reference: str | None = None,
) -> tuple[Account, AccountMovement]:
    """
    Record a signed movement and move the balance by the same amount.

    Inactive accounts accept no movements. Balances may go negative
    (an overdrawn bank account is a real state).
    """
    if amount_cents == 0:
        raise ValidationError("amount must not be zero")
    if not description:
        raise ValidationError("description is required")

    begin_write()
    try:
        account = get_account(org_id, account_id)
        account = lock_for_update(db.session.query(Account).filter_by(id=account.id)).one()
        if not account.is_active:
            raise ValidationError("Account is not active", details={"account_id": account.id})

        previous_balance = account.current_balance_cents
        movement = AccountMovement(
            org_id=org_id,
            account_id=account.id,
            amount_cents=amount_cents,
            description=description,
            reference=reference,
            created_by_user_id=actor.user_id,
        )
        db.session.add(movement)
        db.session.query(Account).filter(Account.id == account.id).update(
            {Account.current_balance_cents: Account.current_balance_cents + amount_cents},
            synchronize_session=False,
        )
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_CREATE,
            resource="account_movement",
            resource_id=movement.id,
            old_values={"account_id": account.id, "balance_cents": previous_balance},
            new_values={
                "account_id": account.id,
                "amount_cents": amount_cents,
                "balance_cents": previous_balance + amount_cents,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(account)
    current_app.logger.info(
        "Account movement recorded account_id=%s amount_cents=%s org_id=%s",
        account_id, amount_cents, org_id,
    )
    return account, movement
