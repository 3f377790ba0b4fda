"""
Customers and Suppliers (counterparties) with running account balances.

Balances are never written from client input. They move only through:
- order transitions (order_service): confirmed sales / received purchases
- record_collection / record_supplier_payment in this module

Every balance change is an atomic SQL increment so concurrent writers
cannot lose updates.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Collection, Customer, Purchase, Sale, Supplier, SupplierPayment
from ..models.orders import CURRENCIES, STATUS_CONFIRMED, STATUS_RECEIVED
from ..models.parties import PAYMENT_METHODS
from ..money import format_cents
from ..pagination import PageParams, paginate
from ..validation import ConflictError, ValidationError, require_choice
from grid_manager.time_utils import to_utc_z
from . import audit_service, settings_service
from .tenant_service import Actor, get_scoped_or_none, scoped_query


_AUDITED_FIELDS = ("name", "email", "phone", "address", "tax_id", "is_active")


class PartyNotFoundError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def sortable_columns(model) -> dict:
    return {
        "name": model.name,
        "email": model.email,
        "created_at": model.created_at,
        "balance": model.current_balance_cents,
    }


def _label(model) -> str:
    return "Customer" if model is Customer else "Supplier"


def _get_party(model, org_id: int, party_id: int):
    party = get_scoped_or_none(model, party_id, org_id)
    if party is None:
        raise PartyNotFoundError(f"{_label(model)} not found", details={"id": party_id})
    return party


def _list_parties(model, org_id: int, params: PageParams, active: bool | None) -> dict:
    query = scoped_query(model, org_id)
    if active is not None:
        query = query.filter(model.is_active.is_(active))
    if params.search:
        pattern = f"%{params.search.lower()}%"
        query = query.filter(or_(
            func.lower(model.name).like(pattern),
            func.lower(model.email).like(pattern),
            func.lower(model.phone).like(pattern),
            func.lower(model.tax_id).like(pattern),
        ))
    return paginate(query, params, sortable=sortable_columns(model))


def _ensure_email_free(model, org_id: int, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    query = db.session.query(model.id).filter(model.org_id == org_id, func.lower(model.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f"{_label(model)} email already exists", details={"email": email})


def _normalize(patch: dict) -> dict:
    if patch.get("email"):
        email = patch["email"].lower()
        if "@" not in email:
            raise ValidationError("email must be a valid email address")
        patch["email"] = email
    elif "email" in patch:
        patch["email"] = None
    return patch


def _create_party(model, org_id: int, patch: dict, actor: Actor):
    patch = _normalize(dict(patch))
    _ensure_email_free(model, org_id, patch.get("email"))

    party = model(org_id=org_id, current_balance_cents=0)
    for key, value in patch.items():
        setattr(party, key, value)
    db.session.add(party)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_CREATE,
        resource=model.__tablename__[:-1],
        resource_id=party.id,
        new_values={name: getattr(party, name) for name in _AUDITED_FIELDS},
    )
    db.session.commit()
    return party


def _update_party(model, org_id: int, party_id: int, patch: dict, actor: Actor):
    party = _get_party(model, org_id, party_id)
    patch = _normalize(dict(patch))
    if patch.get("email") and patch["email"] != party.email:
        _ensure_email_free(model, org_id, patch["email"], exclude_id=party.id)

    before = {name: getattr(party, name) for name in _AUDITED_FIELDS}
    for key, value in patch.items():
        setattr(party, key, value)

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_UPDATE,
        resource=model.__tablename__[:-1],
        resource_id=party.id,
        old_values=before,
        new_values={name: getattr(party, name) for name in _AUDITED_FIELDS},
    )
    db.session.commit()
    return party


def _statement_entry(kind: str, obj, reference: str | None, debit: int, credit: int) -> dict:
    return {
        "type": kind,
        "id": obj.id,
        "date": to_utc_z(obj.created_at),
        "reference": reference,
        "debit_cents": debit,
        "credit_cents": credit,
        "debit": format_cents(debit),
        "credit": format_cents(credit),
        "_sort": (obj.created_at, obj.id),
    }


def _with_running_balance(entries: list[dict], current_balance: int) -> list[dict]:
    """
    Newest first; each entry's balance is the balance right after it.
    Walks backwards from the current balance.
    """
    entries.sort(key=lambda e: e["_sort"], reverse=True)
    balance = current_balance
    for entry in entries:
        del entry["_sort"]
        entry["balance_cents"] = balance
        entry["balance"] = format_cents(balance)
        balance = balance - entry["debit_cents"] + entry["credit_cents"]
    return entries


# Customers

def list_customers(org_id: int, params: PageParams, active: bool | None = None) -> dict:
    return _list_parties(Customer, org_id, params, active)


def get_customer(org_id: int, customer_id: int) -> Customer:
    return _get_party(Customer, org_id, customer_id)


def create_customer(*, org_id: int, patch: dict, actor: Actor) -> Customer:
    return _create_party(Customer, org_id, patch, actor)


def update_customer(*, org_id: int, customer_id: int, patch: dict, actor: Actor) -> Customer:
    return _update_party(Customer, org_id, customer_id, patch, actor)


def customer_account(org_id: int, customer_id: int) -> dict:
    """Confirmed sales are debits, collections are credits."""
    customer = get_customer(org_id, customer_id)

    sales = (
        db.session.query(Sale)
        .filter(Sale.org_id == org_id, Sale.customer_id == customer.id, Sale.status == STATUS_CONFIRMED)
        .all()
    )
    collections = (
        db.session.query(Collection)
        .filter(Collection.org_id == org_id, Collection.customer_id == customer.id)
        .all()
    )

    entries = [_statement_entry("SALE", s, s.number, s.total_cents, 0) for s in sales]
    entries += [
        _statement_entry("COLLECTION", c, c.payment_method, 0, c.amount_cents)
        for c in collections
    ]

    return {
        "customer": customer.to_dict(),
        "current_balance_cents": customer.current_balance_cents,
        "current_balance": format_cents(customer.current_balance_cents),
        "entries": _with_running_balance(entries, customer.current_balance_cents),
    }


def record_collection(
    *,
    org_id: int,
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    actor: Actor,
    sale_id: int | None = None,
    currency: str | None = None,
    notes: str | None = None,
) -> Collection:
    """
    Record money received from a customer and decrement their balance.

    A referenced sale must be a CONFIRMED sale of the same customer.
    """
    if amount_cents <= 0:
        raise ValidationError("amount must be greater than zero")
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)

    customer = get_customer(org_id, customer_id)

    sale = None
    if sale_id is not None:
        sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id, customer_id=customer.id).first()
        if sale is None:
            raise ValidationError("Sale not found for this customer", details={"sale_id": sale_id})
        if sale.status != STATUS_CONFIRMED:
            raise ValidationError("Collections can only reference CONFIRMED sales", details={"sale_id": sale_id})

    currency = currency or (sale.currency if sale else settings_service.get_system_config(org_id).default_currency)
    require_choice(currency, "currency", CURRENCIES)

    try:
        collection = Collection(
            org_id=org_id,
            customer_id=customer.id,
            sale_id=sale.id if sale else None,
            amount_cents=amount_cents,
            currency=currency,
            payment_method=payment_method,
            notes=notes,
            created_by_user_id=actor.user_id,
        )
        db.session.add(collection)
        db.session.query(Customer).filter(Customer.id == customer.id).update(
            {Customer.current_balance_cents: Customer.current_balance_cents - amount_cents},
            synchronize_session=False,
        )
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_CREATE,
            resource="collection",
            resource_id=collection.id,
            new_values={"customer_id": customer.id, "sale_id": collection.sale_id, "amount_cents": amount_cents},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Collection recorded customer_id=%s amount_cents=%s org_id=%s",
        customer_id, amount_cents, org_id,
    )
    return collection


# Suppliers

def list_suppliers(org_id: int, params: PageParams, active: bool | None = None) -> dict:
    return _list_parties(Supplier, org_id, params, active)


def get_supplier(org_id: int, supplier_id: int) -> Supplier:
    return _get_party(Supplier, org_id, supplier_id)


def create_supplier(*, org_id: int, patch: dict, actor: Actor) -> Supplier:
    return _create_party(Supplier, org_id, patch, actor)


def update_supplier(*, org_id: int, supplier_id: int, patch: dict, actor: Actor) -> Supplier:
    return _update_party(Supplier, org_id, supplier_id, patch, actor)


def supplier_account(org_id: int, supplier_id: int) -> dict:
    """Received purchases are debits, supplier payments are credits."""
    supplier = get_supplier(org_id, supplier_id)

    purchases = (
        db.session.query(Purchase)
        .filter(Purchase.org_id == org_id, Purchase.supplier_id == supplier.id, Purchase.status == STATUS_RECEIVED)
        .all()
    )
    payments = (
        db.session.query(SupplierPayment)
        .filter(SupplierPayment.org_id == org_id, SupplierPayment.supplier_id == supplier.id)
        .all()
    )

    entries = [_statement_entry("PURCHASE", p, p.number, p.total_cents, 0) for p in purchases]
    entries += [
        _statement_entry("PAYMENT", p, p.payment_method, 0, p.amount_cents)
        for p in payments
    ]

    return {
        "supplier": supplier.to_dict(),
        "current_balance_cents": supplier.current_balance_cents,
        "current_balance": format_cents(supplier.current_balance_cents),
        "entries": _with_running_balance(entries, supplier.current_balance_cents),
    }


def record_supplier_payment(
    *,
    org_id: int,
    supplier_id: int,
    amount_cents: int,
    payment_method: str,
    actor: Actor,
    purchase_id: int | None = None,
    currency: str | None = None,
    notes: str | None = None,
) -> SupplierPayment:
    """
    Record money paid to a supplier and decrement the supplier balance.

    A referenced purchase must be a RECEIVED purchase of the same supplier.
    """
    if amount_cents <= 0:
        raise ValidationError("amount must be greater than zero")
    require_choice(payment_method, "payment_method", PAYMENT_METHODS)

    supplier = get_supplier(org_id, supplier_id)

    purchase = None
    if purchase_id is not None:
        purchase = (
            db.session.query(Purchase)
            .filter_by(id=purchase_id, org_id=org_id, supplier_id=supplier.id)
            .first()
        )
        if purchase is None:
            raise ValidationError("Purchase not found for this supplier", details={"purchase_id": purchase_id})
        if purchase.status != STATUS_RECEIVED:
            raise ValidationError("Payments can only reference RECEIVED purchases", details={"purchase_id": purchase_id})

    currency = currency or (purchase.currency if purchase else settings_service.get_system_config(org_id).default_currency)
    require_choice(currency, "currency", CURRENCIES)

    try:
        payment = SupplierPayment(
            org_id=org_id,
            supplier_id=supplier.id,
            purchase_id=purchase.id if purchase else None,
            amount_cents=amount_cents,
            currency=currency,
            payment_method=payment_method,
            notes=notes,
            created_by_user_id=actor.user_id,
        )
        db.session.add(payment)
        db.session.query(Supplier).filter(Supplier.id == supplier.id).update(
            {Supplier.current_balance_cents: Supplier.current_balance_cents - amount_cents},
            synchronize_session=False,
        )
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_CREATE,
            resource="supplier_payment",
            resource_id=payment.id,
            new_values={"supplier_id": supplier.id, "purchase_id": payment.purchase_id, "amount_cents": amount_cents},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Supplier payment recorded supplier_id=%s amount_cents=%s org_id=%s",
        supplier_id, amount_cents, org_id,
    )
    return payment
