# Overview: Sales and purchases: creation, queries and the status transition handler.

"""
Order Service: Sales and Purchases

Orders are created as DRAFT with totals fixed at creation, and from then on
only their status changes. A status change goes through the transition
handler, which owns every side effect an order has on the rest of the
system:

- Sale -> CONFIRMED: stock OUT per line, customer balance += total
- Sale CONFIRMED -> CANCELLED: stock IN per line, customer balance -= total
- Purchase -> RECEIVED: stock IN per line, supplier balance += total

CONCURRENCY: The handler takes the database write lock (BEGIN IMMEDIATE on
SQLite, SELECT ... FOR UPDATE elsewhere) before reading the order, then
decides on the status it read under that lock. Two concurrent confirms of
the same sale serialize at the database and the second one sees CONFIRMED
and is rejected. Transitions are never retried.

Transitions not listed in SALE_TRANSITIONS / PURCHASE_TRANSITIONS are
rejected with InvalidTransitionError and change nothing.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import (
    Customer,
    Product,
    Purchase,
    PurchaseItem,
    Sale,
    SaleItem,
    Supplier,
)
from ..models.auth import ROLE_SELLER
from ..models.catalog import MOVEMENT_IN, MOVEMENT_OUT
from ..models.orders import (
    CURRENCIES,
    PURCHASE_STATUSES,
    SALE_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_RECEIVED,
)
from ..money import MoneyError, compute_line, to_cents
from ..pagination import PageParams, paginate
from ..validation import ValidationError, require_choice, require_int
from . import audit_service, settings_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import DOC_TYPE_PURCHASE, DOC_TYPE_SALE, next_document_number
from .product_service import ProductNotFoundError, apply_stock_change
from .tenant_service import Actor, TenantAccessError, require_branch_in_org


SALE_TRANSITIONS = {
    STATUS_DRAFT: frozenset({STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED}),
    STATUS_PENDING: frozenset({STATUS_DRAFT, STATUS_CONFIRMED, STATUS_CANCELLED}),
    STATUS_CONFIRMED: frozenset({STATUS_CANCELLED}),
    STATUS_CANCELLED: frozenset(),
}

PURCHASE_TRANSITIONS = {
    STATUS_DRAFT: frozenset({STATUS_PENDING, STATUS_RECEIVED, STATUS_CANCELLED}),
    STATUS_PENDING: frozenset({STATUS_DRAFT, STATUS_RECEIVED, STATUS_CANCELLED}),
    STATUS_RECEIVED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}

SALE_SORTABLE = {
    "created_at": Sale.created_at,
    "number": Sale.number,
    "total": Sale.total_cents,
    "status": Sale.status,
}

PURCHASE_SORTABLE = {
    "created_at": Purchase.created_at,
    "number": Purchase.number,
    "total": Purchase.total_cents,
    "status": Purchase.status,
}


class OrderError(Exception):
    """Base class for order errors; details are echoed to the client."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFoundError(OrderError):
    pass


class InvalidTransitionError(OrderError):
    pass


class InsufficientStockError(InvalidTransitionError):
    pass


# ---------------------------------------------------------------------------
# Scoping
# ---------------------------------------------------------------------------

def _scoped_sales(actor: Actor):
    """Sales visible to actor: own org, own branch if pinned, own sales if SELLER."""
    query = db.session.query(Sale).filter(Sale.org_id == actor.org_id)
    if actor.branch_id is not None:
        query = query.filter(Sale.branch_id == actor.branch_id)
    if actor.role == ROLE_SELLER:
        query = query.filter(Sale.seller_id == actor.user_id)
    return query


def _scoped_purchases(actor: Actor):
    query = db.session.query(Purchase).filter(Purchase.org_id == actor.org_id)
    if actor.branch_id is not None:
        query = query.filter(Purchase.branch_id == actor.branch_id)
    return query


def _resolve_branch(actor: Actor, branch_id) -> int:
    """
    Branch for a new order. Branch-pinned actors may only use their own
    branch; org-wide actors must name one inside their org.
    """
    if branch_id is None:
        if actor.branch_id is None:
            raise ValidationError("branch_id is required")
        return actor.branch_id

    branch_id = require_int(branch_id, "branch_id", minimum=1)
    if actor.branch_id is not None and branch_id != actor.branch_id:
        raise ValidationError("Branch not found", details={"branch_id": branch_id})
    try:
        require_branch_in_org(branch_id, actor.org_id)
    except TenantAccessError:
        raise ValidationError("Branch not found", details={"branch_id": branch_id})
    return branch_id


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def _build_lines(org_id: int, items, *, default_price_attr: str) -> list[dict]:
    """
    Validate raw item payloads and price them.

    Each item: {"product_id", "quantity", "unit_price_cents" or "unit_price"?}.
    A missing unit price falls back to the product's price (sales) or cost (purchases).
    Tax uses the product's current rate and is fixed on the line.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    product_ids = set()
    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = require_int(item.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = require_int(item.get("quantity"), f"items[{index}].quantity", minimum=1)
        unit_price = item.get("unit_price_cents")
        if unit_price is not None:
            unit_price = require_int(unit_price, f"items[{index}].unit_price_cents", minimum=0)
        elif item.get("unit_price") is not None:
            try:
                unit_price = to_cents(item["unit_price"], field=f"items[{index}].unit_price")
            except MoneyError as e:
                raise ValidationError(str(e))
            if unit_price < 0:
                raise ValidationError(f"items[{index}].unit_price must be >= 0")
        product_ids.add(product_id)
        parsed.append((product_id, quantity, unit_price))

    products = {
        p.id: p
        for p in db.session.query(Product)
        .filter(Product.org_id == org_id, Product.id.in_(product_ids))
        .all()
    }

    lines = []
    for product_id, quantity, unit_price in parsed:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise ValidationError(
                f"Product {product_id} not found",
                details={"product_id": product_id},
            )
        if unit_price is None:
            unit_price = getattr(product, default_price_attr)
        totals = compute_line(unit_price, quantity, product.tax_rate_bps)
        lines.append({
            "product": product,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "tax_rate_bps": product.tax_rate_bps,
            "tax_cents": totals.tax_cents,
            "subtotal_cents": totals.subtotal_cents,
            "line_total_cents": totals.total_cents,
        })
    return lines


def _check_stock(lines, org_id: int) -> None:
    """
    Raise InsufficientStockError when any product's requested quantity,
    summed over lines, exceeds its current stock.

    A product that no longer exists raises OrderNotFoundError.
    """
    if settings_service.get_system_config(org_id).allow_negative_stock:
        return

    requested: dict[int, int] = {}
    stock: dict[int, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    for product in (
        lock_for_update(
            db.session.query(Product).filter(
                Product.org_id == org_id,
                Product.id.in_(requested),
            )
        ).all()
    ):
        stock[product.id] = product.current_stock

    for product_id in sorted(requested):
        if product_id not in stock:
            raise OrderNotFoundError(
                f"Product {product_id} not found",
                details={"product_id": product_id},
            )

    short = [
        {
            "product_id": product_id,
            "requested_quantity": quantity,
            "current_stock": stock[product_id],
        }
        for product_id, quantity in sorted(requested.items())
        if stock[product_id] < quantity
    ]
    if short:
        raise InsufficientStockError("Insufficient stock", details={"items": short})


def _sum_lines(lines) -> tuple[int, int]:
    subtotal = sum(line["subtotal_cents"] for line in lines)
    tax = sum(line["tax_cents"] for line in lines)
    return subtotal, tax


def _currency(org_id: int, currency) -> str:
    if currency is None:
        currency = settings_service.get_system_config(org_id).default_currency
    return require_choice(currency, "currency", CURRENCIES)


def create_sale(
    *,
    actor: Actor,
    customer_id,
    items,
    branch_id=None,
    currency: str | None = None,
    notes: str | None = None,
) -> Sale:
    """Create a DRAFT sale with its lines and totals. Stock is not touched."""
    customer_id = require_int(customer_id, "customer_id", minimum=1)
    customer = db.session.query(Customer).filter_by(id=customer_id, org_id=actor.org_id).first()
    if customer is None or not customer.is_active:
        raise ValidationError("Customer not found", details={"customer_id": customer_id})

    branch_id = _resolve_branch(actor, branch_id)
    currency = _currency(actor.org_id, currency)
    lines = _build_lines(actor.org_id, items, default_price_attr="price_cents")

    def _op():
        begin_write()
        sale_items = [
            SaleItem(
                product_id=line["product"].id,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                tax_rate_bps=line["tax_rate_bps"],
                tax_cents=line["tax_cents"],
                line_total_cents=line["line_total_cents"],
            )
            for line in lines
        ]
        _check_stock(sale_items, actor.org_id)

        subtotal, tax = _sum_lines(lines)
        sale = Sale(
            org_id=actor.org_id,
            branch_id=branch_id,
            customer_id=customer_id,
            seller_id=actor.user_id,
            number=next_document_number(org_id=actor.org_id, document_type=DOC_TYPE_SALE),
            status=STATUS_DRAFT,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=subtotal + tax,
            currency=currency,
            notes=notes,
            items=sale_items,
        )
        db.session.add(sale)
        db.session.flush()

        audit_service.record(
            org_id=actor.org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_CREATE,
            resource="sale",
            resource_id=sale.id,
            new_values={
                "number": sale.number,
                "customer_id": customer_id,
                "total_cents": sale.total_cents,
                "items": len(sale_items),
            },
        )
        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Sale created sale_id=%s number=%s org_id=%s user_id=%s",
        sale.id, sale.number, actor.org_id, actor.user_id,
    )
    return sale


def create_purchase(
    *,
    actor: Actor,
    supplier_id,
    items,
    branch_id=None,
    currency: str | None = None,
    notes: str | None = None,
) -> Purchase:
    """Create a DRAFT purchase with its lines and totals."""
    supplier_id = require_int(supplier_id, "supplier_id", minimum=1)
    supplier = db.session.query(Supplier).filter_by(id=supplier_id, org_id=actor.org_id).first()
    if supplier is None or not supplier.is_active:
        raise ValidationError("Supplier not found", details={"supplier_id": supplier_id})

    branch_id = _resolve_branch(actor, branch_id)
    currency = _currency(actor.org_id, currency)
    lines = _build_lines(actor.org_id, items, default_price_attr="cost_cents")

    def _op():
        begin_write()
        subtotal, tax = _sum_lines(lines)
        purchase = Purchase(
            org_id=actor.org_id,
            branch_id=branch_id,
            supplier_id=supplier_id,
            created_by_user_id=actor.user_id,
            number=next_document_number(org_id=actor.org_id, document_type=DOC_TYPE_PURCHASE),
            status=STATUS_DRAFT,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=subtotal + tax,
            currency=currency,
            notes=notes,
            items=[
                PurchaseItem(
                    product_id=line["product"].id,
                    quantity=line["quantity"],
                    unit_price_cents=line["unit_price_cents"],
                    tax_rate_bps=line["tax_rate_bps"],
                    tax_cents=line["tax_cents"],
                    line_total_cents=line["line_total_cents"],
                )
                for line in lines
            ],
        )
        db.session.add(purchase)
        db.session.flush()

        audit_service.record(
            org_id=actor.org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_CREATE,
            resource="purchase",
            resource_id=purchase.id,
            new_values={
                "number": purchase.number,
                "supplier_id": supplier_id,
                "total_cents": purchase.total_cents,
                "items": len(lines),
            },
        )
        db.session.commit()
        return purchase

    try:
        purchase = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Purchase created purchase_id=%s number=%s org_id=%s user_id=%s",
        purchase.id, purchase.number, actor.org_id, actor.user_id,
    )
    return purchase


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _apply_common_filters(query, model, counterparty_model, params: PageParams, filters: dict):
    if filters.get("branch_id") is not None:
        query = query.filter(model.branch_id == filters["branch_id"])
    if filters.get("status"):
        query = query.filter(model.status == filters["status"])
    if filters.get("start_date") is not None:
        query = query.filter(model.created_at >= filters["start_date"])
    if filters.get("end_date") is not None:
        query = query.filter(model.created_at <= filters["end_date"])
    if params.search:
        pattern = f"%{params.search.lower()}%"
        query = query.outerjoin(counterparty_model).filter(or_(
            func.lower(model.number).like(pattern),
            func.lower(counterparty_model.name).like(pattern),
            func.lower(model.notes).like(pattern),
        ))
    return query


def list_sales(actor: Actor, params: PageParams, **filters) -> dict:
    """
    Filters: customer_id, seller_id, branch_id, status, start_date, end_date.
    """
    query = _scoped_sales(actor).options(selectinload(Sale.items), selectinload(Sale.customer))
    if filters.get("customer_id") is not None:
        query = query.filter(Sale.customer_id == filters["customer_id"])
    if filters.get("seller_id") is not None:
        query = query.filter(Sale.seller_id == filters["seller_id"])
    query = _apply_common_filters(query, Sale, Customer, params, filters)
    return paginate(query, params, sortable=SALE_SORTABLE)


def list_purchases(actor: Actor, params: PageParams, **filters) -> dict:
    """
    Filters: supplier_id, branch_id, status, start_date, end_date.
    """
    query = _scoped_purchases(actor).options(selectinload(Purchase.items), selectinload(Purchase.supplier))
    if filters.get("supplier_id") is not None:
        query = query.filter(Purchase.supplier_id == filters["supplier_id"])
    query = _apply_common_filters(query, Purchase, Supplier, params, filters)
    return paginate(query, params, sortable=PURCHASE_SORTABLE)


def get_sale(actor: Actor, sale_id: int) -> Sale:
    sale = _scoped_sales(actor).filter(Sale.id == sale_id).first()
    if sale is None:
        raise OrderNotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def get_purchase(actor: Actor, purchase_id: int) -> Purchase:
    purchase = _scoped_purchases(actor).filter(Purchase.id == purchase_id).first()
    if purchase is None:
        raise OrderNotFoundError("Purchase not found", details={"purchase_id": purchase_id})
    return purchase


def sale_detail(sale: Sale) -> dict:
    data = sale.to_dict(include_items=True)
    data["collections"] = [c.to_dict() for c in sale.collections]
    return data


def purchase_detail(purchase: Purchase) -> dict:
    data = purchase.to_dict(include_items=True)
    data["payments"] = [p.to_dict() for p in purchase.payments]
    return data


# ---------------------------------------------------------------------------
# Transition handler
# ---------------------------------------------------------------------------

def _check_transition(kind: str, table: dict, statuses, previous: str, target) -> str:
    if target not in statuses:
        raise InvalidTransitionError(
            f"Invalid {kind.lower()} status: {target}",
            details={"allowed": list(statuses)},
        )
    if target == previous:
        raise InvalidTransitionError(f"{kind} is already {previous}")
    allowed = table.get(previous, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(
            f"Cannot change {kind.lower()} from {previous} to {target}",
            details={"from": previous, "to": target, "allowed": sorted(allowed)},
        )
    return target


def _move_stock(order, lines, *, sign: int, movement_type: str, note: str, actor: Actor) -> None:
    for line in lines:
        try:
            apply_stock_change(
                org_id=order.org_id,
                product_id=line.product_id,
                delta=sign * line.quantity,
                movement_type=movement_type,
                reference=order.number,
                branch_id=order.branch_id,
                user_id=actor.user_id,
                notes=note,
            )
        except ProductNotFoundError as e:
            raise OrderNotFoundError(f"Product {line.product_id} not found", details=e.details)


def _bump_balance(model, party_id: int, delta: int) -> None:
    updated = (
        db.session.query(model)
        .filter(model.id == party_id)
        .update(
            {model.current_balance_cents: model.current_balance_cents + delta},
            synchronize_session=False,
        )
    )
    if not updated:
        raise OrderNotFoundError(
            f"{model.__name__} not found",
            details={f"{model.__tablename__[:-1]}_id": party_id},
        )


def _record_status_change(order, resource: str, previous: str, actor: Actor) -> None:
    audit_service.record(
        org_id=order.org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_STATUS_CHANGE,
        resource=resource,
        resource_id=order.id,
        old_values={"status": previous},
        new_values={"status": order.status},
    )


def transition_sale_status(sale_id: int, status, actor: Actor) -> Sale:
    """
    Move a sale to status and apply its side effects in one transaction.

    Raises:
        OrderNotFoundError: sale absent or outside the actor's scope, or a
            line's product vanished
        InvalidTransitionError: same status, unknown status, or a
            transition not in SALE_TRANSITIONS
        InsufficientStockError: confirming without enough stock while
            negative stock is disallowed
    """
    begin_write()
    try:
        sale = lock_for_update(_scoped_sales(actor).filter(Sale.id == sale_id)).first()
        if sale is None:
            raise OrderNotFoundError("Sale not found", details={"sale_id": sale_id})

        previous = sale.status
        target = _check_transition("Sale", SALE_TRANSITIONS, SALE_STATUSES, previous, status)
        lines = list(sale.items)

        if target == STATUS_CONFIRMED:
            _check_stock(lines, sale.org_id)
            _move_stock(sale, lines, sign=-1, movement_type=MOVEMENT_OUT, note="Sale confirmation", actor=actor)
            _bump_balance(Customer, sale.customer_id, sale.total_cents)
        elif target == STATUS_CANCELLED and previous == STATUS_CONFIRMED:
            _move_stock(sale, lines, sign=1, movement_type=MOVEMENT_IN, note="Sale cancellation", actor=actor)
            _bump_balance(Customer, sale.customer_id, -sale.total_cents)

        sale.status = target
        db.session.flush()
        _record_status_change(sale, "sale", previous, actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Sale status changed sale_id=%s %s->%s org_id=%s user_id=%s",
        sale_id, previous, target, actor.org_id, actor.user_id,
    )
    return sale


def transition_purchase_status(purchase_id: int, status, actor: Actor) -> Purchase:
    """
    Move a purchase to status and apply its side effects in one transaction.

    Receiving adds every line's quantity to stock and the total to the
    supplier balance. RECEIVED and CANCELLED are terminal.
    """
    begin_write()
    try:
        purchase = lock_for_update(
            _scoped_purchases(actor).filter(Purchase.id == purchase_id)
        ).first()
        if purchase is None:
            raise OrderNotFoundError("Purchase not found", details={"purchase_id": purchase_id})

        previous = purchase.status
        target = _check_transition("Purchase", PURCHASE_TRANSITIONS, PURCHASE_STATUSES, previous, status)

        if target == STATUS_RECEIVED:
            _move_stock(
                purchase, list(purchase.items),
                sign=1, movement_type=MOVEMENT_IN, note="Purchase received", actor=actor,
            )
            _bump_balance(Supplier, purchase.supplier_id, purchase.total_cents)

        purchase.status = target
        db.session.flush()
        _record_status_change(purchase, "purchase", previous, actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Purchase status changed purchase_id=%s %s->%s org_id=%s user_id=%s",
        purchase_id, previous, target, actor.org_id, actor.user_id,
    )
    return purchase
