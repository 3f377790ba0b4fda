"""
Products and Stock Service with Multi-Tenant Support

MULTI-TENANT: Every query is filtered by org_id; a product id from another
organization behaves exactly like a missing one.

STOCK INVARIANT: Product.current_stock only changes through
apply_stock_change(), which performs an atomic increment and appends the
matching StockMovement in the same transaction.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, PurchaseItem, Purchase, SaleItem, Sale, StockMovement
from ..models.catalog import MOVEMENT_ADJUSTMENT
from ..models.orders import STATUS_CANCELLED
from ..validation import ConflictError, ValidationError
from ..pagination import PageParams, paginate
from . import audit_service, settings_service
from .concurrency import begin_write, lock_for_update
from .tenant_service import Actor, get_scoped_or_none, require_branch_in_org, scoped_query


PRODUCT_SORTABLE = {
    "name": Product.name,
    "sku": Product.sku,
    "price": Product.price_cents,
    "stock": Product.current_stock,
    "created_at": Product.created_at,
}

MOVEMENT_SORTABLE = {
    "created_at": StockMovement.created_at,
}

_AUDITED_FIELDS = ("sku", "name", "category", "brand", "price_cents", "cost_cents", "tax_rate_bps", "min_stock", "is_active")


class ProductNotFoundError(Exception):
    def __init__(self, message: str = "Product not found", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _snapshot(product: Product) -> dict:
    return {name: getattr(product, name) for name in _AUDITED_FIELDS}


def get_product(org_id: int, product_id: int) -> Product:
    product = get_scoped_or_none(Product, product_id, org_id)
    if product is None:
        raise ProductNotFoundError(details={"product_id": product_id})
    return product


def list_products(
    org_id: int,
    params: PageParams,
    *,
    category: str | None = None,
    brand: str | None = None,
    active: bool | None = None,
    low_stock: bool = False,
) -> dict:
    query = scoped_query(Product, org_id)

    if category:
        query = query.filter(Product.category == category)
    if brand:
        query = query.filter(Product.brand == brand)
    if active is not None:
        query = query.filter(Product.is_active.is_(active))
    if low_stock:
        query = query.filter(Product.current_stock <= Product.min_stock)
    if params.search:
        pattern = f"%{params.search.lower()}%"
        query = query.filter(or_(
            func.lower(Product.name).like(pattern),
            func.lower(Product.sku).like(pattern),
            func.lower(Product.description).like(pattern),
        ))

    return paginate(query, params, sortable=PRODUCT_SORTABLE)


def _ensure_sku_free(org_id: int, sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.org_id == org_id, Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists", details={"sku": sku})


def create_product(
    *,
    org_id: int,
    patch: dict,
    actor: Actor,
    initial_stock: int = 0,
) -> Product:
    """
    Create a product from a validated patch.

    A non-zero initial_stock is booked as an ADJUSTMENT movement so the
    movement history reconciles with current_stock from day one.
    """
    _ensure_sku_free(org_id, patch["sku"])

    if initial_stock < 0 and not settings_service.get_system_config(org_id).allow_negative_stock:
        raise ValidationError("initial_stock cannot be negative")

    product = Product(org_id=org_id, current_stock=0)
    for key, value in patch.items():
        setattr(product, key, value)

    db.session.add(product)
    db.session.flush()

    if initial_stock:
        apply_stock_change(
            org_id=org_id,
            product_id=product.id,
            delta=initial_stock,
            movement_type=MOVEMENT_ADJUSTMENT,
            reference="INITIAL",
            branch_id=actor.branch_id,
            user_id=actor.user_id,
            notes="Initial stock",
        )

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_CREATE,
        resource="product",
        resource_id=product.id,
        new_values=_snapshot(product),
    )
    db.session.commit()
    return product


def update_product(*, org_id: int, product_id: int, patch: dict, actor: Actor) -> Product:
    product = get_product(org_id, product_id)

    if "sku" in patch and patch["sku"] != product.sku:
        _ensure_sku_free(org_id, patch["sku"], exclude_id=product.id)

    before = _snapshot(product)
    for key, value in patch.items():
        setattr(product, key, value)

    audit_service.record(
        org_id=org_id,
        user_id=actor.user_id,
        action=audit_service.ACTION_UPDATE,
        resource="product",
        resource_id=product.id,
        old_values=before,
        new_values=_snapshot(product),
    )
    db.session.commit()
    return product


def deactivate_product(*, org_id: int, product_id: int, actor: Actor) -> Product:
    """
    Soft-delete a product.

    Raises ConflictError while the product is on any sale or purchase that
    is not CANCELLED.
    """
    product = get_product(org_id, product_id)

    open_sales = (
        db.session.query(func.count(SaleItem.id))
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(SaleItem.product_id == product.id, Sale.status != STATUS_CANCELLED)
        .scalar()
    )
    open_purchases = (
        db.session.query(func.count(PurchaseItem.id))
        .join(Purchase, Purchase.id == PurchaseItem.purchase_id)
        .filter(PurchaseItem.product_id == product.id, Purchase.status != STATUS_CANCELLED)
        .scalar()
    )
    if open_sales or open_purchases:
        raise ConflictError(
            "Product is used on existing orders",
            details={"sales": open_sales, "purchases": open_purchases},
        )

    if product.is_active:
        product.is_active = False
        audit_service.record(
            org_id=org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_DELETE,
            resource="product",
            resource_id=product.id,
            old_values={"is_active": True},
            new_values={"is_active": False},
        )
        db.session.commit()
    return product


def list_stock_movements(org_id: int, product_id: int, params: PageParams) -> dict:
    product = get_product(org_id, product_id)
    query = db.session.query(StockMovement).filter(
        StockMovement.org_id == org_id,
        StockMovement.product_id == product.id,
    )
    return paginate(query, params, sortable=MOVEMENT_SORTABLE)


def _distinct_values(org_id: int, column) -> list[str]:
    rows = (
        db.session.query(column)
        .filter(Product.org_id == org_id, Product.is_active.is_(True), column.isnot(None), column != "")
        .distinct()
        .order_by(column.asc())
        .all()
    )
    return [value for (value,) in rows]


def list_categories(org_id: int) -> list[str]:
    return _distinct_values(org_id, Product.category)


def list_brands(org_id: int) -> list[str]:
    return _distinct_values(org_id, Product.brand)


def apply_stock_change(
    *,
    org_id: int,
    product_id: int,
    delta: int,
    movement_type: str,
    reference: str | None,
    branch_id: int | None,
    user_id: int | None,
    notes: str | None = None,
) -> StockMovement:
    """
    Atomically add delta to current_stock and append the movement row.

    Runs in the caller's transaction and never commits. Raises
    ProductNotFoundError if the product vanished or belongs to another org.
    """
    updated = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.org_id == org_id)
        .update(
            {Product.current_stock: Product.current_stock + delta},
            synchronize_session=False,
        )
    )
    if not updated:
        raise ProductNotFoundError(details={"product_id": product_id})

    movement = StockMovement(
        org_id=org_id,
        product_id=product_id,
        branch_id=branch_id,
        type=movement_type,
        quantity=delta,
        reference=reference,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    return movement


def adjust_stock(
    *,
    org_id: int,
    product_id: int,
    delta: int,
    actor: Actor,
    branch_id: int | None = None,
    notes: str | None = None,
) -> tuple[Product, StockMovement]:
    """
    Manual stock correction by a signed delta.

    Rejected when it would take stock below zero and the organization does
    not allow negative stock.
    """
    if delta == 0:
        raise ValidationError("quantity must not be zero")

    if branch_id is not None:
        require_branch_in_org(branch_id, org_id)
    else:
        branch_id = actor.branch_id

    begin_write()
    try:
        product = lock_for_update(
            db.session.query(Product).filter_by(id=product_id, org_id=org_id)
        ).first()
        if product is None:
            raise ProductNotFoundError(details={"product_id": product_id})

        previous_stock = product.current_stock
        allow_negative = settings_service.get_system_config(org_id).allow_negative_stock
        if previous_stock + delta < 0 and not allow_negative:
            raise ValidationError(
                "Adjustment would make stock negative",
                details={"product_id": product_id, "current_stock": previous_stock, "quantity": delta},
            )

        movement = apply_stock_change(
            org_id=org_id,
            product_id=product.id,
            delta=delta,
            movement_type=MOVEMENT_ADJUSTMENT,
            reference="ADJUSTMENT",
            branch_id=branch_id,
            user_id=actor.user_id,
            notes=notes,
        )
        audit_service.record(
            org_id=org_id,
            user_id=actor.user_id,
            action=audit_service.ACTION_UPDATE,
            resource="product",
            resource_id=product.id,
            old_values={"current_stock": previous_stock},
            new_values={"current_stock": previous_stock + delta},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Stock adjusted product_id=%s delta=%s org_id=%s user_id=%s",
        product_id, delta, org_id, actor.user_id,
    )
    db.session.refresh(product)
    return product, movement
