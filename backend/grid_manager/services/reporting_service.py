# Overview: Read-only aggregate reports over sales, stock and customer accounts.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Product, Purchase, Sale, SaleItem, Supplier, User
from ..models.auth import ROLE_SELLER
from ..models.orders import STATUS_CONFIRMED, STATUS_RECEIVED
from ..money import format_cents
from ..time_utils import start_of_day, start_of_month, to_utc_z, utcnow
from . import settings_service


TOP_PRODUCTS_LIMIT = 10
RECENT_ACTIVITY_LIMIT = 5

STOCK_LOW = "LOW"
STOCK_WARNING = "WARNING"
STOCK_OK = "OK"


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def _money(prefix: str, cents) -> dict:
    cents = int(cents or 0)
    return {f"{prefix}_cents": cents, prefix: format_cents(cents)}


def _confirmed_sales(org_id: int, start: datetime | None, end: datetime | None, branch_id: int | None):
    query = db.session.query(Sale).filter(Sale.org_id == org_id, Sale.status == STATUS_CONFIRMED)
    if branch_id is not None:
        query = query.filter(Sale.branch_id == branch_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query


def sales_report(
    *,
    org_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    branch_id: int | None = None,
) -> dict:
    """
    Confirmed sales in [start, end]: totals, per-day totals and the top
    products by line total.
    """
    if start and end and start > end:
        raise ReportError("start_date must be before end_date")

    base = _confirmed_sales(org_id, start, end, branch_id)

    totals = base.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.subtotal_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).one()

    day = func.date(Sale.created_at)
    daily = (
        base.with_entities(
            day.label("day"),
            func.count(Sale.id).label("count"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("total"),
        )
        .group_by(day)
        .order_by(day)
        .all()
    )

    line_total = func.sum(SaleItem.line_total_cents)
    top = (
        base.join(SaleItem, SaleItem.sale_id == Sale.id)
        .join(Product, Product.id == SaleItem.product_id)
        .with_entities(
            Product.id,
            Product.sku,
            Product.name,
            func.sum(SaleItem.quantity).label("quantity"),
            line_total.label("total"),
        )
        .group_by(Product.id, Product.sku, Product.name)
        .order_by(line_total.desc(), Product.id.asc())
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )

    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "totals": {
            "count": int(totals[0] or 0),
            **_money("subtotal", totals[1]),
            **_money("taxes", totals[2]),
            **_money("total", totals[3]),
        },
        "by_day": [
            {"date": str(row.day), "count": int(row.count), **_money("total", row.total)}
            for row in daily
        ],
        "top_products": [
            {
                "product_id": row.id,
                "sku": row.sku,
                "name": row.name,
                "quantity": int(row.quantity or 0),
                **_money("total", row.total),
            }
            for row in top
        ],
    }


def stock_status(current_stock: int, min_stock: int, warning_threshold: int) -> str:
    """
    LOW at or below min_stock; WARNING at or below warning_threshold percent
    of min_stock (120 means min_stock * 1.2); OK otherwise.
    """
    if current_stock <= min_stock:
        return STOCK_LOW
    if current_stock * 100 <= min_stock * warning_threshold:
        return STOCK_WARNING
    return STOCK_OK


def stock_report(*, org_id: int) -> dict:
    """
    Active products valued at cost, plus the low-stock and stock-warning
    alert lists, each capped at max_stock_alerts.
    """
    config = settings_service.get_system_config(org_id)

    products = (
        db.session.query(Product)
        .filter(Product.org_id == org_id, Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    rows = []
    total_value = 0
    for product in products:
        value = product.current_stock * product.cost_cents
        total_value += value
        rows.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "current_stock": product.current_stock,
            "min_stock": product.min_stock,
            "stock_status": stock_status(
                product.current_stock, product.min_stock, config.stock_warning_threshold
            ),
            **_money("stock_value", value),
        })

    def _alerts(status):
        return sorted(
            (row for row in rows if row["stock_status"] == status),
            key=lambda row: (row["current_stock"] - row["min_stock"], row["product_id"]),
        )

    low_stock = _alerts(STOCK_LOW)
    warning = _alerts(STOCK_WARNING)

    return {
        "products": rows,
        "product_count": len(rows),
        **_money("total_stock_value", total_value),
        "low_stock": low_stock[: config.max_stock_alerts],
        "low_stock_count": len(low_stock),
        "stock_warning": warning[: config.max_stock_alerts],
        "stock_warning_count": len(warning),
    }


def customer_accounts_report(*, org_id: int) -> dict:
    customers = (
        db.session.query(Customer)
        .filter(Customer.org_id == org_id, Customer.current_balance_cents != 0)
        .order_by(Customer.current_balance_cents.desc(), Customer.id.asc())
        .all()
    )
    return {
        "customers": [
            {
                "customer_id": c.id,
                "name": c.name,
                **_money("balance", c.current_balance_cents),
                "credit_limit_cents": c.credit_limit_cents,
            }
            for c in customers
        ],
        "count": len(customers),
        **_money("total_balance", sum(c.current_balance_cents for c in customers)),
    }


def _sales_summary(org_id: int, since: datetime, branch_id: int | None) -> dict:
    count, total = _confirmed_sales(org_id, since, None, branch_id).with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).one()
    return {"count": int(count or 0), **_money("total", total)}


def dashboard_summary(*, org_id: int, branch_id: int | None = None, now: datetime | None = None) -> dict:
    """
    Counts and totals for today and the current month.

    branch_id narrows sales and purchases. Stock and customer balances are
    kept per organization and are always org-wide.
    """
    now = now or utcnow()
    today = start_of_day(now)
    month = start_of_month(now)

    purchases = db.session.query(
        func.count(Purchase.id), func.coalesce(func.sum(Purchase.total_cents), 0)
    ).filter(
        Purchase.org_id == org_id,
        Purchase.status == STATUS_RECEIVED,
        Purchase.created_at >= month,
    )
    if branch_id is not None:
        purchases = purchases.filter(Purchase.branch_id == branch_id)
    purchases_month = purchases.one()

    active_products = db.session.query(func.count(Product.id)).filter(
        Product.org_id == org_id, Product.is_active.is_(True)
    ).scalar()
    low_stock = db.session.query(func.count(Product.id)).filter(
        Product.org_id == org_id,
        Product.is_active.is_(True),
        Product.current_stock <= Product.min_stock,
    ).scalar()
    active_customers = db.session.query(func.count(Customer.id)).filter(
        Customer.org_id == org_id, Customer.is_active.is_(True)
    ).scalar()
    receivable = db.session.query(func.coalesce(func.sum(Customer.current_balance_cents), 0)).filter(
        Customer.org_id == org_id
    ).scalar()

    return {
        "generated_at": to_utc_z(now),
        "branch_id": branch_id,
        "sales_today": _sales_summary(org_id, today, branch_id),
        "sales_month": _sales_summary(org_id, month, branch_id),
        "sales_last_7_days": _sales_summary(org_id, today - timedelta(days=6), branch_id),
        "purchases_month": {"count": int(purchases_month[0] or 0), **_money("total", purchases_month[1])},
        "active_products": int(active_products or 0),
        "low_stock_products": int(low_stock or 0),
        "active_customers": int(active_customers or 0),
        **_money("accounts_receivable", receivable),
    }


def recent_activity(*, actor, limit: int = RECENT_ACTIVITY_LIMIT) -> dict:
    """
    Latest sales and purchases in any status.

    Branch-pinned actors see their branch only; sellers see only their own
    sales and no purchases.
    """
    sales = (
        db.session.query(Sale, Customer.name, User.name)
        .join(Customer, Customer.id == Sale.customer_id)
        .join(User, User.id == Sale.seller_id)
        .filter(Sale.org_id == actor.org_id)
    )
    purchases = (
        db.session.query(Purchase, Supplier.name)
        .join(Supplier, Supplier.id == Purchase.supplier_id)
        .filter(Purchase.org_id == actor.org_id)
    )
    if actor.branch_id is not None:
        sales = sales.filter(Sale.branch_id == actor.branch_id)
        purchases = purchases.filter(Purchase.branch_id == actor.branch_id)
    if actor.role == ROLE_SELLER:
        sales = sales.filter(Sale.seller_id == actor.user_id)

    recent_sales = sales.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
    recent_purchases = []
    if actor.role != ROLE_SELLER:
        recent_purchases = (
            purchases.order_by(Purchase.created_at.desc(), Purchase.id.desc()).limit(limit).all()
        )

    return {
        "recent_sales": [
            {
                "id": sale.id,
                "number": sale.number,
                "customer": customer_name,
                "seller": seller_name,
                **_money("total", sale.total_cents),
                "currency": sale.currency,
                "status": sale.status,
                "created_at": to_utc_z(sale.created_at),
            }
            for sale, customer_name, seller_name in recent_sales
        ],
        "recent_purchases": [
            {
                "id": purchase.id,
                "number": purchase.number,
                "supplier": supplier_name,
                **_money("total", purchase.total_cents),
                "currency": purchase.currency,
                "status": purchase.status,
                "created_at": to_utc_z(purchase.created_at),
            }
            for purchase, supplier_name in recent_purchases
        ],
    }
