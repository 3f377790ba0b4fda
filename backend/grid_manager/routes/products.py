# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

"""
Product management routes.

MULTI-TENANT: All product operations are scoped to g.org_id.

Stock is read-only here except through POST /<id>/stock-adjustments
(MANAGER+); sales and purchases move stock through their status changes.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Product
from ..models.auth import ROLE_MANAGER
from ..pagination import parse_page_params
from ..services import product_service
from ..services.product_service import (
    MOVEMENT_SORTABLE,
    PRODUCT_SORTABLE,
    ProductNotFoundError,
)
from ..services.tenant_service import TenantAccessError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    optional_text,
    require_int,
    validate_payload,
)
from .responses import error_json, parse_bool_arg, server_error


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"sku", "name", "description", "category", "brand", "unit", "min_stock", "is_active"}),
    money_fields={"price": "price_cents", "cost": "cost_cents"},
    percent_fields={"tax_rate": "tax_rate_bps"},
    required_on_create=frozenset({"sku", "name"}),
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params: page, limit, sort_by, sort_order, search, category, brand,
    active, low_stock.
    """
    try:
        args = request.args
        params = parse_page_params(args, sortable=PRODUCT_SORTABLE, default_sort="name", default_order="asc")
        result = product_service.list_products(
            g.org_id,
            params,
            category=args.get("category") or None,
            brand=args.get("brand") or None,
            active=parse_bool_arg(args.get("active"), "active"),
            low_stock=bool(parse_bool_arg(args.get("low_stock"), "low_stock")),
        )
        return jsonify(result)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return server_error()


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Body: {"sku", "name", "price"?, "cost"?, "tax_rate"?, "initial_stock"?, ...}

    price and cost are decimal amounts, tax_rate a percentage (21 = 21%).
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        initial_stock = data.pop("initial_stock", 0)
        initial_stock = require_int(initial_stock, "initial_stock") if initial_stock is not None else 0

        patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
        if patch.get("min_stock") is not None and patch["min_stock"] < 0:
            raise ValidationError("min_stock must be >= 0")

        product = product_service.create_product(
            org_id=g.org_id, patch=patch, actor=g.actor, initial_stock=initial_stock
        )
        return jsonify({"product": product.to_dict()}), 201
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return server_error()


@products_bp.get("/categories")
@require_auth
def list_categories_route():
    categories = product_service.list_categories(g.org_id)
    return jsonify({"items": categories, "count": len(categories)})


@products_bp.get("/brands")
@require_auth
def list_brands_route():
    brands = product_service.list_brands(g.org_id)
    return jsonify({"items": brands, "count": len(brands)})


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = product_service.get_product(g.org_id, product_id)
        return jsonify({"product": product.to_dict()})
    except ProductNotFoundError as e:
        return error_json(e, 404)


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    try:
        patch = validate_payload(
            model=Product, payload=request.get_json(silent=True), policy=PRODUCT_POLICY, partial=True
        )
        if patch.get("min_stock") is not None and patch["min_stock"] < 0:
            raise ValidationError("min_stock must be >= 0")

        product = product_service.update_product(
            org_id=g.org_id, product_id=product_id, patch=patch, actor=g.actor
        )
        return jsonify({"product": product.to_dict()})
    except ProductNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return server_error()


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER)
def delete_product_route(product_id: int):
    """Soft delete. 409 while the product is on a non-cancelled order."""
    try:
        product = product_service.deactivate_product(org_id=g.org_id, product_id=product_id, actor=g.actor)
        return jsonify({"product": product.to_dict()})
    except ProductNotFoundError as e:
        return error_json(e, 404)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return server_error()


@products_bp.get("/<int:product_id>/stock-movements")
@require_auth
def list_stock_movements_route(product_id: int):
    try:
        params = parse_page_params(request.args, sortable=MOVEMENT_SORTABLE)
        return jsonify(product_service.list_stock_movements(g.org_id, product_id, params))
    except ProductNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return server_error()


@products_bp.post("/<int:product_id>/stock-adjustments")
@require_auth
@require_role(ROLE_MANAGER)
def adjust_stock_route(product_id: int):
    """Body: {"quantity": signed int, "branch_id"?, "notes"?}"""
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        product, movement = product_service.adjust_stock(
            org_id=g.org_id,
            product_id=product_id,
            delta=require_int(data.get("quantity"), "quantity"),
            actor=g.actor,
            branch_id=require_int(branch_id, "branch_id", minimum=1) if branch_id is not None else None,
            notes=optional_text(data.get("notes"), "notes", max_length=255),
        )
        return jsonify({"product": product.to_dict(), "movement": movement.to_dict()}), 201
    except (ProductNotFoundError, TenantAccessError) as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return server_error()
