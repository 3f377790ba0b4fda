# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API routes.

MULTI-TENANT: Every route works on g.actor's scope. Sales outside it
(other org, other branch for branch-pinned users, other sellers' sales for
SELLER users) answer 404.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..extensions import db
from ..models.orders import SALE_STATUSES
from ..pagination import parse_page_params
from ..services import order_service
from ..services.order_service import (
    InvalidTransitionError,
    OrderNotFoundError,
    SALE_SORTABLE,
)
from ..validation import ValidationError, optional_text, require_choice
from .responses import error_json, parse_date_range, parse_int_arg, server_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: page, limit, sort_by, sort_order, search, customer_id,
    seller_id, branch_id, status, start_date, end_date.
    """
    try:
        args = request.args
        params = parse_page_params(args, sortable=SALE_SORTABLE)
        start, end = parse_date_range(args)
        status = args.get("status")
        if status:
            require_choice(status, "status", SALE_STATUSES)

        result = order_service.list_sales(
            g.actor,
            params,
            customer_id=parse_int_arg(args.get("customer_id"), "customer_id"),
            seller_id=parse_int_arg(args.get("seller_id"), "seller_id"),
            branch_id=parse_int_arg(args.get("branch_id"), "branch_id"),
            status=status,
            start_date=start,
            end_date=end,
        )
        return jsonify(result)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return server_error()


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a DRAFT sale.

    Body: {"customer_id", "branch_id"?, "currency"?, "notes"?,
           "items": [{"product_id", "quantity", "unit_price"?}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = order_service.create_sale(
            actor=g.actor,
            customer_id=data.get("customer_id"),
            branch_id=data.get("branch_id"),
            items=data.get("items"),
            currency=data.get("currency"),
            notes=optional_text(data.get("notes"), "notes"),
        )
        return jsonify({"sale": order_service.sale_detail(sale)}), 201
    except (ValidationError, InvalidTransitionError) as e:
        db.session.rollback()
        return error_json(e, 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create sale")
        return server_error()


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = order_service.get_sale(g.actor, sale_id)
        return jsonify({"sale": order_service.sale_detail(sale)})
    except OrderNotFoundError as e:
        return error_json(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return server_error()


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
def update_sale_status_route(sale_id: int):
    """
    Change a sale's status.

    Body: {"status": "PENDING" | "CONFIRMED" | "CANCELLED" | "DRAFT"}

    CONFIRMED takes stock out and charges the customer account; cancelling
    a CONFIRMED sale reverses both.
    """
    data = request.get_json(silent=True) or {}
    if "status" not in data:
        return jsonify({"error": "status required"}), 400

    try:
        sale = order_service.transition_sale_status(sale_id, data["status"], g.actor)
        return jsonify({"sale": order_service.sale_detail(sale)})
    except OrderNotFoundError as e:
        return error_json(e, 404)
    except InvalidTransitionError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to update sale status")
        return server_error()
