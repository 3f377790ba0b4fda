# Overview: Flask API routes for purchases; parses input and returns JSON responses.

"""
Purchases API routes.

Receiving a purchase (PATCH status RECEIVED) adds stock and charges the
supplier account, so status changes need MANAGER or above.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models.auth import ROLE_MANAGER
from ..models.orders import PURCHASE_STATUSES
from ..pagination import parse_page_params
from ..services import order_service
from ..services.order_service import (
    InvalidTransitionError,
    OrderNotFoundError,
    PURCHASE_SORTABLE,
)
from ..validation import ValidationError, optional_text, require_choice
from .responses import error_json, parse_date_range, parse_int_arg, server_error


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.get("")
@require_auth
def list_purchases_route():
    """
    Query params: page, limit, sort_by, sort_order, search, supplier_id,
    branch_id, status, start_date, end_date.
    """
    try:
        args = request.args
        params = parse_page_params(args, sortable=PURCHASE_SORTABLE)
        start, end = parse_date_range(args)
        status = args.get("status")
        if status:
            require_choice(status, "status", PURCHASE_STATUSES)

        result = order_service.list_purchases(
            g.actor,
            params,
            supplier_id=parse_int_arg(args.get("supplier_id"), "supplier_id"),
            branch_id=parse_int_arg(args.get("branch_id"), "branch_id"),
            status=status,
            start_date=start,
            end_date=end,
        )
        return jsonify(result)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return server_error()


@purchases_bp.post("")
@require_auth
def create_purchase_route():
    """
    Create a DRAFT purchase.

    Body: {"supplier_id", "branch_id"?, "currency"?, "notes"?,
           "items": [{"product_id", "quantity", "unit_price"?}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        purchase = order_service.create_purchase(
            actor=g.actor,
            supplier_id=data.get("supplier_id"),
            branch_id=data.get("branch_id"),
            items=data.get("items"),
            currency=data.get("currency"),
            notes=optional_text(data.get("notes"), "notes"),
        )
        return jsonify({"purchase": order_service.purchase_detail(purchase)}), 201
    except ValidationError as e:
        db.session.rollback()
        return error_json(e, 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase")
        return server_error()


@purchases_bp.get("/<int:purchase_id>")
@require_auth
def get_purchase_route(purchase_id: int):
    try:
        purchase = order_service.get_purchase(g.actor, purchase_id)
        return jsonify({"purchase": order_service.purchase_detail(purchase)})
    except OrderNotFoundError as e:
        return error_json(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get purchase")
        return server_error()


@purchases_bp.patch("/<int:purchase_id>/status")
@require_auth
@require_role(ROLE_MANAGER)
def update_purchase_status_route(purchase_id: int):
    """Body: {"status": "PENDING" | "RECEIVED" | "CANCELLED" | "DRAFT"}"""
    data = request.get_json(silent=True) or {}
    if "status" not in data:
        return jsonify({"error": "status required"}), 400

    try:
        purchase = order_service.transition_purchase_status(purchase_id, data["status"], g.actor)
        return jsonify({"purchase": order_service.purchase_detail(purchase)})
    except OrderNotFoundError as e:
        return error_json(e, 404)
    except InvalidTransitionError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to update purchase status")
        return server_error()
