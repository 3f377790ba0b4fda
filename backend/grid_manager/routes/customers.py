# Overview: Flask API routes for customers and their accounts.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Customer
from ..models.auth import ROLE_MANAGER
from ..pagination import parse_page_params
from ..services import party_service
from ..services.party_service import PartyNotFoundError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    optional_text,
    require_int,
    validate_payload,
)
from .responses import error_json, parse_amount, parse_bool_arg, server_error


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "email", "phone", "address", "tax_id", "is_active"}),
    money_fields={"credit_limit": "credit_limit_cents"},
    required_on_create=frozenset({"name"}),
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """Query params: page, limit, sort_by, sort_order, search, active."""
    try:
        params = parse_page_params(
            request.args, sortable=party_service.sortable_columns(Customer), default_sort="name", default_order="asc"
        )
        active = parse_bool_arg(request.args.get("active"), "active")
        return jsonify(party_service.list_customers(g.org_id, params, active=active))
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return server_error()


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        patch = validate_payload(
            model=Customer, payload=request.get_json(silent=True), policy=CUSTOMER_POLICY, partial=False
        )
        customer = party_service.create_customer(org_id=g.org_id, patch=patch, actor=g.actor)
        return jsonify({"customer": customer.to_dict()}), 201
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return server_error()


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        customer = party_service.get_customer(g.org_id, customer_id)
        return jsonify({"customer": customer.to_dict()})
    except PartyNotFoundError as e:
        return error_json(e, 404)


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        patch = validate_payload(
            model=Customer, payload=request.get_json(silent=True), policy=CUSTOMER_POLICY, partial=True
        )
        customer = party_service.update_customer(
            org_id=g.org_id, customer_id=customer_id, patch=patch, actor=g.actor
        )
        return jsonify({"customer": customer.to_dict()})
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return server_error()


@customers_bp.get("/<int:customer_id>/account")
@require_auth
def customer_account_route(customer_id: int):
    """Account statement: confirmed sales and collections, newest first."""
    try:
        return jsonify(party_service.customer_account(g.org_id, customer_id))
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except Exception:
        current_app.logger.exception("Failed to build customer account")
        return server_error()


@customers_bp.post("/<int:customer_id>/collections")
@require_auth
@require_role(ROLE_MANAGER)
def record_collection_route(customer_id: int):
    """Body: {"amount", "payment_method", "sale_id"?, "currency"?, "notes"?}"""
    try:
        data = request.get_json(silent=True) or {}
        sale_id = data.get("sale_id")
        collection = party_service.record_collection(
            org_id=g.org_id,
            customer_id=customer_id,
            amount_cents=parse_amount(data),
            payment_method=data.get("payment_method"),
            actor=g.actor,
            sale_id=require_int(sale_id, "sale_id", minimum=1) if sale_id is not None else None,
            currency=data.get("currency"),
            notes=optional_text(data.get("notes"), "notes", max_length=255),
        )
        return jsonify({"collection": collection.to_dict()}), 201
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to record collection")
        return server_error()
