# Overview: Flask API routes for suppliers and their accounts.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Supplier
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


SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "email", "phone", "address", "tax_id", "is_active"}),
    required_on_create=frozenset({"name"}),
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    try:
        params = parse_page_params(
            request.args, sortable=party_service.sortable_columns(Supplier), default_sort="name", default_order="asc"
        )
        active = parse_bool_arg(request.args.get("active"), "active")
        return jsonify(party_service.list_suppliers(g.org_id, params, active=active))
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list suppliers")
        return server_error()


@suppliers_bp.post("")
@require_auth
def create_supplier_route():
    try:
        patch = validate_payload(
            model=Supplier, payload=request.get_json(silent=True), policy=SUPPLIER_POLICY, partial=False
        )
        supplier = party_service.create_supplier(org_id=g.org_id, patch=patch, actor=g.actor)
        return jsonify({"supplier": supplier.to_dict()}), 201
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return server_error()


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    try:
        supplier = party_service.get_supplier(g.org_id, supplier_id)
        return jsonify({"supplier": supplier.to_dict()})
    except PartyNotFoundError as e:
        return error_json(e, 404)


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
def update_supplier_route(supplier_id: int):
    try:
        patch = validate_payload(
            model=Supplier, payload=request.get_json(silent=True), policy=SUPPLIER_POLICY, partial=True
        )
        supplier = party_service.update_supplier(
            org_id=g.org_id, supplier_id=supplier_id, patch=patch, actor=g.actor
        )
        return jsonify({"supplier": supplier.to_dict()})
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to update supplier")
        return server_error()


@suppliers_bp.get("/<int:supplier_id>/account")
@require_auth
def supplier_account_route(supplier_id: int):
    """Account statement: received purchases and payments, newest first."""
    try:
        return jsonify(party_service.supplier_account(g.org_id, supplier_id))
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except Exception:
        current_app.logger.exception("Failed to build supplier account")
        return server_error()


@suppliers_bp.post("/<int:supplier_id>/payments")
@require_auth
@require_role(ROLE_MANAGER)
def record_payment_route(supplier_id: int):
    """Body: {"amount", "payment_method", "purchase_id"?, "currency"?, "notes"?}"""
    try:
        data = request.get_json(silent=True) or {}
        purchase_id = data.get("purchase_id")
        payment = party_service.record_supplier_payment(
            org_id=g.org_id,
            supplier_id=supplier_id,
            amount_cents=parse_amount(data),
            payment_method=data.get("payment_method"),
            actor=g.actor,
            purchase_id=require_int(purchase_id, "purchase_id", minimum=1) if purchase_id is not None else None,
            currency=data.get("currency"),
            notes=optional_text(data.get("notes"), "notes", max_length=255),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except PartyNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to record supplier payment")
        return server_error()
