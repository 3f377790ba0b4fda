# Overview: Flask API routes for cash and bank accounts and their movements.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Account
from ..models.auth import ROLE_MANAGER
from ..pagination import parse_page_params
from ..services import account_service
from ..services.account_service import AccountNotFoundError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    optional_text,
    validate_payload,
)
from .responses import error_json, parse_amount, parse_bool_arg, parse_date_range, server_error


ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "type", "account_number", "currency", "is_active"}),
    required_on_create=frozenset({"name", "type"}),
)

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.get("")
@require_auth
def list_accounts_route():
    """Query params: page, limit, sort_by, sort_order, search, type, currency, active."""
    try:
        params = parse_page_params(
            request.args, sortable=account_service.SORTABLE, default_sort="name", default_order="asc"
        )
        return jsonify(account_service.list_accounts(
            g.org_id,
            params,
            account_type=request.args.get("type"),
            currency=request.args.get("currency"),
            active=parse_bool_arg(request.args.get("active"), "active"),
        ))
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list accounts")
        return server_error()


@accounts_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_account_route():
    try:
        patch = validate_payload(
            model=Account, payload=request.get_json(silent=True), policy=ACCOUNT_POLICY, partial=False
        )
        account = account_service.create_account(org_id=g.org_id, patch=patch, actor=g.actor)
        return jsonify({"account": account.to_dict()}), 201
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create account")
        return server_error()


@accounts_bp.get("/<int:account_id>")
@require_auth
def get_account_route(account_id: int):
    try:
        account = account_service.get_account(g.org_id, account_id)
        return jsonify({"account": account.to_dict()})
    except AccountNotFoundError as e:
        return error_json(e, 404)


@accounts_bp.put("/<int:account_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_account_route(account_id: int):
    try:
        patch = validate_payload(
            model=Account, payload=request.get_json(silent=True), policy=ACCOUNT_POLICY, partial=True
        )
        account = account_service.update_account(
            org_id=g.org_id, account_id=account_id, patch=patch, actor=g.actor
        )
        return jsonify({"account": account.to_dict()})
    except AccountNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to update account")
        return server_error()


@accounts_bp.get("/<int:account_id>/movements")
@require_auth
def list_movements_route(account_id: int):
    """Query params: page, limit, sort_by, sort_order, start_date, end_date."""
    try:
        params = parse_page_params(request.args, sortable=account_service.MOVEMENT_SORTABLE)
        start, end = parse_date_range(request.args)
        return jsonify(account_service.list_movements(g.org_id, account_id, params, start=start, end=end))
    except AccountNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list account movements")
        return server_error()


@accounts_bp.post("/<int:account_id>/movements")
@require_auth
@require_role(ROLE_MANAGER)
def record_movement_route(account_id: int):
    """Body: {"amount": signed decimal, "description", "reference"?}"""
    try:
        data = request.get_json(silent=True) or {}
        account, movement = account_service.record_movement(
            org_id=g.org_id,
            account_id=account_id,
            amount_cents=parse_amount(data),
            description=optional_text(data.get("description"), "description", max_length=255),
            reference=optional_text(data.get("reference"), "reference", max_length=64),
            actor=g.actor,
        )
        return jsonify({"account": account.to_dict(), "movement": movement.to_dict()}), 201
    except AccountNotFoundError as e:
        return error_json(e, 404)
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to record account movement")
        return server_error()
