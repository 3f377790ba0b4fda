# Overview: Flask API routes for managing users of the current organization.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import User
from ..models.auth import ROLE_MANAGER, ROLE_SELLER
from ..pagination import parse_page_params
from ..services import user_service
from ..services.auth_service import PasswordValidationError, UserCreationError
from ..services.permission_service import PermissionDeniedError
from ..services.user_service import UserNotFoundError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    require_int,
    validate_payload,
)
from .responses import error_json, parse_int_arg, server_error


USER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "email", "role", "status", "branch_id"}),
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_MANAGER)
def list_users_route():
    """Query params: page, limit, sort_by, sort_order, search, role, status, branch_id."""
    try:
        params = parse_page_params(
            request.args, sortable=user_service.SORTABLE, default_sort="name", default_order="asc"
        )
        return jsonify(user_service.list_users(
            g.org_id,
            params,
            role=request.args.get("role"),
            status=request.args.get("status"),
            branch_id=parse_int_arg(request.args.get("branch_id"), "branch_id"),
        ))
    except ValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list users")
        return server_error()


@users_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_user_route():
    """Body: {"email", "name", "password", "role"?, "branch_id"?}"""
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        user = user_service.create_org_user(
            org_id=g.org_id,
            email=data.get("email") or "",
            name=data.get("name") or "",
            password=data.get("password") or "",
            role=data.get("role") or ROLE_SELLER,
            branch_id=require_int(branch_id, "branch_id", minimum=1) if branch_id is not None else None,
            actor=g.actor,
        )
        return jsonify({"user": user.to_dict()}), 201
    except PermissionDeniedError as e:
        return error_json(e, 403)
    except (ValidationError, UserCreationError, PasswordValidationError) as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return server_error()


@users_bp.get("/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def get_user_route(user_id: int):
    try:
        return jsonify({"user": user_service.get_user(g.org_id, user_id).to_dict()})
    except UserNotFoundError as e:
        return error_json(e, 404)


@users_bp.put("/<int:user_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_user_route(user_id: int):
    try:
        patch = validate_payload(
            model=User, payload=request.get_json(silent=True), policy=USER_POLICY, partial=True
        )
        user = user_service.update_user(org_id=g.org_id, user_id=user_id, patch=patch, actor=g.actor)
        return jsonify({"user": user.to_dict()})
    except UserNotFoundError as e:
        return error_json(e, 404)
    except PermissionDeniedError as e:
        return error_json(e, 403)
    except ValidationError as e:
        return error_json(e, 400)
    except ConflictError as e:
        return error_json(e, 409)
    except Exception:
        current_app.logger.exception("Failed to update user")
        return server_error()


@users_bp.post("/<int:user_id>/change-password")
@require_auth
def change_password_route(user_id: int):
    """
    Body: {"new_password", "current_password"?}

    Any user may change their own password by confirming the current one;
    changing another user's password needs MANAGER or above.
    """
    try:
        data = request.get_json(silent=True) or {}
        new_password = data.get("new_password")
        if not isinstance(new_password, str) or not new_password:
            return jsonify({"error": "new_password required"}), 400

        user_service.change_password(
            org_id=g.org_id,
            user_id=user_id,
            new_password=new_password,
            current_password=data.get("current_password"),
            actor=g.actor,
        )
        return jsonify({"message": "Password changed"})
    except UserNotFoundError as e:
        return error_json(e, 404)
    except PermissionDeniedError as e:
        return error_json(e, 403)
    except (ValidationError, PasswordValidationError) as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to change password")
        return server_error()
