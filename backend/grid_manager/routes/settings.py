# Overview: Flask API routes for the typed per-organization system configuration.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_MANAGER
from ..services import settings_service
from ..services.settings_service import SettingsValidationError
from .responses import error_json, server_error


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("/system")
@require_auth
@require_role(ROLE_MANAGER)
def get_system_settings():
    config = settings_service.get_system_config(g.org_id)
    return jsonify({"settings": config.to_dict()})


@settings_bp.put("/system")
@require_auth
@require_role(ROLE_MANAGER)
def update_system_settings():
    """Partial update; unknown keys and invalid values are rejected as a whole."""
    try:
        config = settings_service.update_system_config(
            g.org_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"settings": config.to_dict()})
    except SettingsValidationError as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to update system settings")
        return server_error()
