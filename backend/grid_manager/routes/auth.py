# Overview: Login, logout, tenant sign-up and current-session endpoints.

"""
Authentication API routes.

Tokens are opaque bearer tokens (see session_service). New organizations
sign up through register-tenant; further users are added by managers
through /api/users or by administrators through the CLI.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service, permission_service, session_service, tenant_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by email/password and open a session.

    Body: {"email", "password", "org_slug"?}. org_slug is only needed when
    the same email exists in more than one organization.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        org_slug = data.get("org_slug")

        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(email, password, org_slug=org_slug)
        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {email.strip().lower()}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "org_id": session.org_id,
            "branch_id": session.branch_id,
            "message": "Login successful",
        }), 200

    except session_service.SessionError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/register-tenant")
def register_tenant_route():
    """
    Create a new organization with its main branch and an ADMIN user, and
    sign that user in.

    Body: {"tenant_name", "name", "email", "password"}
    """
    if not current_app.config.get("ALLOW_TENANT_REGISTRATION", True):
        return jsonify({"error": "Registration is disabled"}), 403

    try:
        data = request.get_json(silent=True) or {}
        fields = {key: data.get(key) for key in ("tenant_name", "name", "email", "password")}
        missing = sorted(key for key, value in fields.items() if not isinstance(value, str) or not value.strip())
        if missing:
            return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

        org, branch, user = tenant_service.register_tenant(**fields)
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        current_app.logger.info("Registered organization %s (%s) for %s", org.id, org.slug, user.email)

        return jsonify({
            "user": user.to_dict(),
            "organization": org.to_dict(),
            "branch": branch.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Registration successful",
        }), 201

    except (tenant_service.OrganizationError, auth_service.PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register tenant")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        token = request.headers["Authorization"].split(" ", 1)[1].strip()
        session_service.revoke_session(token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    context = g.session_context
    return jsonify({
        "user": context.user.to_dict(),
        "org_id": context.org_id,
        "branch_id": context.branch_id,
        "session": context.session.to_dict(),
    })
