# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError
from .services.tenant_service import Actor


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session and establish tenant context.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.org_id: tenant id captured at login
    - g.branch_id: branch the session is pinned to (None for org-wide users)
    - g.session_context: the SessionContext
    - g.actor: Actor built from the session

    Returns 401 for a missing, unknown, expired, idle or revoked token and
    for deactivated users or organizations.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.branch_id = context.branch_id
        g.session_context = context
        g.actor = Actor.from_context(context)

        return f(*args, **kwargs)

    return decorated_function


def require_role(minimum_role: str):
    """
    Require the authenticated user's role to be at least minimum_role.

    Must be stacked under @require_auth. Denials are written to
    security_events and answered with 403.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user") or not hasattr(g, "org_id"):
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_role(
                    g.current_user,
                    minimum_role,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_role": minimum_role,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
