# Overview: Flask API routes for reports (ANALYST and above).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ANALYST
from ..services import reporting_service
from ..services.reporting_service import ReportError
from ..validation import ValidationError
from .responses import error_json, parse_date_range, parse_int_arg, server_error


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@require_auth
@require_role(ROLE_ANALYST)
def sales_report_route():
    """Query params: start_date, end_date, branch_id."""
    try:
        start, end = parse_date_range(request.args)
        branch_id = parse_int_arg(request.args.get("branch_id"), "branch_id")
        if g.branch_id is not None:
            branch_id = g.branch_id
        report = reporting_service.sales_report(org_id=g.org_id, start=start, end=end, branch_id=branch_id)
        return jsonify(report)
    except (ValidationError, ReportError) as e:
        return error_json(e, 400)
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return server_error()


@reports_bp.get("/stock")
@require_auth
@require_role(ROLE_ANALYST)
def stock_report_route():
    return jsonify(reporting_service.stock_report(org_id=g.org_id))


@reports_bp.get("/customer-accounts")
@require_auth
@require_role(ROLE_ANALYST)
def customer_accounts_route():
    return jsonify(reporting_service.customer_accounts_report(org_id=g.org_id))


@reports_bp.get("/dashboard")
@require_auth
@require_role(ROLE_ANALYST)
def dashboard_route():
    """Branch-pinned users get their branch's sales and purchase totals."""
    return jsonify(reporting_service.dashboard_summary(org_id=g.org_id, branch_id=g.branch_id))


@reports_bp.get("/recent-activity")
@require_auth
def recent_activity_route():
    """Any role; sellers only see their own sales."""
    return jsonify(reporting_service.recent_activity(actor=g.actor))
