# Overview: Shared JSON response and query-arg helpers for route modules.

from __future__ import annotations

from datetime import timedelta

from flask import jsonify

from ..money import MoneyError, to_cents
from ..validation import ValidationError, parse_date_arg


def error_json(exc: Exception, status: int):
    body = {"error": str(exc)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), status


def server_error():
    return jsonify({"error": "Internal server error"}), 500


def parse_bool_arg(value: str | None, name: str) -> bool | None:
    if value in (None, ""):
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")


def parse_int_arg(value: str | None, name: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def parse_date_range(args) -> tuple:
    """
    start_date/end_date query args. A date-only end_date covers that
    whole day.
    """
    raw_end = args.get("end_date")
    start = parse_date_arg(args.get("start_date"), "start_date")
    end = parse_date_arg(raw_end, "end_date")
    if end is not None and len(raw_end.strip()) == 10:
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    if start and end and start > end:
        raise ValidationError("start_date must be before end_date")
    return start, end


def parse_amount(data: dict, name: str = "amount") -> int:
    """Decimal amount from a JSON body, as cents."""
    try:
        return to_cents(data.get(name), field=name)
    except MoneyError as e:
        raise ValidationError(str(e))
