"""
Typed system configuration per organization.

SystemConfig is the single place where configuration keys, their types and
their defaults are declared. Stored rows that are missing or hold a value of
the wrong type fall back to the default on read; writes are validated
strictly and reject unknown keys.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from typing import Any

from ..extensions import db
from ..models import OrganizationSetting
from ..models.orders import CURRENCIES


class SettingsError(ValueError):
    pass


class SettingsValidationError(SettingsError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class SystemConfig:
    """
    Server-side readers: allow_negative_stock (stock guard),
    stock_warning_threshold and max_stock_alerts (stock report),
    default_currency (new orders and payments) and enable_audit_log.
    date_format, auto_backup and debug_mode are stored for the client only.
    """
    allow_negative_stock: bool = False
    stock_warning_threshold: int = 120
    default_currency: str = "ARS"
    date_format: str = "DD/MM/YYYY"
    auto_backup: bool = True
    enable_audit_log: bool = True
    max_stock_alerts: int = 50
    debug_mode: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_SYSTEM_CONFIG = SystemConfig()

DATE_FORMATS = ("DD/MM/YYYY", "MM/DD/YYYY", "YYYY-MM-DD")

# key -> (type, min, max) for numbers, (type, min_len, max_len) for strings
_CONSTRAINTS: dict[str, tuple[type, int | None, int | None]] = {
    "allow_negative_stock": (bool, None, None),
    "stock_warning_threshold": (int, 0, 1000),
    "default_currency": (str, 1, 10),
    "date_format": (str, 2, 20),
    "auto_backup": (bool, None, None),
    "enable_audit_log": (bool, None, None),
    "max_stock_alerts": (int, 0, 10000),
    "debug_mode": (bool, None, None),
}

# Keys restricted to a fixed set of values
_CHOICES: dict[str, tuple[str, ...]] = {
    "default_currency": CURRENCIES,
    "date_format": DATE_FORMATS,
}


def _is_type(value: Any, expected: type) -> bool:
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


def _coerce_update(key: str, value: Any) -> Any:
    expected, low, high = _CONSTRAINTS[key]

    if expected is int:
        # Numeric strings are accepted ("150"), anything else is not
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not _is_type(value, int):
            raise SettingsValidationError(f"{key} must be an integer", details={"field": key})
        if value < low or value > high:
            raise SettingsValidationError(
                f"{key} must be between {low} and {high}", details={"field": key}
            )
        return value

    if expected is str:
        if not isinstance(value, str):
            raise SettingsValidationError(f"{key} must be a string", details={"field": key})
        value = value.strip()
        if len(value) < low or len(value) > high:
            raise SettingsValidationError(
                f"{key} must be {low}-{high} characters", details={"field": key}
            )
        choices = _CHOICES.get(key)
        if choices is not None and value not in choices:
            raise SettingsValidationError(
                f"{key} must be one of: {', '.join(choices)}",
                details={"field": key, "allowed": list(choices)},
            )
        return value

    if not isinstance(value, bool):
        raise SettingsValidationError(f"{key} must be a boolean", details={"field": key})
    return value


def get_system_config(org_id: int) -> SystemConfig:
    rows = db.session.query(OrganizationSetting).filter_by(org_id=org_id).all()
    stored = {row.key: row.value for row in rows}

    values = {}
    for f in fields(SystemConfig):
        expected = _CONSTRAINTS[f.name][0]
        raw = stored.get(f.name)
        if raw is not None and _is_type(raw, expected) and raw in _CHOICES.get(f.name, (raw,)):
            values[f.name] = raw
    return SystemConfig(**values)


def update_system_config(org_id: int, updates: dict | None, user_id: int | None = None) -> SystemConfig:
    """
    Validate and persist a partial update; returns the merged config.

    Raises SettingsValidationError on unknown keys or invalid values.
    Nothing is written unless every key validates.
    """
    if not isinstance(updates, dict):
        raise SettingsValidationError("Settings payload must be an object")

    unknown = sorted(set(updates) - set(_CONSTRAINTS))
    if unknown:
        raise SettingsValidationError(
            f"Unknown settings: {', '.join(unknown)}", details={"unknown": unknown}
        )

    cleaned = {key: _coerce_update(key, value) for key, value in updates.items()}

    existing = {
        row.key: row
        for row in db.session.query(OrganizationSetting).filter_by(org_id=org_id).all()
    }
    for key, value in cleaned.items():
        row = existing.get(key)
        if row is None:
            row = OrganizationSetting(org_id=org_id, key=key)
            db.session.add(row)
        row.value = value
        row.updated_by_user_id = user_id

    db.session.commit()
    return get_system_config(org_id)
