from __future__ import annotations
from datetime import datetime
from stitchline.time_utils import parse_flexible_date, parse_iso_datetime

from dataclasses import dataclass, field as dataclass_field
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Upper bound for any single quantity field (pieces or centimeters)
MAX_QUANTITY = 100_000_000


class ValidationError(ValueError):
    """400-level input problem. `field` names the offending input when known."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level uniqueness conflict (duplicate SKU code, barcode, order id)."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class CapacityError(ValueError):
    """
    Requested quantity exceeds what the upstream stage has left, or the
    upstream stage has no records at all (available == 0).
    """

    def __init__(self, message: str, *, available: int, requested: int):
        super().__init__(message)
        self.available = available
        self.requested = requested


class NotFoundError(LookupError):
    """Referenced SKU / record / return does not exist."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set
    - required_on_create: fields required when creating
    - non_negative_fields: integer fields that must be >= 0
    - positive_fields: integer fields that must be > 0
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    non_negative_fields: frozenset[str] = frozenset()
    positive_fields: frozenset[str] = frozenset()
    choices: dict[str, tuple[str, ...]] = dataclass_field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
            if "e" in stripped.lower():
                raise ValidationError(
                    f"{col.key} must be a plain integer (scientific notation not allowed)",
                    field=col.key,
                )
            if "." in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)", field=col.key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValidationError(f"{col.key} must be an integer, not a decimal", field=col.key)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", field=col.key)

    # Business dates accept ISO, DD/MM/YYYY, DD-MM-YYYY and spreadsheet serials
    if isinstance(coltype, Date):
        try:
            parsed = parse_flexible_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be a valid date", field=col.key)
        if parsed is None:
            raise ValidationError(f"{col.key} must be a valid date", field=col.key)
        return parsed

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes caller input against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    - sign rules and enumerated choices from the policy
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    if not partial:
        missing = sorted(
            f for f in policy.required_on_create
            if payload.get(f) is None or (isinstance(payload.get(f), str) and not payload[f].strip())
        )
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)):
            if val == "":
                if not col.nullable:
                    raise ValidationError(f"{k} cannot be blank", field=k)
                val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        if isinstance(val, int) and not isinstance(val, bool):
            if k in policy.positive_fields and val <= 0:
                raise ValidationError(f"{k} must be > 0", field=k)
            if k in policy.non_negative_fields and val < 0:
                raise ValidationError(f"{k} must be >= 0", field=k)
            if abs(val) > MAX_QUANTITY and not k.endswith("_cents"):
                raise ValidationError(f"{k} cannot exceed {MAX_QUANTITY}", field=k)

        if k in policy.choices and val is not None and val not in policy.choices[k]:
            allowed = ", ".join(policy.choices[k])
            raise ValidationError(f"{k} must be one of: {allowed}", field=k)

        patch[k] = val

    return patch


def enforce_price_rules(patch: dict, *, field_name: str = "price_cents") -> None:
    if field_name in patch and patch[field_name] is not None:
        price = patch[field_name]
        if price < 0:
            raise ValidationError(f"{field_name} must be >= 0", field=field_name)
        if price > MAX_PRICE_CENTS:
            raise ValidationError(
                f"{field_name} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})",
                field=field_name,
            )
