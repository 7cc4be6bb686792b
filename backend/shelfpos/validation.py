from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

_CENT = Decimal("0.01")
# Integer digits accepted for an amount; keeps cent quantization within Decimal precision
_MAX_AMOUNT_DIGITS = 12


class ApiError(Exception):
    """
    Base for errors that map onto an HTTP response.

    code is the machine-readable tag clients switch on (e.g. "InsufficientStock");
    details carries the failing product / quantity / shortfall.
    """
    status_code = 500
    default_code = "InternalError"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details or {}

    def to_response(self) -> tuple[dict, int]:
        body = {"success": False, "error": self.code, "message": str(self)}
        if self.details:
            body["details"] = self.details
        return body, self.status_code


class ValidationError(ApiError, ValueError):
    """400-level input problem."""
    status_code = 400
    default_code = "ValidationError"


class ConflictError(ApiError, ValueError):
    """409-level business rule conflict (e.g., not enough stock)."""
    status_code = 409
    default_code = "Conflict"


class NotFoundError(ApiError, LookupError):
    """404: record missing or owned by another account."""
    status_code = 404
    default_code = "NotFound"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: payload keys clients are allowed to set (security boundary)
    - required_on_create: payload keys required for POST
    - column_map: payload key -> model column key where the names differ
    - amount_fields: payload key -> cents column, parsed as decimal amounts
    - choices: payload key -> allowed values
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    column_map: dict[str, str] = field(default_factory=dict)
    amount_fields: dict[str, str] = field(default_factory=dict)
    choices: dict[str, list[str]] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def to_decimal(value: Any, field_name: str, *, code: str | None = None) -> Decimal:
    """
    Parse a currency amount (number or numeric string) into an exact Decimal.

    Rejects booleans, NaN/infinity and negatives. No rounding is applied.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number", code=code)

    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field_name} must be a finite number", code=code)

    if isinstance(value, (int, float)):
        raw = str(value)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
    else:
        raise ValidationError(f"{field_name} must be a number", code=code)

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a number", code=code)

    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number", code=code)
    if amount < 0:
        raise ValidationError(f"{field_name} must be >= 0", code=code)
    if amount.adjusted() >= _MAX_AMOUNT_DIGITS:
        raise ValidationError(f"{field_name} is too large", code=code)

    return amount


def decimal_to_cents(amount: Decimal) -> int:
    """Round half-up to the cent and return whole cents."""
    return int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def to_cents(value: Any, field_name: str, *, code: str | None = None) -> int:
    """Parse a decimal currency amount into cents, rounded half-up."""
    return decimal_to_cents(to_decimal(value, field_name, code=code))


def to_amount(cents: int) -> float:
    """Cents -> decimal amount for JSON output."""
    return round(cents / 100, 2)


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
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a string")
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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a patch dict keyed by model column.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.amount_fields:
            patch[policy.amount_fields[k]] = to_cents(raw, k)
            continue

        col_key = policy.column_map.get(k, k)
        col = cols[col_key]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[col_key] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} cannot exceed {col.type.length} characters")

        allowed = policy.choices.get(k)
        if allowed is not None:
            if isinstance(val, str):
                val = val.upper()
            if val not in allowed:
                raise ValidationError(f"Invalid {k}: must be one of {', '.join(allowed)}")

        patch[col_key] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "quantity" in patch and patch["quantity"] is not None:
        if patch["quantity"] < 0:
            raise ValidationError("quantity cannot be negative")

    if "price_cents" in patch and patch["price_cents"] is not None:
        if patch["price_cents"] > MAX_PRICE_CENTS:
            raise ValidationError(f"price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")
