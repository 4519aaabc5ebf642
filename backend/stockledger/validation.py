from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, Date
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_date


# Maximum money amount: 9,999,999,999.99 (Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")
CENT = Decimal("0.01")

# Integer columns are 32-bit signed
MAX_INT = 2**31 - 1
MIN_INT = -(2**31)


class ValidationError(ValueError):
    """422-level input problem."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level: referenced id does not exist."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _int_in_range(field: str, value: int) -> int:
    if value > MAX_INT or value < MIN_INT:
        raise ValidationError(f"{field} is out of range", {field: "is out of range"})
    return value


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific
    notation, and anything outside the 32-bit column range.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return _int_in_range(field, value)
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{field} must be a plain integer", {field: "must be a plain integer"})
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})
        return _int_in_range(field, parsed)
    raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})


def coerce_amount(field: str, value: Any) -> Decimal:
    """Money amounts: numbers or numeric strings, >= 0, rounded to cents."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0", {field: "must be >= 0"})
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}", {field: f"cannot exceed {MAX_AMOUNT}"})
    return amount.quantize(CENT)


def coerce_date(field: str, value: Any) -> date:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date", {field: "must be an ISO-8601 date"})
    if parsed is None:
        raise ValidationError(f"{field} is required", {field: "is required"})
    return parsed


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Numeric):
        return coerce_amount(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
            return True
        if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
            return False
        raise ValidationError(f"{col.key} must be a boolean", {col.key: "must be a boolean"})

    if isinstance(coltype, Date):
        return coerce_date(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", {k: "not allowed"})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", {k: "unknown field"})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {k: "cannot be null"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", {k: "cannot be blank"})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(
                    f"{k} exceeds max length {col.type.length}",
                    {k: f"exceeds max length {col.type.length}"},
                )

        patch[k] = val

    return patch


def validate_line_items(raw_items: Any, *, price_field: str) -> list[dict]:
    """
    Normalize purchase/sale line items.

    Each item needs product_id, quantity (int >= 1) and the price field
    (cost_price for purchases, selling_price for sales; >= 0).
    Product existence is checked later by the ledger, inside the transaction.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", {"items": "must contain at least one item"})

    cleaned = []
    for index, raw in enumerate(raw_items):
        prefix = f"items.{index}"
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", {prefix: "must be an object"})

        missing = [f for f in ("product_id", "quantity", price_field) if raw.get(f) is None]
        if missing:
            raise ValidationError(
                f"{prefix} is missing: {', '.join(missing)}",
                {f"{prefix}.{f}": "is required" for f in missing},
            )

        product_id = coerce_int(f"{prefix}.product_id", raw["product_id"])
        quantity = coerce_int(f"{prefix}.quantity", raw["quantity"])
        if quantity < 1:
            raise ValidationError(f"{prefix}.quantity must be >= 1", {f"{prefix}.quantity": "must be >= 1"})
        price = coerce_amount(f"{prefix}.{price_field}", raw[price_field])

        cleaned.append({"product_id": product_id, "quantity": quantity, price_field: price})

    return cleaned


def line_total(items: list[dict], price_field: str) -> Decimal:
    return sum((item["quantity"] * item[price_field] for item in items), Decimal("0.00"))
