from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, InvalidWindowError
from .time_utils import DateLike, parse_iso_datetime, to_utc_naive


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


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
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return to_utc_naive(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def parse_window(window_start: DateLike, window_end: DateLike) -> tuple[datetime, datetime]:
    """
    Normalize an availability query window.

    Both bounds are required; the window is inclusive so start == end is a
    valid single-instant query. Raises InvalidWindowError, never defaults.
    """
    if window_start is None or window_end is None or window_start == "" or window_end == "":
        raise InvalidWindowError(
            "Start date and end date are required",
            detail={"window_start": _raw(window_start), "window_end": _raw(window_end)},
        )
    try:
        start = to_utc_naive(window_start)
        end = to_utc_naive(window_end)
    except ValueError:
        raise InvalidWindowError(
            "Window bounds must be ISO-8601 datetimes",
            detail={"window_start": _raw(window_start), "window_end": _raw(window_end)},
        )
    # Whitespace-only strings parse to None
    if start is None or end is None:
        raise InvalidWindowError(
            "Start date and end date are required",
            detail={"window_start": _raw(window_start), "window_end": _raw(window_end)},
        )
    if end < start:
        raise InvalidWindowError(
            "Window end must not be before window start",
            detail={"window_start": _raw(window_start), "window_end": _raw(window_end)},
        )
    return start, end


def _raw(value: Any) -> Any:
    return value.isoformat() if hasattr(value, "isoformat") else value


def order_window_errors(
    *,
    start_date: datetime | None = None,
    return_due_date: datetime | None = None,
    setup_start: datetime | None = None,
    order_start: datetime | None = None,
    order_end: datetime | None = None,
    cleanup_end: datetime | None = None,
) -> list[str]:
    """
    Check the exactly-one-window-form rule and each form's ordering.

    Returns every violated rule (empty list when valid).
    """
    errors = []

    simple_fields = (start_date, return_due_date)
    extended_fields = (setup_start, order_start, order_end, cleanup_end)
    has_simple = any(v is not None for v in simple_fields)
    has_extended = any(v is not None for v in extended_fields)

    if has_simple and has_extended:
        errors.append("Provide either Start/Return dates or the extended Order window, not both")
    elif not has_simple and not has_extended:
        errors.append("Either Start/Return dates or Order Start/End must be provided")

    if has_simple:
        if start_date is None or return_due_date is None:
            errors.append("Start date and return due date are both required")
        elif return_due_date <= start_date:
            errors.append("Return due date must be after start date")

    if has_extended:
        if order_start is None or order_end is None:
            errors.append("Order Start and Order End are both required for an extended window")
        else:
            if order_end <= order_start:
                errors.append("Order End must be after Order Start")
            if setup_start is not None and order_start < setup_start:
                errors.append("Order Start must be on/after Setup Start")
            if cleanup_end is not None and cleanup_end < order_end:
                errors.append("Cleanup End must be on/after Order End")

    return errors


def enforce_rules_order_window(patch: dict) -> None:
    errors = order_window_errors(
        start_date=patch.get("start_date"),
        return_due_date=patch.get("return_due_date"),
        setup_start=patch.get("setup_start"),
        order_start=patch.get("order_start"),
        order_end=patch.get("order_end"),
        cleanup_end=patch.get("cleanup_end"),
    )
    if errors:
        raise ValidationError("; ".join(errors), detail={"errors": errors})


def enforce_rules_requested_quantity(quantity: Any, item_id: Any = None) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError(
            "Quantity must be greater than 0",
            detail={"item_id": item_id, "quantity": quantity},
        )
    return quantity


def enforce_rules_line(quantity: Any, price_per_day_cents: Any) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    if (
        not isinstance(price_per_day_cents, int)
        or isinstance(price_per_day_cents, bool)
        or price_per_day_cents < 0
    ):
        raise ValidationError("price_per_day_cents must be an integer >= 0")
    if price_per_day_cents > MAX_PRICE_CENTS:
        raise ValidationError(
            f"price_per_day_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})"
        )
