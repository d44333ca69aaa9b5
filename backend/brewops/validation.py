from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, JSON
from sqlalchemy.orm import DeclarativeMeta

from brewops.errors import ValidationError
from brewops.models.orders import (
    Order,
    OrderItem,
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    ORDER_TYPES,
    ITEM_SIZES,
    ITEM_STATUSES,
)
from brewops.models.shops import Shop, SHOP_STATUSES


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_MODIFIERS = 20
MAX_MODIFIER_LENGTH = 60


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - choices: enum-like fields and their allowed values
    - min_lengths / min_values: lower bounds not captured by column metadata
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    choices: dict[str, tuple] = field(default_factory=dict)
    min_lengths: dict[str, int] = field(default_factory=dict)
    min_values: dict[str, int] = field(default_factory=dict)
    max_values: dict[str, int] = field(default_factory=dict)


ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "shop_id", "customer_name", "cashier_id", "status", "payment_status",
        "order_type", "table_number", "discount_cents", "tax_cents", "currency",
    },
    required_on_create={"shop_id", "customer_name"},
    choices={
        "status": ORDER_STATUSES,
        "payment_status": PAYMENT_STATUSES,
        "order_type": ORDER_TYPES,
    },
    min_lengths={"customer_name": 2, "currency": 3},
    min_values={"discount_cents": 0, "tax_cents": 0, "shop_id": 1, "cashier_id": 1},
    max_values={"discount_cents": MAX_PRICE_CENTS, "tax_cents": MAX_PRICE_CENTS},
)

# Header patch: shop and creator are fixed for the order's lifetime
ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=ORDER_CREATE_POLICY.writable_fields - {"shop_id"},
    choices=ORDER_CREATE_POLICY.choices,
    min_lengths=ORDER_CREATE_POLICY.min_lengths,
    min_values=ORDER_CREATE_POLICY.min_values,
    max_values=ORDER_CREATE_POLICY.max_values,
)

ORDER_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"menu_item_name", "size", "quantity", "unit_price_cents", "modifiers", "item_status"},
    required_on_create={"menu_item_name", "unit_price_cents"},
    choices={"size": ITEM_SIZES, "item_status": ITEM_STATUSES},
    min_lengths={"menu_item_name": 2},
    min_values={"quantity": 1, "unit_price_cents": 0},
    max_values={"unit_price_cents": MAX_PRICE_CENTS},
)

SHOP_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "status", "city", "address"},
    required_on_create={"name", "description", "city", "address"},
    choices={"status": SHOP_STATUSES},
    min_lengths={"name": 3, "description": 10, "city": 2, "address": 5},
)

SHOP_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=SHOP_CREATE_POLICY.writable_fields | {"archived"},
    choices=SHOP_CREATE_POLICY.choices,
    min_lengths=SHOP_CREATE_POLICY.min_lengths,
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer", field=key)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)", field=key)
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)", field=key)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer", field=key)
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal", field=key)
    raise ValidationError(f"{key} must be an integer", field=key)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean", field=col.key)

    if isinstance(coltype, JSON):
        return value

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a string", field=col.key)
        return str(value).strip()

    # Default: leave as-is
    return value


def _check_bounds(key: str, val: Any, policy: ModelValidationPolicy) -> None:
    allowed = policy.choices.get(key)
    if allowed is not None and val not in allowed:
        raise ValidationError(f"{key} must be one of: {', '.join(allowed)}", field=key)

    min_len = policy.min_lengths.get(key)
    if min_len is not None and isinstance(val, str) and len(val) < min_len:
        raise ValidationError(f"{key} must be at least {min_len} characters", field=key)

    min_val = policy.min_values.get(key)
    if min_val is not None and isinstance(val, int) and val < min_val:
        raise ValidationError(f"{key} must be >= {min_val}", field=key)

    max_val = policy.max_values.get(key)
    if max_val is not None and isinstance(val, int) and val > max_val:
        raise ValidationError(f"{key} cannot exceed {max_val}", field=key)


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
    - a policy allowlist (writable_fields) and bounds
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Every offending field is reported, not just the first one.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: list[dict] = []

    if not partial:
        for f in sorted(policy.required_on_create):
            if f not in payload:
                errors.append({"field": f, "message": f"{f} is required"})

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            errors.append({"field": k, "message": f"Field not allowed: {k}"})
            continue

        col = cols[k]

        if raw is None:
            if not col.nullable:
                errors.append({"field": k, "message": f"{k} cannot be null"})
                continue
            patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)

            # Blank string check for non-nullable text fields
            if isinstance(col.type, (String, Text)) and not col.nullable:
                if isinstance(val, str) and val == "" and k in policy.required_on_create:
                    raise ValidationError(f"{k} cannot be blank", field=k)

            # Max length check for String(n)
            if isinstance(col.type, String) and col.type.length and isinstance(val, str):
                if len(val) > col.type.length:
                    raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

            _check_bounds(k, val, policy)
        except ValidationError as exc:
            errors.extend(exc.errors)
            continue

        patch[k] = val

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    return patch


def _validate_modifiers(value: Any) -> list[str]:
    if not isinstance(value, list):
        raise ValidationError("modifiers must be a list of strings", field="modifiers")
    if len(value) > MAX_MODIFIERS:
        raise ValidationError(f"modifiers cannot exceed {MAX_MODIFIERS} entries", field="modifiers")
    cleaned = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ValidationError("modifiers must be a list of strings", field="modifiers")
        if len(entry.strip()) > MAX_MODIFIER_LENGTH:
            raise ValidationError(f"modifier exceeds max length {MAX_MODIFIER_LENGTH}", field="modifiers")
        cleaned.append(entry.strip())
    return cleaned


def validate_order_header(payload: dict, *, partial: bool) -> dict:
    """Order header fields for create (partial=False) or patch (partial=True)."""
    policy = ORDER_UPDATE_POLICY if partial else ORDER_CREATE_POLICY
    patch = validate_payload(model=Order, payload=payload, policy=policy, partial=partial)
    if patch.get("currency"):
        patch["currency"] = patch["currency"].upper()
    return patch


def validate_order_item(payload: dict) -> dict:
    """
    Validate a new line item and fill defaults.

    Returns a dict ready to be inserted as an OrderItem row.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Each item must be an object", field="items")
    raw = dict(payload)
    modifiers = raw.pop("modifiers", None)

    errors: list[dict] = []
    patch: dict = {}
    try:
        patch = validate_payload(model=OrderItem, payload=raw, policy=ORDER_ITEM_POLICY, partial=False)
    except ValidationError as exc:
        errors.extend(exc.errors or [{"field": "items", "message": exc.message}])

    if modifiers is not None:
        try:
            patch["modifiers"] = _validate_modifiers(modifiers)
        except ValidationError as exc:
            errors.extend(exc.errors)

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    patch.setdefault("size", "medium")
    patch.setdefault("item_status", "queued")
    patch.setdefault("modifiers", [])
    if patch.get("quantity") is None:
        patch["quantity"] = 1
    return patch


def validate_order_items(items: Any) -> list[dict]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list", field="items")

    cleaned = []
    errors: list[dict] = []
    for index, item in enumerate(items):
        try:
            cleaned.append(validate_order_item(item))
        except ValidationError as exc:
            for err in exc.errors:
                errors.append({"field": f"items[{index}].{err['field']}", "message": err["message"]})
    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return cleaned


def validate_shop(payload: dict, *, partial: bool) -> dict:
    policy = SHOP_UPDATE_POLICY if partial else SHOP_CREATE_POLICY
    return validate_payload(model=Shop, payload=payload, policy=policy, partial=partial)


def parse_id(value: Any, field_name: str = "id") -> int:
    """Identifiers are positive integers; anything else is a caller error."""
    try:
        parsed = _coerce_int(field_name, value)
    except ValidationError:
        raise ValidationError(f"Invalid {field_name}.", field=field_name)
    if parsed < 1:
        raise ValidationError(f"Invalid {field_name}.", field=field_name)
    return parsed


def parse_quantity_delta(value: Any, max_delta: int) -> int:
    if value is None:
        raise ValidationError("delta is required", field="delta")
    delta = _coerce_int("delta", value)
    if delta == 0:
        raise ValidationError("delta must be non-zero", field="delta")
    if abs(delta) > max_delta:
        raise ValidationError(f"delta must be between -{max_delta} and {max_delta}", field="delta")
    return delta


def parse_choice(value: Any, field_name: str, allowed: tuple) -> str:
    if value not in allowed:
        raise ValidationError(f"{field_name} must be one of: {', '.join(allowed)}", field=field_name)
    return value


def parse_note_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("text is required", field="text")
    text = value.strip()
    if len(text) > 800:
        raise ValidationError("text exceeds max length 800", field="text")
    return text


def parse_pagination(args, max_limit: int) -> tuple[int, int]:
    errors: list[dict] = []
    page, limit = 1, 10
    try:
        page = _coerce_int("page", args.get("page", 1))
        if page < 1:
            raise ValidationError("page must be >= 1", field="page")
    except ValidationError as exc:
        errors.extend(exc.errors)
    try:
        limit = _coerce_int("limit", args.get("limit", 10))
        if limit < 1 or limit > max_limit:
            raise ValidationError(f"limit must be between 1 and {max_limit}", field="limit")
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return page, limit


def parse_bool_arg(value: Any) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes"}
