from __future__ import annotations

from typing import Any

from flask import request

from .errors import ValidationError


# Maximum money amount accepted from clients: 9,999,999,999.99 (999,999,999,999 cents)
# Rejects overflow-sized values before they reach integer columns
MAX_AMOUNT_CENTS = 999_999_999_999


def get_json_body() -> dict:
    """Request body as a JSON object (400 when missing or not an object)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def coerce_int(value: Any, key: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for client input.

    Accepts ints and plain-digit strings; rejects bools, floats and
    scientific notation ("1e3").
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        body = stripped[1:] if stripped.startswith("-") else stripped
        if not body.isdigit():
            raise ValidationError(f"{key} must be an integer")
        result = int(stripped)
    else:
        raise ValidationError(f"{key} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return result


def require_int(data: dict, key: str, *, minimum: int | None = None) -> int:
    if key not in data or data[key] is None:
        raise ValidationError(f"Missing required field: {key}")
    return coerce_int(data[key], key, minimum=minimum)


def optional_int(data: dict, key: str, *, minimum: int | None = None) -> int | None:
    if data.get(key) is None:
        return None
    return coerce_int(data[key], key, minimum=minimum)


def require_amount(data: dict, key: str) -> int:
    amount = require_int(data, key, minimum=1)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} exceeds maximum of {MAX_AMOUNT_CENTS}")
    return amount


def optional_str(data: dict, key: str, *, max_length: int = 255) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value or None


def require_str(data: dict, key: str, *, max_length: int = 255) -> str:
    value = optional_str(data, key, max_length=max_length)
    if value is None:
        raise ValidationError(f"Missing required field: {key}")
    return value


def require_list(data: dict, key: str) -> list:
    value = data.get(key)
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


def optional_bool(data: dict, key: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{key} must be a boolean")
