import json
from typing import Any, Optional

from flowkube.errors import ValidationError


def required(step: dict, key: str, operation: str) -> Any:
    value = step.get(key)
    if value is None or value == "":
        raise ValidationError(f"{operation}.{key} required")
    return value


def json_param(step: dict, key: str, default: Any = None) -> Any:
    """Accept JSON text or an already-decoded value."""
    value = step.get(key, default)
    if not isinstance(value, str):
        return value
    if not value.strip():
        return default
    try:
        return json.loads(value)
    except ValueError as e:
        raise ValidationError(f"{key} is not valid JSON: {e}") from e


def int_param(step: dict, key: str, default: Optional[int] = None) -> Optional[int]:
    value = step.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer, got {value!r}") from e


def bool_param(step: dict, key: str, default: bool = False) -> bool:
    value = step.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if str(value).lower() in ("true", "1", "yes"):
        return True
    if str(value).lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{key} must be a boolean, got {value!r}")
