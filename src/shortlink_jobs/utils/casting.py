"""Strict casting helpers for environment-provided scheduler settings."""

from typing import Any

_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def to_bool(value: Any) -> bool:
    """Parse booleans from strings while rejecting ambiguous values.

    :param value: Value to convert; accepts bools or truthy/falsy strings.
    :return: Parsed boolean value.
    :raises ValueError: If ``value`` cannot be interpreted as a boolean.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE:  return True
        if s in _FALSE: return False
    raise ValueError(f"Cannot strictly parse bool from: {value!r}")


def to_positive_int(value: Any, *, name: str = "value") -> int:
    """Parse a strictly positive integer such as an interval or batch size.

    :param value: Integer or decimal string.
    :param name: Setting name used in the error message.
    :return: Parsed integer.
    :raises ValueError: If ``value`` is not an integer greater than zero.
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse {name} from bool: {value!r}")
    try:
        parsed = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Cannot parse {name} as int: {value!r}") from exc
    if parsed <= 0:
        raise ValueError(f"Invalid {name}; expected >0 but got {parsed}")
    return parsed
