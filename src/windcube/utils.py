import math
from numbers import Number
from typing import Any


def safe_get(dct: Any, *keys, default: Any = None) -> Any:
    """Safely get a nested value from dicts."""
    for key in keys:
        if isinstance(dct, dict) and key in dct:
            dct = dct[key]
        else:
            return default
    return dct


def field_of(item: Any, name: str, default: Any = None) -> Any:
    """Reads `name` from a pydantic model or a plain dict."""
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def has_fields(item: Any, *names: str) -> bool:
    if isinstance(item, dict):
        return all(name in item for name in names)
    return all(hasattr(item, name) for name in names)


def is_number(value: Any) -> bool:
    """True for real numbers that are not NaN. Booleans are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, Number):
        return False
    try:
        return not math.isnan(value)
    except TypeError:
        return False


def percentile_of(sim: Any) -> Any:
    """
    The percentile number of a SimResult. Accepts the `{'value': 50}` form,
    a Percentile model and the bare `50` form.
    """
    percentile = field_of(sim, "percentile")
    if isinstance(percentile, Number) and not isinstance(percentile, bool):
        return int(percentile)
    return field_of(percentile, "value")
