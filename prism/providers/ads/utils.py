"""Field parsing shared by the connectors' normalization code."""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from prism.errors import DataValidationError

T = TypeVar("T")


def to_float(val: Any, field_name: str, platform: str) -> float:
    """
    Parse a numeric API field. Missing/empty is 0; anything else that does not
    parse to a finite number is a DataValidationError (never NaN).
    """
    if val is None or val == "":
        return 0.0
    try:
        if isinstance(val, bool):
            raise TypeError("bool is not a metric")
        out = float(val) if isinstance(val, (int, float)) else float(str(val).replace(",", ""))
    except (TypeError, ValueError) as e:
        raise DataValidationError(f"{field_name} is not numeric: {val!r}", platform=platform) from e
    if math.isnan(out) or math.isinf(out):
        raise DataValidationError(f"{field_name} is not finite: {val!r}", platform=platform)
    return out


def to_int(val: Any, field_name: str, platform: str) -> int:
    return int(to_float(val, field_name, platform))


def require_list(data: Any, key: str, platform: str) -> List[Dict[str, Any]]:
    """Return ``data[key]`` as a list of dicts, or fail validation."""
    if not isinstance(data, dict):
        raise DataValidationError(f"expected an object with '{key}'", platform=platform)
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise DataValidationError(f"'{key}' is not a list", platform=platform)
    return [item for item in items if isinstance(item, dict)]


def group_by(items: Iterable[T], key: Callable[[T], str]) -> "OrderedDict[str, List[T]]":
    """Group preserving first-seen order of keys."""
    groups: "OrderedDict[str, List[T]]" = OrderedDict()
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def error_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("message")
        if isinstance(err, str):
            return err
        if isinstance(body.get("errors"), str):
            return body["errors"]
    return None
