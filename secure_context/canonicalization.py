"""
Canonical JSON Encoding

Serializes snapshot data so that identical content produces identical
bytes regardless of key insertion order or producing language.
"""

import json
import math
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - No whitespace between tokens
    - UTF-8 encoding, no BOM, no ASCII escaping
    - Integral floats written as integers (``10.0`` -> ``10``); other
      floats use Python's shortest repr, so exponent forms such as
      ``1e-07`` are not JavaScript's ``1e-7``
    - NaN and Infinity rejected
    - Arrays preserve order

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(
        canonical,
        separators=(',', ':'),
        ensure_ascii=False,
        allow_nan=False,
    ).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    elif isinstance(value, int):
        return value
    elif isinstance(value, float):
        return _canonicalize_number(value)
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_number(value: float) -> Union[int, float]:
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Cannot canonicalize non-finite number: {value}")
    if value.is_integer():
        return int(value)
    return value


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    return [_canonicalize_value(item) for item in arr]
