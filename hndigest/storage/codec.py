"""Generic document values.

Records reach a backend as maps of tagged values, one tag per variant:

    {"NULL": True}  {"BOOL": b}  {"N": "12"}  {"S": "x"}  {"L": [...]}  {"M": {...}}

Numbers travel as text so integers and floats keep their exact form. Whole
snapshots and digest item lists are stored as a single ``M`` or ``L`` value.
"""

import math
from typing import Any

from hndigest.core.exceptions import IntegrityError

AttributeValue = dict[str, Any]


def encode(value: Any) -> AttributeValue:
    """Encode a plain Python value (None/bool/int/float/str/list/tuple/dict) recursively."""
    if value is None:
        return {"NULL": True}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, int):
        return {"N": str(value)}
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot encode non-finite number: {value!r}")
        return {"N": repr(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, (list, tuple)):
        return {"L": [encode(v) for v in value]}
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"Map keys must be strings, got {type(k).__name__}")
            out[k] = encode(v)
        return {"M": out}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def decode(av: AttributeValue) -> Any:
    """Inverse of encode. Unknown or malformed tags raise IntegrityError."""
    if not isinstance(av, dict) or len(av) != 1:
        raise IntegrityError("Malformed attribute value", details={"value": repr(av)[:200]})
    tag, raw = next(iter(av.items()))
    if tag == "NULL":
        return None
    if tag == "BOOL":
        _expect(tag, raw, bool)
        return raw
    if tag == "N":
        _expect(tag, raw, str)
        return decode_number(raw)
    if tag == "S":
        _expect(tag, raw, str)
        return raw
    if tag == "L":
        _expect(tag, raw, list)
        return [decode(v) for v in raw]
    if tag == "M":
        _expect(tag, raw, dict)
        return {k: decode(v) for k, v in raw.items()}
    raise IntegrityError(f"Unsupported attribute type: {tag}")


def _expect(tag: str, raw: Any, kind: type) -> None:
    if not isinstance(raw, kind):
        raise IntegrityError(
            f"Malformed {tag} attribute: expected {kind.__name__}, got {type(raw).__name__}",
            details={"value": repr(raw)[:200]},
        )


def decode_number(raw: str) -> int | float | str:
    try:
        return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        return float(raw)
    except (TypeError, ValueError):
        # Not expected from encode(); keep the text rather than lose it
        return raw


def encode_item(attrs: dict[str, Any]) -> dict[str, AttributeValue]:
    """Encode each top-level attribute of a record."""
    return {k: encode(v) for k, v in attrs.items()}


def decode_item(item: dict[str, AttributeValue]) -> dict[str, Any]:
    return {k: decode(v) for k, v in item.items()}
