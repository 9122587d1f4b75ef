"""Channel naming for live queries.

A channel name identifies one query plus one set of parameters on the
pub/sub transport. Both the server (when it publishes an update) and the
client (when it subscribes) compute the name independently, so the
algorithm here is the wire contract:

    channel_name(query, params) = "query_" + query + "_" + sha256(canonicalize(params))

Canonicalization rules:
- ``None`` at the top level is the empty object ``{}``
- object keys are emitted in a stable order, recursively
- arrays keep their element order (``[1, 2]`` and ``[2, 1]`` differ)
- output is compact JSON with the same text a JavaScript ``JSON.stringify``
  produces for the same value, so integral floats print as integers and
  non-finite floats as ``null``
"""

from __future__ import annotations

import hashlib
import json
import dataclasses
import math
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, TypeAdapter

CHANNEL_PREFIX = "query_"

# Largest array-index key a JavaScript engine orders numerically (2**32 - 2)
_MAX_INDEX_KEY = 4294967294


def _is_index_key(key: str) -> bool:
    if not key.isdigit() or not key.isascii():
        return False
    if len(key) > 1 and key[0] == "0":
        return False
    return int(key) <= _MAX_INDEX_KEY


def _key_order(key: str) -> tuple[int, int, bytes]:
    """Sort key matching JS ``Object.keys().sort()`` rebuilt into an object.

    JavaScript sorts strings by UTF-16 code units, and objects always
    enumerate integer-like keys first in ascending numeric order.
    """
    if _is_index_key(key):
        return (0, int(key), b"")
    return (1, 0, key.encode("utf-16-be"))


def _normalize(value: Any) -> Any:
    """Convert a parameter value into plain JSON data with ordered keys."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_unset=True)
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = TypeAdapter(type(value)).dump_python(value, mode="json", by_alias=True)

    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise TypeError(f"Parameter keys must be strings, got {type(key).__name__}")
        return {key: _normalize(value[key]) for key in sorted(value, key=_key_order)}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_normalize(item) for item in value]

    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def canonicalize(params: Any) -> str:
    """Serialize parameters deterministically.

    Args:
        params: JSON-like value, pydantic model, dataclass instance, or None

    Returns:
        Compact JSON text with object keys in canonical order

    Raises:
        TypeError: If the value contains something that is not JSON data
    """
    if params is None:
        return "{}"
    return json.dumps(_normalize(params), separators=(",", ":"), ensure_ascii=False)


def params_hash(params: Any) -> str:
    """Hex SHA-256 digest of the canonical form."""
    return hashlib.sha256(canonicalize(params).encode("utf-8")).hexdigest()


def channel_name(query_name: str, params: Any = None) -> str:
    """Channel a live query subscribes to for a given parameter set."""
    return f"{CHANNEL_PREFIX}{query_name}_{params_hash(params)}"
