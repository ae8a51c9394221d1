"""
JSON Utilities
==============

Canonical serialization for cache keys and decoding of JSON execution plans,
both through orjson.
"""

import logging
from typing import Any, Union

import orjson

logger = logging.getLogger(__name__)


def _default(obj: Any) -> str:
    # Sets have no stable order; sort their rendered members
    if isinstance(obj, (set, frozenset)):
        return "[" + ",".join(sorted(str(item) for item in obj)) + "]"
    return str(obj)


def _stringify_keys(obj: Any) -> Any:
    """Recursively turn mapping keys into strings so they can be sorted."""
    if isinstance(obj, dict):
        return {str(k): _stringify_keys(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_stringify_keys(item) for item in obj]
    return obj


def dumps(obj: Any, sort_keys: bool = False) -> str:
    """
    Serialize object to JSON string using orjson.

    Args:
        obj: Object to serialize
        sort_keys: Whether to sort dictionary keys (for consistent hashing)

    Returns:
        JSON string
    """
    option = 0
    if sort_keys:
        option |= orjson.OPT_SORT_KEYS
        obj = _stringify_keys(obj)

    # orjson returns bytes, decode to string for compatibility
    return orjson.dumps(obj, option=option, default=_default).decode("utf-8")


def loads(s: Union[str, bytes]) -> Any:
    """Deserialize a JSON string or bytes."""
    return orjson.loads(s)
