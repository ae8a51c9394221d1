"""
Cache key derivation.

A key is the first 16 hex characters of the xxh3-64 digest of the canonical
JSON text of ``{"query": ..., "params": ...}``. xxh3 is unseeded, so the same
pair yields the same key in every process.
"""

import logging
from typing import Any, Mapping, Optional

import orjson
import xxhash

from . import json_utils
from .error_handling import CacheKeyError

logger = logging.getLogger(__name__)

KEY_LENGTH = 16


def canonical_source(query: str, params: Optional[Any] = None) -> str:
    """
    Render a (query, params) pair as canonical JSON text.

    Mapping keys are sorted, so two dicts with the same items in a different
    insertion order produce the same text.

    Raises:
        CacheKeyError: If the params cannot be rendered
    """
    if params is None:
        params = {}
    try:
        return json_utils.dumps({"query": query, "params": params}, sort_keys=True)
    except (orjson.JSONEncodeError, TypeError, ValueError, RecursionError) as e:
        raise CacheKeyError(
            f"Cannot serialize query parameters: {e}",
            {"params_type": type(params).__name__},
        ) from e


def digest(source: str) -> str:
    """Fixed-length hex digest of a canonical source string."""
    return xxhash.xxh3_64(source.encode()).hexdigest()[:KEY_LENGTH]


def param_fragment(name: str, value: Any) -> str:
    """
    The exact text a single parameter contributes to ``canonical_source``.

    Inside the canonical text the fragment is always followed by ``,`` or
    ``}``, which lets callers build pattern invalidations that match one
    parameter value and not its prefixes.
    """
    return f"{json_utils.dumps(name)}:{json_utils.dumps(value, sort_keys=True)}"


def derive_key(query: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Derive the cache key for a query and its parameters.

    Args:
        query: SQL text
        params: Bind parameters (mapping or sequence of primitives)

    Returns:
        16-character hex string cache key
    """
    return digest(canonical_source(query, params))
