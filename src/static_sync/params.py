# src/static_sync/params.py
"""
Per-key upload parameter overrides.

Overrides are an ordered sequence of `(glob, partial put-object params)`
pairs. Every pattern that matches a key is applied in order with a shallow
merge, so later entries win field by field.
"""

import fnmatch
import mimetypes
from typing import Any, Dict, Iterable, Optional, Tuple

from static_sync.config import ParamOverrides
from static_sync.keys import join_prefix

FALLBACK_CONTENT_TYPE: str = "application/octet-stream"

NO_CACHE: Dict[str, str] = {"CacheControl": "public, max-age=0, must-revalidate"}
IMMUTABLE: Dict[str, str] = {"CacheControl": "public, max-age=31536000, immutable"}

# `*` crosses `/` under fnmatch, so `*.html` covers every directory.
CACHING_PARAMS: ParamOverrides = (
    ("*.html", NO_CACHE),
    ("page-data/*.json", NO_CACHE),
    ("app-data.json", NO_CACHE),
    ("chunk-map.json", NO_CACHE),
    ("static/*", IMMUTABLE),
    ("*.js", IMMUTABLE),
    ("*.css", IMMUTABLE),
    ("sw.js", NO_CACHE),
)


def prefixed_caching_params(prefix: Optional[str]) -> ParamOverrides:
    """
    Returns the default caching overrides, scoped under the bucket prefix.

    Args:
        prefix (str, optional): The configured bucket prefix.

    Returns:
        ParamOverrides: The caching overrides with prefixed patterns.
    """
    if not prefix:
        return CACHING_PARAMS
    return tuple(
        (join_prefix(prefix, pattern), dict(override))
        for pattern, override in CACHING_PARAMS
    )


def merge_params(*sources: Iterable[Tuple[str, Dict[str, Any]]]) -> ParamOverrides:
    """
    Concatenates override sequences, keeping a single entry per pattern.

    A pattern defined again in a later source replaces the earlier entry's
    value but keeps its position in the order.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for source in sources:
        for pattern, override in source:
            merged[pattern] = dict(override)
    return tuple(merged.items())


def resolve_params(key: str, params: ParamOverrides) -> Dict[str, Any]:
    """
    Folds every matching override for a key into one parameter dict.

    Args:
        key (str): The storage key being uploaded.
        params (ParamOverrides): The ordered overrides.

    Returns:
        Dict[str, Any]: The merged put-object parameters.
    """
    resolved: Dict[str, Any] = {}
    for pattern, override in params:
        if fnmatch.fnmatchcase(key, pattern):
            resolved.update(override)
    return resolved


def guess_content_type(path: str) -> str:
    content_type: Optional[str]
    content_type, _ = mimetypes.guess_type(path)
    return content_type or FALLBACK_CONTENT_TYPE
