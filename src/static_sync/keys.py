# src/static_sync/keys.py
"""
Storage key normalization.

Local paths and redirect sources are turned into canonical object keys:
forward-slash separated, without a leading slash, with `index.html`
appended to directory-style paths and an optional bucket prefix in front.
"""

import os
from typing import Optional

INDEX_DOCUMENT: str = "index.html"


def without_leading_slash(path: str) -> str:
    return path.lstrip("/")


def without_trailing_slash(path: str) -> str:
    return path.rstrip("/")


def normalize_key(path: str, prefix: Optional[str] = None, sep: str = os.sep) -> str:
    """
    Map a relative file path or redirect source to a storage key.

    Args:
        path (str): The path to normalize. A trailing separator marks it as
            directory-style.
        prefix (str, optional): Bucket prefix to place in front of the key.
        sep (str): The host path separator to replace with `/`.

    Returns:
        str: The normalized storage key.
    """
    key: str = path.replace(sep, "/") if sep != "/" else path
    key = without_leading_slash(key)
    if key.endswith("/") or key == "":
        key = f"{key}{INDEX_DOCUMENT}"
    if prefix:
        key = join_prefix(prefix, key)
    return key


def join_prefix(prefix: str, key: str) -> str:
    """Join a bucket prefix and a key with exactly one `/` between them."""
    stripped: str = prefix.strip("/")
    if not stripped:
        return without_leading_slash(key)
    return f"{stripped}/{without_leading_slash(key)}"


def listing_prefix(prefix: Optional[str]) -> str:
    """
    Return the prefix used to enumerate objects owned by this deploy.

    A trailing `/` keeps sibling prefixes such as `blog-old/` out of the
    listing when the configured prefix is `blog`.
    """
    if not prefix or not prefix.strip("/"):
        return ""
    return f"{prefix.strip('/')}/"
