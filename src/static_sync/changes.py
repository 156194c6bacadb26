# src/static_sync/changes.py
"""
Change detection against the remote bucket state.

Fingerprints are computed the way S3 reports ETags, so they can be compared
with the listing by exact string match. Objects uploaded with a single
request carry the quoted MD5 of their body. Objects uploaded in N parts
carry the quoted MD5 of the concatenated part digests followed by `-N`.
The uploader uses `PART_SIZE` for its parts, so both sides agree.
"""

import hashlib
import logging
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

logger: logging.Logger = logging.getLogger(__name__)

PART_SIZE: int = 8 * 1024 * 1024


class ChangeKind(Enum):
    """Classification of a local object against the remote state."""

    UNCHANGED = "unchanged"
    CHANGED = "changed"
    NEW = "new"


def _quoted(digest: str) -> str:
    return f'"{digest}"'


def bytes_fingerprint(data: bytes) -> str:
    """Returns the ETag of a body uploaded in one request."""
    return _quoted(hashlib.md5(data).hexdigest())


def file_fingerprint(path: Path, part_size: int = PART_SIZE) -> Optional[str]:
    """
    Computes the ETag S3 reports for a file uploaded by this tool.

    Args:
        path (Path): The local file.
        part_size (int): The multipart part size used for uploads.

    Returns:
        Optional[str]: The fingerprint, or None if the file could not be read.
    """
    part_digests: List[bytes] = []
    try:
        with path.open("rb") as f:
            while True:
                chunk: bytes = f.read(part_size)
                if not chunk:
                    break
                part_digests.append(hashlib.md5(chunk).digest())
    except OSError as e:
        logger.warning(f"Could not fingerprint '{path}', will re-upload: {e}")
        return None

    if not part_digests:
        return bytes_fingerprint(b"")
    if len(part_digests) == 1:
        return _quoted(part_digests[0].hex())
    combined: str = hashlib.md5(b"".join(part_digests)).hexdigest()
    return _quoted(f"{combined}-{len(part_digests)}")


def classify(
    key: str, fingerprint: Optional[str], remote: Mapping[str, str]
) -> ChangeKind:
    """
    Classifies an object by comparing its fingerprint with the remote ETag.

    Args:
        key (str): The storage key.
        fingerprint (str, optional): The local fingerprint, None if unknown.
        remote (Mapping[str, str]): Remote keys mapped to their ETags.

    Returns:
        ChangeKind: `UNCHANGED` only on an exact match.
    """
    remote_fingerprint: Optional[str] = remote.get(key)
    if remote_fingerprint is None:
        return ChangeKind.NEW
    if fingerprint is not None and fingerprint == remote_fingerprint:
        return ChangeKind.UNCHANGED
    return ChangeKind.CHANGED
