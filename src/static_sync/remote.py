# src/static_sync/remote.py
"""Enumeration of the objects currently stored in the target bucket."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from static_sync.exceptions import ListingError
from static_sync.keys import listing_prefix

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class RemoteState:
    """
    Snapshot of the bucket taken before syncing.

    Attributes:
        etags (Dict[str, str]): Keys mapped to the ETag reported by the store.
        keys (List[str]): Every listed key, including those without an ETag.
    """

    etags: Dict[str, str] = field(default_factory=dict)
    keys: List[str] = field(default_factory=list)


async def list_remote_objects(
    client: "S3Client", bucket: str, prefix: Optional[str] = None
) -> RemoteState:
    """
    Pages through the bucket listing until the continuation token runs out.

    Args:
        client (S3Client): An initialized S3 client.
        bucket (str): The bucket to enumerate.
        prefix (str, optional): The configured bucket prefix.

    Returns:
        RemoteState: The keys and ETags found. An empty bucket is valid.

    Raises:
        ListingError: If any page cannot be retrieved.
    """
    list_prefix: str = listing_prefix(prefix)
    logger.info(f"Listing objects under 's3://{bucket}/{list_prefix}'...")
    paginator: "ListObjectsV2Paginator" = client.get_paginator("list_objects_v2")
    pages: AsyncIterator["ListObjectsV2OutputTypeDef"] = paginator.paginate(
        Bucket=bucket, Prefix=list_prefix
    )

    state: RemoteState = RemoteState()
    try:
        async for page in pages:
            for obj in page.get("Contents", []):
                key: Optional[str] = obj.get("Key")
                if not key:
                    continue
                state.keys.append(key)
                etag: Optional[str] = obj.get("ETag")
                if etag:
                    state.etags[key] = etag
    except (ClientError, BotoCoreError) as e:
        raise ListingError(f"Could not enumerate bucket '{bucket}': {e}") from e

    logger.info(f"Found {len(state.keys)} existing objects.")
    return state
