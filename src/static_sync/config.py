# src/static_sync/config.py
"""
Configuration for the static-sync pipeline.

This module centralizes all configuration. Connection details are read from
environment variables, deploy behaviour comes from an options mapping that
is validated once at plan time and then threaded through every stage as an
immutable dataclass.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from static_sync.exceptions import ConfigError

DEFAULT_ACL: str = "public-read"
DEFAULT_PARALLEL_LIMIT: int = 20
DEFAULT_MAX_RETRIES: int = 3

ParamOverrides = Tuple[Tuple[str, Dict[str, Any]], ...]


def _get_optional_env_var(name: str) -> Optional[str]:
    """
    Retrieves an optional environment variable.

    Args:
        name (str): The name of the environment variable.

    Returns:
        Optional[str]: The value, or None when unset or empty.
    """
    value: Optional[str] = os.environ.get(name)
    return value or None


@dataclass(frozen=True)
class S3Config:
    """
    Connection settings for the S3-compatible endpoint.

    Every value is optional. Anything left unset is resolved by botocore's
    default credential and region chain.

    Attributes:
        endpoint_url (str, optional): The S3 endpoint URL.
        access_key_id (str, optional): The access key ID.
        secret_access_key (str, optional): The secret access key.
        region (str, optional): The AWS region.
    """

    endpoint_url: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("STATIC_SYNC_ENDPOINT_URL")
    )
    access_key_id: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("STATIC_SYNC_ACCESS_KEY_ID")
    )
    secret_access_key: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("STATIC_SYNC_SECRET_ACCESS_KEY")
    )
    region: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("STATIC_SYNC_REGION")
    )

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configured values as aiobotocore client parameters.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        params: Dict[str, Optional[str]] = {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }
        return {name: value for name, value in params.items() if value}


@dataclass(frozen=True)
class DeployOptions:
    """
    Deploy behaviour, built once from the site's options file.

    Attributes:
        bucket_name (str): The target bucket.
        bucket_prefix (str, optional): Key prefix all objects are placed under.
        region (str, optional): Region of the bucket.
        protocol (str, optional): Protocol used to resolve relative redirects.
        hostname (str, optional): Hostname used to resolve relative redirects.
        acl (str, optional): Canned ACL for uploads. None sends no ACL.
        params (ParamOverrides): Ordered glob to put-object parameter overrides.
        merge_caching_params (bool): Prepend the default caching overrides.
        generate_routing_rules (bool): Compile redirects into routing rules.
        generate_redirect_objects_for_permanent_redirects (bool): Implement
            permanent redirects as redirect objects instead of routing rules.
        generate_index_page_for_redirect (bool): Turn a redirect of `/` into
            a redirect object at `index.html`.
        generate_match_path_rewrites (bool): Emit rewrites for client-only
            page match paths.
        remove_nonexistent_objects (bool): Delete remote objects that were not
            part of this run.
        retain_objects_patterns (Tuple[str, ...]): Globs of keys never deleted.
        enable_s3_static_website_hosting (bool): Apply the bucket website
            configuration before syncing.
        parallel_limit (int): Maximum number of concurrent uploads.
        max_retries (int): Retry attempts for each request.
        timeout (float, optional): Request read timeout in milliseconds.
        connect_timeout (float, optional): Connect timeout in milliseconds.
        custom_aws_endpoint_hostname (str, optional): Endpoint override.
        public_dir (Path): The build output directory to sync.
    """

    bucket_name: str
    bucket_prefix: Optional[str] = None
    region: Optional[str] = None
    protocol: Optional[str] = None
    hostname: Optional[str] = None
    acl: Optional[str] = DEFAULT_ACL
    params: ParamOverrides = ()
    merge_caching_params: bool = True
    generate_routing_rules: bool = True
    generate_redirect_objects_for_permanent_redirects: bool = False
    generate_index_page_for_redirect: bool = True
    generate_match_path_rewrites: bool = True
    remove_nonexistent_objects: bool = True
    retain_objects_patterns: Tuple[str, ...] = ()
    enable_s3_static_website_hosting: bool = True
    parallel_limit: int = DEFAULT_PARALLEL_LIMIT
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: Optional[float] = None
    connect_timeout: Optional[float] = None
    custom_aws_endpoint_hostname: Optional[str] = None
    public_dir: Path = field(default_factory=lambda: Path("public"))

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ConfigError("'bucket_name' is a required option.")
        if bool(self.hostname) != bool(self.protocol):
            raise ConfigError(
                "Please either provide both 'hostname' and 'protocol', "
                "or neither of them."
            )
        if self.parallel_limit < 1:
            raise ConfigError(
                f"'parallel_limit' must be a positive integer, "
                f"got {self.parallel_limit}."
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeployOptions":
        """
        Builds validated options from a plain mapping, e.g. a parsed JSON file.

        Args:
            data (Mapping[str, Any]): Option names mapped to values.

        Returns:
            DeployOptions: The validated options.
        """
        known: Dict[str, dataclasses.Field] = {
            f.name: f for f in dataclasses.fields(cls)
        }
        unknown: List[str] = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown options: {', '.join(unknown)}")

        values: Dict[str, Any] = dict(data)
        if not values.get("bucket_name"):
            raise ConfigError("'bucket_name' is a required option.")
        raw_params: Any = values.get("params", {})
        if isinstance(raw_params, Mapping):
            raw_params = list(raw_params.items())
        try:
            values["params"] = tuple(
                (str(pattern), dict(override)) for pattern, override in raw_params
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid 'params' option: {e}") from e
        values["retain_objects_patterns"] = tuple(
            values.get("retain_objects_patterns") or ()
        )
        if "public_dir" in values:
            values["public_dir"] = Path(values["public_dir"])

        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid options: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """Returns a JSON-serializable form accepted by `from_dict`."""
        data: Dict[str, Any] = dataclasses.asdict(self)
        data["params"] = {pattern: dict(override) for pattern, override in self.params}
        data["retain_objects_patterns"] = list(self.retain_objects_patterns)
        data["public_dir"] = str(self.public_dir)
        return data

    def with_bucket(self, bucket_name: str) -> "DeployOptions":
        """Returns a copy deploying to another bucket."""
        return dataclasses.replace(self, bucket_name=bucket_name)
