# tests/unit/test_config.py
"""Unit tests for configuration loading and validation."""

import os
from pathlib import Path
from typing import Any, Dict
from unittest.mock import patch

import pytest

from static_sync.config import DEFAULT_ACL, DeployOptions, S3Config
from static_sync.exceptions import ConfigError


def test_from_dict_defaults() -> None:
    options: DeployOptions = DeployOptions.from_dict({"bucket_name": "site"})

    assert options.acl == DEFAULT_ACL
    assert options.parallel_limit == 20
    assert options.params == ()
    assert options.public_dir == Path("public")


def test_from_dict_explicit_null_acl_disables_acl() -> None:
    options: DeployOptions = DeployOptions.from_dict({"bucket_name": "site", "acl": None})
    assert options.acl is None


def test_from_dict_keeps_param_order() -> None:
    data: Dict[str, Any] = {
        "bucket_name": "site",
        "params": {
            "*.js": {"CacheControl": "a"},
            "sw.js": {"CacheControl": "b"},
        },
    }
    options: DeployOptions = DeployOptions.from_dict(data)
    assert [pattern for pattern, _ in options.params] == ["*.js", "sw.js"]


@pytest.mark.parametrize(
    "data, message",
    [
        ({}, "'bucket_name' is a required option."),
        ({"bucket_name": "site", "hostname": "example.com"}, "both 'hostname' and 'protocol'"),
        ({"bucket_name": "site", "protocol": "https"}, "both 'hostname' and 'protocol'"),
        ({"bucket_name": "site", "parallel_limit": 0}, "'parallel_limit' must be"),
        ({"bucket_name": "site", "bucketName": "x"}, "Unknown options: bucketName"),
        ({"bucket_name": "site", "params": [1, 2]}, "Invalid 'params' option"),
    ],
)
def test_from_dict_rejects_invalid_options(data: Dict[str, Any], message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        DeployOptions.from_dict(data)


def test_to_dict_round_trips() -> None:
    options: DeployOptions = DeployOptions(
        bucket_name="site",
        protocol="https",
        hostname="example.com",
        params=(("*.html", {"CacheControl": "no-cache"}),),
        retain_objects_patterns=("uploads/*",),
    )
    assert DeployOptions.from_dict(options.to_dict()) == options


def test_with_bucket_overrides_only_the_bucket() -> None:
    options: DeployOptions = DeployOptions(bucket_name="site", bucket_prefix="p")
    other: DeployOptions = options.with_bucket("staging")

    assert other.bucket_name == "staging"
    assert other.bucket_prefix == "p"
    assert options.bucket_name == "site"


def test_s3_config_reads_environment() -> None:
    env: Dict[str, str] = {
        "STATIC_SYNC_ENDPOINT_URL": "http://localhost:9000",
        "STATIC_SYNC_REGION": "eu-west-1",
    }
    with patch.dict(os.environ, env, clear=True):
        config: S3Config = S3Config()

    assert config.as_boto_dict() == {
        "endpoint_url": "http://localhost:9000",
        "region_name": "eu-west-1",
    }
