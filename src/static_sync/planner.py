# src/static_sync/planner.py
"""
The plan stage: compiles the site's redirects into deploy artifacts.

The artifacts are handed to the deploy stage through a handful of JSON files
in a cache directory, so the two stages can run as separate processes.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from static_sync.config import DeployOptions, ParamOverrides
from static_sync.exceptions import ConfigError
from static_sync.params import merge_params, prefixed_caching_params
from static_sync.routing import (
    PageSpec,
    RedirectMarker,
    RedirectSpec,
    RoutingRule,
    compile_redirects,
    match_path_rewrites,
)

logger: logging.Logger = logging.getLogger(__name__)

CONFIG_FILE: str = "s3.config.json"
PARAMS_FILE: str = "s3.params.json"
ROUTING_RULES_FILE: str = "s3.routingRules.json"
SLS_ROUTING_RULES_FILE: str = "s3.sls.routingRules.json"
REDIRECT_OBJECTS_FILE: str = "s3.redirectObjects.json"


@dataclass(frozen=True)
class SiteInput:
    """
    What the site generator produced besides the files themselves.

    Attributes:
        redirects (Sequence[RedirectSpec]): The site's redirects, in order.
        pages (Sequence[PageSpec]): The site's pages.
    """

    redirects: Sequence[RedirectSpec] = ()
    pages: Sequence[PageSpec] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SiteInput":
        return cls(
            redirects=tuple(RedirectSpec.from_dict(r) for r in data.get("redirects", [])),
            pages=tuple(PageSpec.from_dict(p) for p in data.get("pages", [])),
        )


@dataclass(frozen=True)
class PlanArtifacts:
    """
    Everything the deploy stage needs besides the build output.

    Attributes:
        options (DeployOptions): The validated deploy options.
        params (ParamOverrides): The merged upload parameter overrides.
        routing_rules (List[RoutingRule]): The bucket routing rules.
        redirect_markers (List[RedirectMarker]): Redirect objects to write.
    """

    options: DeployOptions
    params: ParamOverrides = ()
    routing_rules: List[RoutingRule] = field(default_factory=list)
    redirect_markers: List[RedirectMarker] = field(default_factory=list)

    def save(self, cache_dir: Path) -> None:
        """
        Writes the hand-off files to a cache directory.

        Args:
            cache_dir (Path): The directory to write to. Created if missing.
        """
        cache_dir.mkdir(parents=True, exist_ok=True)
        _write_json(cache_dir / CONFIG_FILE, self.options.to_dict())
        _write_json(
            cache_dir / PARAMS_FILE,
            {pattern: override for pattern, override in self.params},
        )
        _write_json(
            cache_dir / ROUTING_RULES_FILE,
            [rule.to_boto() for rule in self.routing_rules],
        )
        _write_json(
            cache_dir / SLS_ROUTING_RULES_FILE,
            [rule.to_serverless() for rule in self.routing_rules],
        )
        redirects_path: Path = cache_dir / REDIRECT_OBJECTS_FILE
        if self.redirect_markers:
            _write_json(
                redirects_path, [marker.to_dict() for marker in self.redirect_markers]
            )
        elif redirects_path.exists():
            redirects_path.unlink()
        logger.info(f"Deploy plan written to '{cache_dir}'.")

    @classmethod
    def load(cls, cache_dir: Path) -> "PlanArtifacts":
        """
        Reads the hand-off files written by `save`.

        Args:
            cache_dir (Path): The directory to read from.

        Returns:
            PlanArtifacts: The artifacts. A missing redirect objects file
                means there are none.

        Raises:
            ConfigError: If a required file is missing or malformed.
        """
        options: DeployOptions = DeployOptions.from_dict(
            read_json(cache_dir / CONFIG_FILE)
        )
        raw_params: Dict[str, Dict[str, Any]] = read_json(cache_dir / PARAMS_FILE)
        raw_rules: List[Dict[str, Any]] = read_json(cache_dir / ROUTING_RULES_FILE)
        redirects_path: Path = cache_dir / REDIRECT_OBJECTS_FILE
        raw_markers: List[Dict[str, str]] = (
            read_json(redirects_path) if redirects_path.exists() else []
        )
        try:
            return cls(
                options=options,
                params=tuple(raw_params.items()),
                routing_rules=[RoutingRule.from_boto(rule) for rule in raw_rules],
                redirect_markers=[RedirectMarker.from_dict(m) for m in raw_markers],
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"Malformed deploy plan in '{cache_dir}': {e}") from e


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def read_json(path: Path) -> Any:
    """Reads a JSON file, raising `ConfigError` when it is missing or unusable."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"'{path}' not found.") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read '{path}': {e}") from e


def build_plan(site: SiteInput, options: DeployOptions) -> PlanArtifacts:
    """
    Compiles routing rules, redirect markers and parameter overrides.

    Args:
        site (SiteInput): Redirects and pages from the site generator.
        options (DeployOptions): The validated deploy options.

    Returns:
        PlanArtifacts: The deploy artifacts.

    Raises:
        ConfigError: If the redirects need more routing rules than allowed.
    """
    rewrites: List[RedirectSpec] = (
        match_path_rewrites(site.pages) if options.generate_match_path_rewrites else []
    )
    params: ParamOverrides = merge_params(
        prefixed_caching_params(options.bucket_prefix)
        if options.merge_caching_params
        else (),
        options.params,
    )
    rules: List[RoutingRule]
    markers: List[RedirectMarker]
    rules, markers = compile_redirects(site.redirects, rewrites, options)
    return PlanArtifacts(
        options=options,
        params=params,
        routing_rules=rules,
        redirect_markers=markers,
    )
