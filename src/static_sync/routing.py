# src/static_sync/routing.py
"""
Compiles site redirects and rewrites into bucket routing configuration.

Redirects are turned into prefix-matching website routing rules, of which a
bucket accepts at most 50. Redirects that rules cannot carry are emitted as
redirect markers: small objects whose only purpose is their
`WebsiteRedirectLocation` metadata.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import SplitResult, urljoin, urlsplit

from static_sync.config import DeployOptions
from static_sync.exceptions import ConfigError
from static_sync.keys import (
    INDEX_DOCUMENT,
    normalize_key,
    without_leading_slash,
    without_trailing_slash,
)

logger: logging.Logger = logging.getLogger(__name__)

MAX_ROUTING_RULES: int = 50
HOME_PATH: str = "/"


@dataclass(frozen=True)
class RedirectSpec:
    """
    A redirect or rewrite produced by the site generator.

    Attributes:
        from_path (str): The path being redirected.
        to_path (str): A site-relative path or an absolute URL.
        is_permanent (bool): Whether the redirect is permanent (301).
    """

    from_path: str
    to_path: str
    is_permanent: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RedirectSpec":
        try:
            return cls(
                from_path=data["fromPath"],
                to_path=data["toPath"],
                is_permanent=bool(data.get("isPermanent", False)),
            )
        except KeyError as e:
            raise ConfigError(f"Redirect is missing the {e} field: {data!r}") from e


@dataclass(frozen=True)
class PageSpec:
    """A generated page, with the client-side match path it answers for."""

    path: str
    match_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PageSpec":
        try:
            return cls(path=data["path"], match_path=data.get("matchPath"))
        except KeyError as e:
            raise ConfigError(f"Page is missing the {e} field: {data!r}") from e


@dataclass(frozen=True)
class RoutingRule:
    """
    A single bucket website routing rule.

    Attributes:
        key_prefix (str): The `KeyPrefixEquals` condition.
        http_redirect_code (str): `301` or `302`.
        replace_key_with (str, optional): The replacement key.
        protocol (str, optional): Redirect protocol.
        hostname (str, optional): Redirect hostname.
    """

    key_prefix: str
    http_redirect_code: str
    replace_key_with: Optional[str] = None
    protocol: Optional[str] = None
    hostname: Optional[str] = None

    def _redirect(self) -> Dict[str, str]:
        redirect: Dict[str, Optional[str]] = {
            "ReplaceKeyWith": self.replace_key_with,
            "HttpRedirectCode": self.http_redirect_code,
            "Protocol": self.protocol,
            "HostName": self.hostname,
        }
        return {name: value for name, value in redirect.items() if value is not None}

    def to_boto(self) -> Dict[str, Any]:
        """Returns the rule in the shape `put_bucket_website` expects."""
        return {
            "Condition": {"KeyPrefixEquals": self.key_prefix},
            "Redirect": self._redirect(),
        }

    def to_serverless(self) -> Dict[str, Any]:
        """Returns the rule in the CloudFormation/serverless shape."""
        return {
            "RoutingRuleCondition": {"KeyPrefixEquals": self.key_prefix},
            "RedirectRule": self._redirect(),
        }

    @classmethod
    def from_boto(cls, data: Mapping[str, Any]) -> "RoutingRule":
        redirect: Mapping[str, Any] = data["Redirect"]
        return cls(
            key_prefix=data["Condition"]["KeyPrefixEquals"],
            http_redirect_code=redirect["HttpRedirectCode"],
            replace_key_with=redirect.get("ReplaceKeyWith"),
            protocol=redirect.get("Protocol"),
            hostname=redirect.get("HostName"),
        )

    def is_self_referencing(self) -> bool:
        """True when the target sits under the rule's own prefix."""
        return (self.replace_key_with or "").startswith(self.key_prefix)


@dataclass(frozen=True)
class RedirectMarker:
    """
    A redirect implemented as an object carrying a redirect location.

    Attributes:
        from_path (str): The site path of the marker, e.g. `/old/`.
        to_path (str): The target as written in the redirect.
    """

    from_path: str
    to_path: str

    def location(self, options: DeployOptions) -> str:
        """
        Resolves the redirect target, absolute when protocol and hostname are set.

        Args:
            options (DeployOptions): The deploy options.

        Returns:
            str: The value stored as the object's redirect location.
        """
        if options.protocol and options.hostname:
            return urljoin(f"{options.protocol}://{options.hostname}", self.to_path)
        return self.to_path

    def key(self, options: DeployOptions) -> str:
        """Returns the storage key the marker is written to."""
        return normalize_key(self.from_path, options.bucket_prefix)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RedirectMarker":
        return cls(from_path=data["fromPath"], to_path=data["toPath"])

    def to_dict(self) -> Dict[str, str]:
        return {"fromPath": self.from_path, "toPath": self.to_path}


def normalize_match_path(path: str) -> str:
    """Drops the trailing `*` of a match path; routing rules already match by prefix."""
    return path[:-1] if path.endswith("*") else path


def match_path_rewrites(pages: Iterable[PageSpec]) -> List[RedirectSpec]:
    """
    Builds rewrites for pages served under a client-side match path.

    Args:
        pages (Iterable[PageSpec]): The pages of the site.

    Returns:
        List[RedirectSpec]: One rewrite per page whose match path differs
            from its own path.
    """
    return [
        RedirectSpec(from_path=normalize_match_path(page.match_path), to_path=page.path)
        for page in pages
        if page.match_path and normalize_match_path(page.match_path) != page.path
    ]


def _build_rule(route: RedirectSpec, options: DeployOptions) -> RoutingRule:
    code: str = "301" if route.is_permanent else "302"
    if route.to_path.find("://") > 0:
        url: SplitResult = urlsplit(route.to_path)
        target: str = url.path
        if url.query:
            target += f"?{url.query}"
        if url.fragment:
            target += f"#{url.fragment}"
        return RoutingRule(
            key_prefix=without_leading_slash(route.from_path),
            http_redirect_code=code,
            replace_key_with=without_trailing_slash(without_leading_slash(target)),
            protocol=url.scheme,
            hostname=url.hostname,
        )
    return RoutingRule(
        key_prefix=without_leading_slash(route.from_path),
        http_redirect_code=code,
        replace_key_with=without_trailing_slash(without_leading_slash(route.to_path)),
        protocol=options.protocol,
        hostname=options.hostname,
    )


def build_rules(
    routes: Iterable[RedirectSpec], options: DeployOptions
) -> List[RoutingRule]:
    """
    Converts redirects to routing rules, dropping rules that would loop.

    Args:
        routes (Iterable[RedirectSpec]): The redirects or rewrites to convert.
        options (DeployOptions): The deploy options.

    Returns:
        List[RoutingRule]: The rules, in input order.
    """
    rules: List[RoutingRule] = []
    for route in routes:
        rule: RoutingRule = _build_rule(route, options)
        if rule.is_self_referencing():
            logger.warning(
                f"Dropping routing rule '{route.from_path}' -> '{route.to_path}': "
                "its target is inside its own prefix and would redirect forever."
            )
            continue
        rules.append(rule)
    return rules


def compile_redirects(
    redirects: Sequence[RedirectSpec],
    rewrites: Sequence[RedirectSpec],
    options: DeployOptions,
) -> Tuple[List[RoutingRule], List[RedirectMarker]]:
    """
    Compiles redirects and rewrites into routing rules and redirect markers.

    Args:
        redirects (Sequence[RedirectSpec]): Redirects, in site order.
        rewrites (Sequence[RedirectSpec]): Rewrites, in site order.
        options (DeployOptions): The deploy options.

    Returns:
        Tuple[List[RoutingRule], List[RedirectMarker]]: The routing rules and
            the redirect markers to upload.

    Raises:
        ConfigError: If more than 50 routing rules would be produced.
    """
    temporary: List[RedirectSpec] = [
        r for r in redirects if r.from_path != HOME_PATH and not r.is_permanent
    ]
    permanent: List[RedirectSpec] = [
        r for r in redirects if r.from_path != HOME_PATH and r.is_permanent
    ]
    markers_for_permanent: bool = (
        options.generate_redirect_objects_for_permanent_redirects
    )

    rules: List[RoutingRule] = []
    if options.generate_routing_rules:
        rules = build_rules(temporary, options) + build_rules(rewrites, options)
        if not markers_for_permanent:
            rules.extend(build_rules(permanent, options))

        if len(rules) > MAX_ROUTING_RULES:
            raise ConfigError(
                f"{len(rules)} routing rules provided, the number of routing "
                f"rules in a website configuration is limited to "
                f"{MAX_ROUTING_RULES}. Try setting the "
                "'generate_redirect_objects_for_permanent_redirects' option."
            )

    markers: List[RedirectMarker] = []
    if markers_for_permanent:
        markers = [RedirectMarker(r.from_path, r.to_path) for r in permanent]

    if options.generate_index_page_for_redirect:
        home: Optional[RedirectSpec] = next(
            (r for r in redirects if r.from_path == HOME_PATH), None
        )
        if home:
            markers.append(RedirectMarker(f"/{INDEX_DOCUMENT}", home.to_path))

    logger.info(
        f"Compiled {len(rules)} routing rules and {len(markers)} redirect objects."
    )
    return rules, markers
