# src/static_sync/tasks.py
"""
Local artifacts and the upload tasks derived from them.

Every file of the build output and every redirect marker becomes one
`UploadTask` carrying its key, its body source and the fully resolved
put-object parameters.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from static_sync.changes import bytes_fingerprint, file_fingerprint
from static_sync.config import DeployOptions, ParamOverrides
from static_sync.exceptions import ConfigError
from static_sync.keys import normalize_key
from static_sync.params import FALLBACK_CONTENT_TYPE, guess_content_type, resolve_params
from static_sync.routing import RedirectMarker

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalArtifact:
    """A file of the build output and the key it is stored under."""

    path: Path
    key: str


@dataclass(frozen=True)
class UploadTask:
    """
    One object to write to the bucket.

    Attributes:
        key (str): The storage key.
        params (Dict[str, Any]): Put-object parameters other than Bucket,
            Key and Body.
        path (Path, optional): File to stream the body from.
        body (bytes, optional): In-memory body, used for redirect markers.
    """

    key: str
    params: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None
    body: Optional[bytes] = None

    @property
    def redirect_location(self) -> Optional[str]:
        return self.params.get("WebsiteRedirectLocation")

    def fingerprint(self) -> Optional[str]:
        """Returns the expected ETag of this object, None if it cannot be computed."""
        if self.path is not None:
            return file_fingerprint(self.path)
        return bytes_fingerprint(self.body or b"")


def walk_public_dir(public_dir: Path, prefix: Optional[str] = None) -> Iterator[LocalArtifact]:
    """
    Yields every file below the build output directory with its storage key.

    Args:
        public_dir (Path): The build output directory.
        prefix (str, optional): The bucket prefix.

    Yields:
        LocalArtifact: The files, in a stable order. Directories are skipped.
    """
    if not public_dir.is_dir():
        raise ConfigError(f"Build output directory '{public_dir}' does not exist.")
    for root, dirs, files in os.walk(public_dir):
        dirs.sort()
        for name in sorted(files):
            path: Path = Path(root) / name
            if not path.is_file():
                continue
            relative: str = os.path.relpath(path, public_dir)
            yield LocalArtifact(path=path, key=normalize_key(relative, prefix))


def _base_params(options: DeployOptions, content_type: str) -> Dict[str, Any]:
    params: Dict[str, Any] = {"ContentType": content_type}
    if options.acl is not None:
        params["ACL"] = options.acl
    return params


def file_task(
    artifact: LocalArtifact, options: DeployOptions, overrides: ParamOverrides
) -> UploadTask:
    params: Dict[str, Any] = _base_params(options, guess_content_type(str(artifact.path)))
    params.update(resolve_params(artifact.key, overrides))
    return UploadTask(key=artifact.key, params=params, path=artifact.path)


def redirect_task(
    marker: RedirectMarker, options: DeployOptions, overrides: ParamOverrides
) -> UploadTask:
    key: str = marker.key(options)
    location: str = marker.location(options)
    params: Dict[str, Any] = _base_params(options, FALLBACK_CONTENT_TYPE)
    params["WebsiteRedirectLocation"] = location
    params.update(resolve_params(key, overrides))
    return UploadTask(key=key, params=params, body=location.encode("utf-8"))


def build_upload_tasks(
    artifacts: Sequence[LocalArtifact],
    markers: Sequence[RedirectMarker],
    options: DeployOptions,
    overrides: ParamOverrides,
) -> List[UploadTask]:
    """
    Joins files and redirect markers with their parameters, one task per key.

    A redirect marker replaces a file stored under the same key, e.g. the
    home page redirect replacing the generated `index.html`.

    Args:
        artifacts (Sequence[LocalArtifact]): Files of the build output.
        markers (Sequence[RedirectMarker]): Redirect markers to write.
        options (DeployOptions): The deploy options.
        overrides (ParamOverrides): The merged parameter overrides.

    Returns:
        List[UploadTask]: The tasks, files first, keyed uniquely.
    """
    tasks: Dict[str, UploadTask] = {}
    for artifact in artifacts:
        tasks[artifact.key] = file_task(artifact, options, overrides)
    for marker in markers:
        task: UploadTask = redirect_task(marker, options, overrides)
        existing: Optional[UploadTask] = tasks.get(task.key)
        if existing is not None:
            if existing.path is not None:
                logger.warning(
                    f"Redirect object '{task.key}' replaces the file '{existing.path}'."
                )
            else:
                logger.warning(
                    f"Duplicate redirect for '{task.key}', "
                    f"keeping '{task.redirect_location}'."
                )
        tasks[task.key] = task
    return list(tasks.values())
