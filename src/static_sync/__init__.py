# src/static_sync/__init__.py
"""
static-sync: One-way, content-addressed deploys of static sites to S3.

This package compiles a site's redirects into bucket routing rules and
redirect objects, then syncs a build output directory to an S3-compatible
bucket, uploading only new or changed objects and removing stale ones.

The primary entry points for programmatic use are `build_plan` and the
`DeployPipeline` class.
"""

from typing import List

from static_sync.pipeline import DeployPipeline
from static_sync.planner import PlanArtifacts, SiteInput, build_plan

__all__: List[str] = ["DeployPipeline", "PlanArtifacts", "SiteInput", "build_plan"]
