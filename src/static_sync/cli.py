# src/static_sync/cli.py
"""Command-line interface for the static-sync tool."""

import asyncio
import dataclasses
import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from static_sync.config import DeployOptions
from static_sync.events import RichProgressObserver
from static_sync.exceptions import StaticSyncError
from static_sync.pipeline import DEFAULT_REGION, DeployPipeline, SyncResult, SyncStage
from static_sync.planner import PlanArtifacts, SiteInput, build_plan, read_json
from static_sync.signals import DeployInterrupt

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR: str = ".cache"

# Regions whose website endpoint uses a dash instead of a dot.
_DASH_WEBSITE_REGIONS = frozenset(
    {
        "us-east-1",
        "us-west-1",
        "us-west-2",
        "ap-southeast-1",
        "ap-southeast-2",
        "ap-northeast-1",
        "eu-west-1",
        "sa-east-1",
        "us-gov-west-1",
    }
)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def website_url(bucket: str, region: Optional[str]) -> str:
    """Returns the public URL of a bucket's website endpoint."""
    region = region or DEFAULT_REGION
    separator: str = "-" if region in _DASH_WEBSITE_REGIONS else "."
    return f"http://{bucket}.s3-website{separator}{region}.amazonaws.com"


def _is_ci() -> bool:
    return os.environ.get("CI", "").lower() not in ("", "0", "false")


@contextmanager
def _exit_on_error() -> Iterator[None]:
    try:
        yield
    except click.Abort:
        logger.error("User aborted!")
        sys.exit(1)
    except StaticSyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except asyncio.CancelledError:
        logger.warning("Shutdown signal received. Exiting.")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


async def resolve_region(
    artifacts: PlanArtifacts, user_agent: Optional[str]
) -> Optional[str]:
    """Look up the bucket region when the plan does not name one."""
    return await DeployPipeline(artifacts, user_agent=user_agent).resolve_region()


async def main_async(
    artifacts: PlanArtifacts, user_agent: Optional[str]
) -> SyncResult:
    """
    Asynchronously execute the deploy pipeline.

    Args:
        artifacts (PlanArtifacts): The compiled deploy plan.
        user_agent (str, optional): Text appended to the User-Agent.

    Returns:
        SyncResult: The summary of the run.
    """
    async with DeployInterrupt() as interrupt:
        with RichProgressObserver() as observer:
            pipeline: DeployPipeline = DeployPipeline(
                artifacts,
                user_agent=user_agent,
                observer=observer,
                shutdown_event=interrupt.event,
            )
            return await pipeline.run()


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(log_level: str) -> None:
    """
    Deploys a built static site to an S3 bucket.

    Run `plan` after the site is built to compile redirects into routing
    rules and redirect objects, then `deploy` to sync the build output.
    Only new or changed objects are uploaded.

    Connection settings may be set via environment variables or a .env file
    (STATIC_SYNC_ENDPOINT_URL, STATIC_SYNC_ACCESS_KEY_ID,
    STATIC_SYNC_SECRET_ACCESS_KEY, STATIC_SYNC_REGION).
    """
    load_dotenv()
    setup_logging(log_level)


@cli.command()
@click.option(
    "--site",
    "site_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON file with the site's redirects and pages.",
)
@click.option(
    "--options",
    "options_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON file with the deploy options.",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_CACHE_DIR,
    help="Directory the deploy plan is written to.",
    show_default=True,
)
def plan(site_file: Path, options_file: Path, cache_dir: Path) -> None:
    """Compile redirects and options into a deploy plan."""
    with _exit_on_error():
        options: DeployOptions = DeployOptions.from_dict(read_json(options_file))
        site: SiteInput = SiteInput.from_dict(read_json(site_file))
        build_plan(site, options).save(cache_dir)


@cli.command()
@click.option("-y", "--yes", is_flag=True, default=False, help="Skip confirmation prompt.")
@click.option("-b", "--bucket", help="Bucket name, overriding the planned bucket.")
@click.option(
    "--user-agent",
    help="Text appended to the User-Agent string, e.g. to tag automated runs.",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_CACHE_DIR,
    help="Directory the deploy plan is read from.",
    show_default=True,
)
def deploy(
    yes: bool, bucket: Optional[str], user_agent: Optional[str], cache_dir: Path
) -> None:
    """
    Sync the build output to the bucket.

    Uploads new and changed objects and redirect objects, then removes
    objects that are no longer part of the site.
    """
    with _exit_on_error():
        artifacts: PlanArtifacts = PlanArtifacts.load(cache_dir)
        if bucket:
            artifacts = dataclasses.replace(
                artifacts, options=artifacts.options.with_bucket(bucket)
            )
        if not artifacts.options.region:
            region: Optional[str] = asyncio.run(resolve_region(artifacts, user_agent))
            if region:
                artifacts = dataclasses.replace(
                    artifacts,
                    options=dataclasses.replace(artifacts.options, region=region),
                )
        options: DeployOptions = artifacts.options

        if not yes and not _is_ci():
            click.echo(
                f"\nDeploying to bucket: {options.bucket_name}\n"
                f"In region: {options.region or 'UNKNOWN!'}\n"
                f"Prefix: {options.bucket_prefix or '(none)'}\n"
                f"Routing rules: {len(artifacts.routing_rules)}\n"
            )
            click.confirm("OK?", abort=True)

        result: SyncResult = asyncio.run(main_async(artifacts, user_agent))
        if result.stage is not SyncStage.DONE:
            logger.warning("Deploy interrupted before it completed.")
            sys.exit(1)
        if options.enable_s3_static_website_hosting:
            logger.info(
                "✅ Your website is online at: "
                f"{website_url(options.bucket_name, options.region)}"
            )
        else:
            logger.info(f"✅ Your website has been published to: {options.bucket_name}")


if __name__ == "__main__":
    cli()
