# src/static_sync/pipeline.py
"""Core orchestration logic for the deploy stage."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Set

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from static_sync.changes import ChangeKind, classify
from static_sync.config import DeployOptions, S3Config
from static_sync.events import EventKind, EventStream, Observer, SyncEvent, observe
from static_sync.exceptions import ConfigError, StaticSyncError
from static_sync.executor import SyncExecutor, stale_keys
from static_sync.keys import INDEX_DOCUMENT
from static_sync.planner import PlanArtifacts
from static_sync.remote import RemoteState, list_remote_objects
from static_sync.routing import MAX_ROUTING_RULES
from static_sync.tasks import LocalArtifact, UploadTask, build_upload_tasks, walk_public_dir

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import GetBucketLocationOutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

ERROR_DOCUMENT: str = "404.html"
DEFAULT_REGION: str = "us-east-1"
LEGACY_LOCATIONS: Dict[str, str] = {"EU": "eu-west-1"}


class SyncStage(Enum):
    """The stages of a deploy run, in order."""

    LISTING = "listing"
    DIFFING = "diffing"
    UPLOADING = "uploading"
    DELETING = "deleting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncPlan:
    """
    The outcome of diffing local objects against the bucket.

    Attributes:
        pending (List[UploadTask]): New or changed objects to upload.
        skipped (List[str]): Keys whose remote copy is identical.
        in_use (Set[str]): Every key touched by this run.
    """

    pending: List[UploadTask] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    in_use: Set[str] = field(default_factory=set)


@dataclass
class SyncResult:
    """
    Summary of a deploy run.

    Attributes:
        stage (SyncStage): `DONE`, or the stage a shutdown stopped at.
        uploaded (List[str]): Keys uploaded.
        skipped (List[str]): Keys left untouched because they were unchanged.
        deleted (List[str]): Keys deleted.
    """

    stage: SyncStage
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


def diff_tasks(tasks: Sequence[UploadTask], remote: Mapping[str, str]) -> SyncPlan:
    """
    Classifies every task against the remote fingerprints.

    Args:
        tasks (Sequence[UploadTask]): One task per key.
        remote (Mapping[str, str]): Remote keys mapped to their ETags.

    Returns:
        SyncPlan: Tasks to upload, keys to skip and the in-use set.
    """
    plan: SyncPlan = SyncPlan()
    for task in tasks:
        plan.in_use.add(task.key)
        kind: ChangeKind = classify(task.key, task.fingerprint(), remote)
        if kind is ChangeKind.UNCHANGED:
            plan.skipped.append(task.key)
        else:
            logger.debug(f"'{task.key}' is {kind.value}.")
            plan.pending.append(task)
    return plan


async def detect_bucket_region(client: "S3Client", bucket: str) -> Optional[str]:
    """
    Asks the store which region a bucket lives in.

    Args:
        client (S3Client): An initialized S3 client.
        bucket (str): The bucket to locate.

    Returns:
        Optional[str]: The bucket's region, or None if the bucket does not
            exist.

    Raises:
        ConfigError: If the location cannot be read for another reason.
    """
    try:
        response: "GetBucketLocationOutputTypeDef" = await client.get_bucket_location(
            Bucket=bucket
        )
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "NoSuchBucket":
            logger.warning(f"Bucket '{bucket}' does not exist.")
            return None
        raise ConfigError(f"Could not locate bucket '{bucket}': {e}") from e
    except BotoCoreError as e:
        raise ConfigError(f"Could not locate bucket '{bucket}': {e}") from e

    # Buckets in us-east-1 report no constraint, legacy eu-west-1 ones "EU".
    constraint: Optional[str] = response.get("LocationConstraint")
    if not constraint:
        return DEFAULT_REGION
    return LEGACY_LOCATIONS.get(constraint, constraint)


class DeployPipeline:
    """Orchestrates a deploy from start to finish."""

    def __init__(
        self,
        artifacts: PlanArtifacts,
        s3_config: Optional[S3Config] = None,
        user_agent: Optional[str] = None,
        observer: Optional[Observer] = None,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initializes the pipeline with the artifacts of the plan stage.

        Args:
            artifacts (PlanArtifacts): The compiled deploy plan.
            s3_config (S3Config, optional): Connection settings. Read from the
                environment when omitted.
            user_agent (str, optional): Text appended to the User-Agent.
            observer (Observer, optional): Receives progress events.
            shutdown_event (asyncio.Event, optional): Event to signal
                graceful shutdown.
        """
        self._artifacts: PlanArtifacts = artifacts
        self._options: DeployOptions = artifacts.options
        self._s3_config: S3Config = s3_config or S3Config()
        self._user_agent: Optional[str] = user_agent
        self._observer: Optional[Observer] = observer
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._session: AioSession = get_session()
        self.stage: Optional[SyncStage] = None

    def _client_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = dict(self._s3_config.as_boto_dict())
        if self._options.region:
            kwargs["region_name"] = self._options.region
        if self._options.custom_aws_endpoint_hostname:
            kwargs["endpoint_url"] = self._options.custom_aws_endpoint_hostname
        config_kwargs: Dict[str, Any] = {
            "max_pool_connections": self._options.parallel_limit + 10,
            "retries": {"max_attempts": self._options.max_retries, "mode": "standard"},
        }
        if self._options.timeout is not None:
            config_kwargs["read_timeout"] = self._options.timeout / 1000
        if self._options.connect_timeout is not None:
            config_kwargs["connect_timeout"] = self._options.connect_timeout / 1000
        if self._user_agent:
            config_kwargs["user_agent_extra"] = self._user_agent
        kwargs["config"] = BotoConfig(**config_kwargs)
        return kwargs

    async def run(self) -> SyncResult:
        """
        Opens an S3 client and executes the full deploy.

        Returns:
            SyncResult: The summary of the run.
        """
        logger.info(f"Starting deploy to bucket '{self._options.bucket_name}'.")
        async with self._session.create_client("s3", **self._client_kwargs()) as client:
            return await self.sync(client)

    async def resolve_region(self) -> Optional[str]:
        """
        Returns the configured region, or looks up the bucket's region.

        Returns:
            Optional[str]: The region, None if the bucket does not exist and
                no region is configured.
        """
        if self._options.region:
            return self._options.region
        async with self._session.create_client("s3", **self._client_kwargs()) as client:
            return await detect_bucket_region(client, self._options.bucket_name)

    async def sync(self, client: "S3Client") -> SyncResult:
        """
        Executes the deploy with an existing client.

        Listing completes before diffing starts, and every upload settles
        before any object is deleted. Any error moves the run to `FAILED`
        and skips the remaining stages.

        Args:
            client (S3Client): An initialized S3 client.

        Returns:
            SyncResult: The summary of the run.
        """
        events: EventStream = EventStream()
        observer_task: Optional[asyncio.Task[None]] = None
        if self._observer is not None:
            observer_task = asyncio.create_task(observe(events, self._observer))
        try:
            return await self._sync(client, events)
        except StaticSyncError as e:
            failed_stage: Optional[SyncStage] = self.stage
            self.stage = SyncStage.FAILED
            stage_name: str = failed_stage.value if failed_stage else "planning"
            logger.error(f"Deploy failed during {stage_name}.")
            events.emit(SyncEvent(kind=EventKind.FAILED, message=f"{stage_name}: {e}"))
            raise
        finally:
            events.close()
            if observer_task is not None:
                await observer_task

    def _enter(self, stage: SyncStage, events: EventStream, count: int = 0) -> None:
        self.stage = stage
        logger.info(f"Stage: {stage.value}")
        events.emit(SyncEvent(kind=EventKind.STAGE, message=stage.value, count=count))

    async def _sync(self, client: "S3Client", events: EventStream) -> SyncResult:
        options: DeployOptions = self._options
        if len(self._artifacts.routing_rules) > MAX_ROUTING_RULES:
            raise ConfigError(
                f"{len(self._artifacts.routing_rules)} routing rules provided, "
                f"at most {MAX_ROUTING_RULES} are allowed."
            )

        artifacts: List[LocalArtifact] = list(
            walk_public_dir(options.public_dir, options.bucket_prefix)
        )
        tasks: List[UploadTask] = build_upload_tasks(
            artifacts,
            self._artifacts.redirect_markers,
            options,
            self._artifacts.params,
        )
        logger.info(
            f"Found {len(artifacts)} local files and "
            f"{len(self._artifacts.redirect_markers)} redirect objects."
        )

        if options.enable_s3_static_website_hosting:
            await self._configure_website(client)

        self._enter(SyncStage.LISTING, events)
        remote: RemoteState = await list_remote_objects(
            client, options.bucket_name, options.bucket_prefix
        )

        self._enter(SyncStage.DIFFING, events, len(tasks))
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        plan: SyncPlan = await loop.run_in_executor(None, diff_tasks, tasks, remote.etags)
        for key in plan.skipped:
            events.emit(SyncEvent(kind=EventKind.SKIPPED, key=key))
        logger.info(
            f"{len(plan.pending)} objects to upload, {len(plan.skipped)} unchanged."
        )

        executor: SyncExecutor = SyncExecutor(
            client,
            options.bucket_name,
            options.parallel_limit,
            events=events,
            shutdown_event=self._shutdown_event,
        )
        self._enter(SyncStage.UPLOADING, events, len(plan.pending))
        uploaded: List[str] = await executor.upload_all(plan.pending)
        result: SyncResult = SyncResult(
            stage=SyncStage.UPLOADING, uploaded=uploaded, skipped=plan.skipped
        )

        if self._shutdown_event.is_set():
            logger.warning("Shutdown requested, skipping removal of stale objects.")
            return result

        if options.remove_nonexistent_objects:
            to_delete: List[str] = stale_keys(
                remote.keys, plan.in_use, options.retain_objects_patterns
            )
            self._enter(SyncStage.DELETING, events, len(to_delete))
            await executor.delete_keys(to_delete)
            result.deleted = to_delete

        self._enter(SyncStage.DONE, events)
        result.stage = SyncStage.DONE
        logger.info(
            f"Synced: {len(result.uploaded)} uploaded, {len(result.skipped)} "
            f"unchanged, {len(result.deleted)} removed."
        )
        return result

    async def _configure_website(self, client: "S3Client") -> None:
        """
        Applies the static website configuration and routing rules.

        Args:
            client (S3Client): An initialized S3 client.
        """
        website: Dict[str, Any] = {
            "IndexDocument": {"Suffix": INDEX_DOCUMENT},
            "ErrorDocument": {"Key": ERROR_DOCUMENT},
        }
        if self._artifacts.routing_rules:
            website["RoutingRules"] = [
                rule.to_boto() for rule in self._artifacts.routing_rules
            ]
        logger.info(
            f"Configuring website hosting with "
            f"{len(self._artifacts.routing_rules)} routing rules..."
        )
        try:
            await client.put_bucket_website(
                Bucket=self._options.bucket_name, WebsiteConfiguration=website
            )
        except (ClientError, BotoCoreError) as e:
            raise ConfigError(
                f"Could not configure website hosting for bucket "
                f"'{self._options.bucket_name}': {e}"
            ) from e
