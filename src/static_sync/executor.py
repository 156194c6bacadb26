# src/static_sync/executor.py
"""
Bounded-concurrency upload and batched delete execution.

Uploads are drained from a queue by a fixed pool of worker tasks. The first
failed upload stops the dispatch of further tasks; uploads already in
flight are left to finish before the failure is raised.
"""

import asyncio
import fnmatch
import logging
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    BinaryIO,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Union,
)

from botocore.exceptions import BotoCoreError, ClientError

from static_sync.changes import PART_SIZE
from static_sync.events import EventKind, EventStream, SyncEvent
from static_sync.exceptions import DeleteError, UploadError
from static_sync.tasks import UploadTask

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import (
        CreateMultipartUploadOutputTypeDef,
        DeleteObjectsOutputTypeDef,
        UploadPartOutputTypeDef,
    )

logger: logging.Logger = logging.getLogger(__name__)

MAX_KEYS_PER_DELETE: int = 1000


def stale_keys(
    remote_keys: Iterable[str],
    in_use: Set[str],
    retain_patterns: Sequence[str] = (),
) -> List[str]:
    """
    Computes the keys to delete: remote, not touched by this run, not retained.

    Args:
        remote_keys (Iterable[str]): Keys listed before the sync.
        in_use (Set[str]): Keys uploaded or confirmed unchanged this run.
        retain_patterns (Sequence[str]): Globs of keys that are never deleted.

    Returns:
        List[str]: The keys to delete, in listing order.
    """
    return [
        key
        for key in remote_keys
        if key not in in_use
        and not any(fnmatch.fnmatchcase(key, pattern) for pattern in retain_patterns)
    ]


def delete_batches(keys: Sequence[str]) -> List[List[str]]:
    """Splits keys into chunks the delete API accepts."""
    return [
        list(keys[start : start + MAX_KEYS_PER_DELETE])
        for start in range(0, len(keys), MAX_KEYS_PER_DELETE)
    ]


class SyncExecutor:
    """Runs uploads and deletes against one bucket."""

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        concurrency_limit: int,
        events: Optional[EventStream] = None,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initializes the executor.

        Args:
            client (S3Client): An initialized S3 client.
            bucket (str): The target bucket.
            concurrency_limit (int): Maximum number of uploads in flight.
            events (EventStream, optional): Stream receiving progress events.
            shutdown_event (asyncio.Event, optional): Stops dispatching new
                uploads once set.
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be a positive integer")
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._concurrency_limit: int = concurrency_limit
        self._events: EventStream = events or EventStream()
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()

    def _emit(self, kind: EventKind, **kwargs: Any) -> None:
        self._events.emit(SyncEvent(kind=kind, **kwargs))

    async def upload_all(self, tasks: Sequence[UploadTask]) -> List[str]:
        """
        Uploads every task with at most `concurrency_limit` in flight.

        Args:
            tasks (Sequence[UploadTask]): The objects to upload.

        Returns:
            List[str]: Keys uploaded, in completion order.

        Raises:
            UploadError: For the first upload that failed, once every
                in-flight upload has settled.
        """
        queue: asyncio.Queue[UploadTask] = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        uploaded: List[str] = []
        failures: List[UploadError] = []
        stop: asyncio.Event = asyncio.Event()

        num_workers: int = min(self._concurrency_limit, len(tasks))
        workers: List[asyncio.Task[None]] = [
            asyncio.create_task(self._worker(i, queue, uploaded, failures, stop))
            for i in range(num_workers)
        ]
        await asyncio.gather(*workers)

        if failures:
            raise failures[0]
        if self._shutdown_event.is_set() and not queue.empty():
            logger.warning(
                f"Shutdown requested, {queue.qsize()} uploads were not started."
            )
        return uploaded

    async def _worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[UploadTask]",
        uploaded: List[str],
        failures: List[UploadError],
        stop: asyncio.Event,
    ) -> None:
        logger.debug(f"Worker {worker_id} started.")
        while not stop.is_set() and not self._shutdown_event.is_set():
            try:
                task: UploadTask = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                await self.upload(task)
            except UploadError as e:
                logger.error(str(e))
                failures.append(e)
                stop.set()
                self._emit(EventKind.FAILED, key=task.key, message=str(e))
                break
            except Exception as e:
                logger.exception(f"Unexpected error uploading '{task.key}'")
                failures.append(UploadError(task.key, repr(e)))
                stop.set()
                self._emit(EventKind.FAILED, key=task.key, message=repr(e))
                break
            finally:
                queue.task_done()
            uploaded.append(task.key)
            self._emit(EventKind.UPLOADED, key=task.key)
        logger.debug(f"Worker {worker_id} finished.")

    async def upload(self, task: UploadTask) -> None:
        """
        Uploads a single object.

        Files larger than one part go through a multipart upload so that
        the resulting ETag matches `file_fingerprint`.

        Args:
            task (UploadTask): The object to upload.

        Raises:
            UploadError: If the object could not be read or written.
        """
        try:
            if task.path is None:
                body: bytes = task.body or b""
                await self._put(task, body, len(body))
            else:
                size: int = task.path.stat().st_size
                if size > PART_SIZE:
                    await self._put_multipart(task, task.path, size)
                else:
                    with task.path.open("rb") as f:
                        await self._put(task, f, size)
        except (ClientError, BotoCoreError, OSError) as e:
            raise UploadError(task.key, str(e)) from e

        if task.redirect_location:
            logger.debug(f"Created redirect '{task.key}' => '{task.redirect_location}'")
        else:
            logger.debug(f"Uploaded '{task.key}'")

    async def _put(
        self, task: UploadTask, body: Union[bytes, BinaryIO], size: int
    ) -> None:
        self._emit(
            EventKind.UPLOAD_PROGRESS, key=task.key, bytes_sent=0, bytes_total=size
        )
        await self._client.put_object(
            Bucket=self._bucket,
            Key=task.key,
            Body=body,
            ContentLength=size,
            **task.params,
        )
        self._emit(
            EventKind.UPLOAD_PROGRESS, key=task.key, bytes_sent=size, bytes_total=size
        )

    async def _put_multipart(self, task: UploadTask, path: Path, size: int) -> None:
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        created: "CreateMultipartUploadOutputTypeDef" = (
            await self._client.create_multipart_upload(
                Bucket=self._bucket, Key=task.key, **task.params
            )
        )
        upload_id: str = created["UploadId"]
        parts: List[Dict[str, Any]] = []
        sent: int = 0
        try:
            with path.open("rb") as f:
                part_number: int = 1
                while True:
                    chunk: bytes = await loop.run_in_executor(None, f.read, PART_SIZE)
                    if not chunk:
                        break
                    response: "UploadPartOutputTypeDef" = await self._client.upload_part(
                        Bucket=self._bucket,
                        Key=task.key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk,
                        ContentLength=len(chunk),
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    sent += len(chunk)
                    self._emit(
                        EventKind.UPLOAD_PROGRESS,
                        key=task.key,
                        bytes_sent=sent,
                        bytes_total=size,
                    )
                    part_number += 1
            await self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=task.key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception:
            try:
                await self._client.abort_multipart_upload(
                    Bucket=self._bucket, Key=task.key, UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(
                    f"Could not abort multipart upload of '{task.key}': {abort_error}"
                )
            raise

    async def delete_keys(self, keys: Sequence[str]) -> int:
        """
        Deletes keys in sequential batches of at most 1000.

        Args:
            keys (Sequence[str]): The keys to delete.

        Returns:
            int: The number of keys deleted.

        Raises:
            DeleteError: On the first batch that fails, request-level or
                for any single key.
        """
        deleted: int = 0
        for batch in delete_batches(keys):
            logger.info(
                f"Removing objects {deleted + 1} to {deleted + len(batch)} "
                f"of {len(keys)}"
            )
            try:
                response: "DeleteObjectsOutputTypeDef" = (
                    await self._client.delete_objects(
                        Bucket=self._bucket,
                        Delete={
                            "Objects": [{"Key": key} for key in batch],
                            "Quiet": True,
                        },
                    )
                )
            except (ClientError, BotoCoreError) as e:
                raise DeleteError(batch, str(e)) from e

            errors: List[Any] = list(response.get("Errors", []))
            if errors:
                details: str = "; ".join(
                    f"{err.get('Key')}: {err.get('Code')} {err.get('Message')}"
                    for err in errors[:5]
                )
                raise DeleteError(batch, details)

            deleted += len(batch)
            self._emit(EventKind.DELETED, count=len(batch))
        return deleted
