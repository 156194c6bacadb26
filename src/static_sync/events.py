# src/static_sync/events.py
"""
Progress and failure signals emitted while syncing.

The pipeline never waits on whoever consumes these events: `EventStream`
is an unbounded queue and `emit` is non-blocking. An observer runs in its
own task and only ever sees events, never the pipeline's state.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import AsyncIterator, Callable, Optional, Type

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

logger: logging.Logger = logging.getLogger(__name__)


class EventKind(Enum):
    STAGE = "stage"
    UPLOAD_PROGRESS = "upload_progress"
    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncEvent:
    """
    A single progress signal.

    Attributes:
        kind (EventKind): What happened.
        key (str, optional): The object concerned, if any.
        bytes_sent (int): Bytes sent so far for `UPLOAD_PROGRESS`.
        bytes_total (int): Size of the object for `UPLOAD_PROGRESS`.
        count (int): Items a `STAGE` will process, or keys removed by a
            `DELETED` batch.
        message (str): The stage name for `STAGE`, the error for `FAILED`.
    """

    kind: EventKind
    key: Optional[str] = None
    bytes_sent: int = 0
    bytes_total: int = 0
    count: int = 0
    message: str = ""


Observer = Callable[[SyncEvent], None]


class EventStream:
    """An unbounded, single-consumer stream of `SyncEvent`s."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[SyncEvent]] = asyncio.Queue()

    def emit(self, event: SyncEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Marks the end of the stream."""
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[SyncEvent]:
        while True:
            event: Optional[SyncEvent] = await self._queue.get()
            if event is None:
                break
            yield event


async def observe(stream: EventStream, observer: Observer) -> None:
    """
    Feeds every event of a stream to an observer until the stream closes.

    Args:
        stream (EventStream): The stream to drain.
        observer (Observer): Called once per event. Its errors are logged
            and do not affect the sync.
    """
    async for event in stream:
        try:
            observer(event)
        except Exception:
            logger.exception(f"Progress observer failed on {event.kind.value} event")


class RichProgressObserver:
    """Renders sync events as a `rich` progress bar."""

    def __init__(self) -> None:
        self._progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("[dim]{task.fields[detail]}"),
            transient=True,
        )
        self._task_id: TaskID = self._progress.add_task(
            "Starting...", total=None, detail=""
        )

    def __enter__(self) -> "RichProgressObserver":
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self._progress.stop()

    def __call__(self, event: SyncEvent) -> None:
        if event.kind is EventKind.STAGE:
            self._progress.reset(
                self._task_id,
                description=f"{event.message.capitalize()}...",
                total=event.count or None,
                detail="",
            )
        elif event.kind is EventKind.UPLOAD_PROGRESS:
            self._progress.update(
                self._task_id,
                detail=f"Uploading {event.key} {event.bytes_sent}/{event.bytes_total}",
            )
        elif event.kind in (EventKind.UPLOADED, EventKind.SKIPPED):
            self._progress.update(self._task_id, advance=1, detail=event.key or "")
        elif event.kind is EventKind.DELETED:
            self._progress.update(self._task_id, advance=event.count)
        elif event.kind is EventKind.FAILED:
            self._progress.update(
                self._task_id, detail=f"[red]Failed: {event.key or ''}"
            )
