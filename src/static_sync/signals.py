# src/static_sync/signals.py
"""
Interrupting a running deploy.

A deploy that is stopped halfway must not delete anything: the set of keys
in use is only complete once every upload has been attempted. The first
SIGINT or SIGTERM therefore only stops new uploads from being dispatched
and marks the run as interrupted, which the pipeline reads to skip the
removal of stale objects. A second signal exits at once.
"""

import asyncio
import logging
import os
import signal
from typing import List, Optional, Sequence, Tuple

logger: logging.Logger = logging.getLogger(__name__)

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class DeployInterrupt:
    """
    Tracks whether the operator asked a deploy to stop.

    Used as an async context manager around a deploy, it registers itself
    as the event loop's handler for `HANDLED_SIGNALS`.

    Attributes:
        event (asyncio.Event): Set on the first signal. Handed to the
            pipeline, which stops dispatching uploads and skips deletion.
        received (signal.Signals, optional): The first signal received.
    """

    def __init__(self, signals: Sequence[signal.Signals] = HANDLED_SIGNALS) -> None:
        self.event: asyncio.Event = asyncio.Event()
        self.received: Optional[signal.Signals] = None
        self._signals: Tuple[signal.Signals, ...] = tuple(signals)
        self._registered: List[signal.Signals] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def request_stop(self, sig: signal.Signals) -> None:
        """
        Handles one signal.

        Args:
            sig (signal.Signals): The signal received.
        """
        if self.received is not None:
            logger.critical(
                f"Received {sig.name} while stopping after {self.received.name}. "
                "Exiting now; in-flight uploads are abandoned."
            )
            os._exit(1)
        self.received = sig
        logger.warning(
            f"Received {sig.name}. No new uploads will start and stale objects "
            "will be kept. Send it again to exit immediately."
        )
        self.event.set()

    async def __aenter__(self) -> "DeployInterrupt":
        self._loop = asyncio.get_running_loop()
        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, self.request_stop, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not the main thread, or a loop without signal support
                logger.warning(f"Could not watch {sig.name}: {e}")
                continue
            self._registered.append(sig)
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._loop is not None:
            for sig in self._registered:
                self._loop.remove_signal_handler(sig)
        self._registered.clear()
        self._loop = None
