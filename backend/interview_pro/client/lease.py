from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

LOG = logging.getLogger("interview.client.lease")


class RecognitionLease:
    """
    Periodic renewal of a recognition session.

    Speech engines drop long-running sessions, so every ``interval`` seconds the
    lease marks itself paused and calls ``renew`` (which stops the engine). The
    end handler asks :meth:`consume_pause` to tell a renewal apart from a real
    stop and restarts the engine only in the former case.
    """

    def __init__(self, renew: Callable[[], None], interval: float) -> None:
        if interval <= 0:
            raise ValueError("lease interval must be positive")
        self._renew = renew
        self.interval = interval
        self.paused = False
        self.renewals = 0
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self.paused = False
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        self.paused = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def close(self) -> None:
        """Stop and wait for the renewal task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def consume_pause(self) -> bool:
        if not self.paused:
            return False
        self.paused = False
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.paused = True
            self.renewals += 1
            LOG.debug("renewing recognition lease (#%s)", self.renewals)
            self._renew()
