from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ServeLoopExited

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True)
class FatalServeError:
    error: BaseException


@dataclass(frozen=True)
class ExternalInterrupt:
    signum: int


ShutdownTrigger = Union[FatalServeError, ExternalInterrupt]


class ShutdownCoordinator:
    """Wait for whichever comes first: the serve loop dying or a signal."""

    def __init__(self, signals=HANDLED_SIGNALS):
        self.signals = tuple(signals)
        self.signum: Optional[int] = None
        self._interrupted = asyncio.Event()
        self._previous = {}

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self.interrupt, sig)
                self._previous[sig] = None
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                self._previous[sig] = signal.signal(
                    sig, lambda signum, frame: loop.call_soon_threadsafe(self.interrupt, signum)
                )

    def uninstall(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig, previous in self._previous.items():
            if previous is None:
                loop.remove_signal_handler(sig)
            else:
                signal.signal(sig, previous)
        self._previous = {}

    def interrupt(self, signum: int = signal.SIGINT) -> None:
        if self._interrupted.is_set():
            logger.debug("Ignoring signal %s, shutdown already requested", signum)
            return
        self.signum = signum
        self._interrupted.set()

    async def wait(self, serve_task: "asyncio.Future[None]") -> ShutdownTrigger:
        """Block until a shutdown trigger arrives.

        The serve task is never cancelled here; stopping it is the caller's job.
        """
        interrupted = asyncio.ensure_future(self._interrupted.wait())
        try:
            await asyncio.wait({serve_task, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not interrupted.done():
                interrupted.cancel()

        if serve_task.done():
            if serve_task.cancelled():
                return FatalServeError(ServeLoopExited("serve loop was cancelled"))
            error = serve_task.exception()
            return FatalServeError(error or ServeLoopExited("serve loop exited unexpectedly"))
        return ExternalInterrupt(self.signum)
