import asyncio
import signal
from typing import Optional

from lexindex.logging_config import get_logger

log = get_logger(__name__)


class ShutdownController:
    """
    Cooperative shutdown on SIGINT/SIGTERM.

    The first signal sets a flag the pipeline checks between pages and
    batches; in-flight calls get ``timeout`` seconds to finish before the
    main task is cancelled.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def install(self, task: Optional[asyncio.Task] = None) -> None:
        self._loop = asyncio.get_running_loop()
        self._task = task or asyncio.current_task()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self.request, sig)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on Windows event loops
                signal.signal(sig, lambda s, f: self._loop.call_soon_threadsafe(self.request, s))

    def uninstall(self) -> None:
        if self._timer:
            self._timer.cancel()
        if self._loop:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    self._loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    signal.signal(sig, signal.SIG_DFL)

    def request(self, sig=None) -> None:
        if self._event.is_set():
            return
        self._event.set()
        log.warning("shutdown_requested", signal=getattr(sig, "name", sig), grace_seconds=self.timeout)
        if self._loop and self._task and not self._task.done():
            self._timer = self._loop.call_later(self.timeout, self._force_cancel)

    def _force_cancel(self) -> None:
        if self._task and not self._task.done():
            log.error("shutdown_timeout_cancelling", grace_seconds=self.timeout)
            self._task.cancel()
