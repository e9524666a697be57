import logging
import signal
import threading

logger = logging.getLogger(__name__)


class CancellationToken:
    """Read-only view of a CancellationBroadcast, handed to each capture task."""
    def __init__(self, event: threading.Event):
        self._event = event

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float = None) -> bool:
        return self._event.wait(timeout)


class CancellationBroadcast:
    """
    Process-wide stop signal for a capture session.

    The first SIGINT received after `install()` fires the broadcast, and the
    previous SIGINT handler is put back, so a second Ctrl-C behaves as it
    normally would. Every token returned by `subscribe()` sees the same signal.
    """
    def __init__(self):
        self._event = threading.Event()
        self._previous_handler = None
        self._installed = False

    def install(self) -> None:
        # signal.signal() may only be called from the main thread
        self._previous_handler = signal.signal(signal.SIGINT, self._on_interrupt)
        self._installed = True

    def uninstall(self) -> None:
        if self._installed:
            self._installed = False
            signal.signal(signal.SIGINT, self._previous_handler)

    def _on_interrupt(self, signum, frame):
        logger.info("Interrupt received, stopping capture")
        self.uninstall()
        self.cancel()

    def subscribe(self) -> CancellationToken:
        return CancellationToken(self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
