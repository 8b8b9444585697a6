import threading
from loguru import logger


class BridgeState:
    """
    Health and exit status shared between the source callbacks and the
    lifecycle manager. The first terminal transition wins; later ones are
    logged and ignored.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._healthy = True
        self._exit_code = 0
        self._reason: str | None = None
        self._terminated = threading.Event()

    @property
    def healthy(self) -> bool:
        with self._lock:
            return self._healthy

    @property
    def exit_code(self) -> int:
        with self._lock:
            return self._exit_code

    @property
    def reason(self) -> str | None:
        with self._lock:
            return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Sleeps up to `timeout` seconds, waking early once the run has terminated."""
        return self._terminated.wait(timeout)

    def finish(self, reason: str) -> bool:
        """Marks a benign end of the run. Returns False if already terminated."""
        return self._terminate(reason, 0)

    def fail(self, reason: str) -> bool:
        """Marks a fatal end of the run. Returns False if already terminated."""
        return self._terminate(reason, 1)

    def _terminate(self, reason: str, exit_code: int) -> bool:
        with self._lock:
            if not self._healthy:
                logger.debug(f"Bridge already stopping ({self._reason}); ignoring: {reason}")
                return False
            self._healthy = False
            self._exit_code = exit_code
            self._reason = reason
            self._terminated.set()
            return True
