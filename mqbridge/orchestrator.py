import threading
from loguru import logger

from .core.heartbeat import StateHeartbeat
from .core.message import Message
from .core.outcome import Outcome, TransportError, classify
from .core.state import BridgeState
from .destinations.interfaces import IDestination
from .sources.interfaces import ISource


class Bridge:
    """
    Relays messages from one source to one destination, one message at a
    time, and owns the lifecycle of both.

    Args:
        source: Where messages are received from.
        destination: Where messages are forwarded to.
        heartbeat_interval: Seconds between checks of the shared state.
        listen_timeout: Optional number of seconds after which the bridge
                        stops on its own with a benign exit code.
        state: Shared run state, when the destination was built around it.
    """

    def __init__(
        self,
        source: ISource,
        destination: IDestination,
        heartbeat_interval: float = 5,
        listen_timeout: float | None = None,
        state: BridgeState | None = None,
    ):
        self._source = source
        self._destination = destination
        self._heartbeat_interval = heartbeat_interval
        self._listen_timeout = listen_timeout

        self.state = state or BridgeState()
        self._shutdown = threading.Event()
        self._heartbeat = StateHeartbeat(self.state, self._shutdown.set)

        self._counter_lock = threading.Lock()
        self.forwarded = 0
        self.dropped = 0
        self.failed = 0

    def run(self) -> int:
        """Runs the bridge until it drains, fails, times out or is interrupted. Returns the exit code."""
        logger.info("Starting the Bridge...")

        if not self._destination.connect():
            logger.critical(
                f"Critical error connecting {self._destination.__class__.__name__}. Exiting."
            )
            return 1

        if not self._source.connect():
            logger.critical(
                f"Critical error connecting {self._source.__class__.__name__}. Exiting."
            )
            self._destination.stop()
            return 1

        self._source.start(self.handle_message, self.state)
        self._heartbeat.start(self._heartbeat_interval)
        logger.success("Bridge is running.")

        try:
            if not self._shutdown.wait(timeout=self._listen_timeout):
                self.state.finish(f"Listen timeout of {self._listen_timeout}s reached")
        except KeyboardInterrupt:
            logger.info("Keyboard interruption detected. Shutting down...")
            self.state.finish("Interrupted")
        finally:
            self.stop()

        return self.state.exit_code

    def handle_message(self, message: Message) -> Outcome:
        """Forwards a single message and decides what the source does with it."""
        try:
            self._destination.send(message)
        except Exception as e:
            outcome = classify(e)
            if outcome is Outcome.DROP_AND_ACK:
                logger.error(f"Dropping message {message.message_id}: {e}")
                self._count("dropped")
            else:
                if not isinstance(e, TransportError):
                    logger.exception(
                        f"An unhandled error occurred while forwarding message {message.message_id}."
                    )
                logger.critical(f"Could not forward message {message.message_id}: {e}")
                self._count("failed")
                self.state.fail(f"Forwarding failed: {e}")
            return outcome

        self._count("forwarded")
        logger.debug(f"Message {message.message_id} forwarded {message.age_seconds:.3f}s after receipt.")
        return Outcome.CONTINUE

    def _count(self, name: str):
        with self._counter_lock:
            setattr(self, name, getattr(self, name) + 1)

    def stop(self):
        logger.info("Shutting down the bridge...")
        self._heartbeat.stop()
        self._source.stop()
        self._destination.stop()

        reason = self.state.reason or "stopped"
        logger.info(
            f"Bridge summary: {self.forwarded} forwarded, {self.dropped} dropped, "
            f"{self.failed} failed ({reason})."
        )
        if self.state.exit_code:
            logger.error(f"Bridge stopped with errors. Exit code {self.state.exit_code}.")
        else:
            logger.success("Bridge shut down successfully.")
