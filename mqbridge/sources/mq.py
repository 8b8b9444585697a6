import threading
import time
from typing import Callable
from loguru import logger

from ..core.envelope import from_hex, to_hex
from ..core.message import Message
from ..core.outcome import NoMessageAvailable, Outcome, TransportError
from ..core.state import BridgeState
from ..mq.interfaces import (
    ConnectionDescriptor,
    GetOptions,
    IQueueManagerClient,
    MQTarget,
    ObjectKind,
    OpenMode,
)
from ..mq.session import MQSession
from .interfaces import ISource, MessageHandler


class MQSource(ISource):
    """
    Message source polling an MQ queue, or a managed subscription to an MQ
    topic string, with a blocking get.

    The connection lives on a dedicated worker thread: handles are opened,
    used and released there and nowhere else.
    """

    def __init__(self, config: dict, client_factory: Callable[[], IQueueManagerClient]):
        self.config = config
        self.descriptor = ConnectionDescriptor.from_config(config)
        kind = ObjectKind(config.get("kind", ObjectKind.QUEUE.value))
        self.target = MQTarget(config["target"], kind)
        self._open_mode = OpenMode.SUBSCRIBE if kind is ObjectKind.TOPIC else OpenMode.INPUT

        self.wait_interval = config.get("wait_interval_seconds", 3)
        self.stop_when_empty = config.get("stop_when_empty", True)
        self.syncpoint = config.get("syncpoint", True)
        self.connect_timeout = config.get("connect_timeout_seconds", 30)
        match_msg_id = config.get("match_msg_id")
        self.match_msg_id = from_hex(match_msg_id) if match_msg_id else None

        self._client_factory = client_factory
        self._handler: MessageHandler | None = None
        self._state: BridgeState | None = None

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._ready = threading.Event()
        self._connection_status = threading.Event()
        self._worker_done = threading.Event()
        self.received = 0

    @property
    def get_options(self) -> GetOptions:
        return GetOptions(
            wait_interval_ms=int(self.wait_interval * 1000),
            syncpoint=self.syncpoint,
            match_msg_id=self.match_msg_id,
        )

    def connect(self) -> bool:
        """
        Starts the worker thread, which connects and opens the target, and
        waits for the result. Returns True if the target is open.
        """
        if self._thread is not None:
            logger.warning("MQ source connect called more than once. Ignoring.")
            return self._connection_status.is_set()

        logger.info(f"Connecting MQ source to {self.target.kind.value} '{self.target}'...")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_worker, name="mq-source", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + self.connect_timeout
        while not self._connection_status.wait(timeout=0.1):
            if self._worker_done.is_set():
                logger.critical(f"MQ source could not open '{self.target}'.")
                self.stop()
                return False
            if time.monotonic() >= deadline:
                logger.critical(f"MQ source: opening '{self.target}' timed out.")
                self.stop()
                return False
        return True

    def start(self, handler: MessageHandler, state: BridgeState) -> None:
        if not self._thread or not self._thread.is_alive():
            logger.error("MQ source: Cannot start source as it is not connected.")
            return
        if not callable(handler):
            raise TypeError("handler must be a callable function.")

        self._handler = handler
        self._state = state
        self._ready.set()

    def stop(self) -> None:
        if not self._thread:
            return
        logger.info("MQ source: Stopping source...")
        self._stop_event.set()
        self._ready.set()
        self._thread.join(timeout=self.wait_interval + 10)
        if self._thread.is_alive():
            logger.warning(
                "MQ source: Worker thread did not terminate gracefully. Its connection and "
                f"handle on '{self.target}' are left for the queue manager to release."
            )
        self._thread = None
        logger.info(f"MQ source: Stopped. {self.received} message(s) received.")

    def _run_worker(self):
        """The entry point for the dedicated worker thread."""
        try:
            with MQSession(self._client_factory(), self.descriptor, self.target) as session:
                session.open(self._open_mode)
                self._connection_status.set()

                self._ready.wait()
                if not self._stop_event.is_set():
                    self._poll(session)
        except TransportError as e:
            if self._state is not None:
                self._state.fail(str(e))
        except Exception as e:
            logger.exception("MQ source: An unhandled exception occurred in the worker.")
            if self._state is not None:
                self._state.fail(f"MQ source worker crashed: {e}")
        finally:
            self._worker_done.set()

    def _poll(self, session: MQSession):
        """Receives until stopped, the target is drained, or a fatal error occurs."""
        options = self.get_options
        if options.match_msg_id is not None:
            logger.info(f"Setting Match Option for MsgId {to_hex(options.match_msg_id)}")

        while not self._stop_event.is_set() and self._state.healthy:
            try:
                delivery = session.get(options)
            except NoMessageAvailable:
                if self.stop_when_empty:
                    logger.info("No more messages available.")
                    self._state.finish("No more messages available")
                    return
                continue
            except TransportError as e:
                logger.error(str(e))
                self._state.fail(str(e))
                return

            self.received += 1
            message = Message(
                message_id=to_hex(delivery.msg_id),
                payload=delivery.payload,
                source_id=str(self.target),
                format=delivery.format or None,
            )
            logger.info(f"Received MQ message {message.message_id}")
            logger.debug(f"Message: {message.text() if message.is_text else message.payload!r}")

            outcome = self._handler(message)
            if not self._settle(session, outcome):
                return

    def _settle(self, session: MQSession, outcome: Outcome) -> bool:
        """Commits or backs out the unit of work. Returns False if polling must stop."""
        if not self.syncpoint:
            return outcome is not Outcome.FAIL_AND_EXIT

        try:
            if outcome.acknowledges:
                session.commit()
                return True
            session.backout()
            return False
        except TransportError as e:
            logger.error(str(e))
            self._state.fail(str(e))
            return False
