import threading
from concurrent.futures import ThreadPoolExecutor
from google.auth import exceptions as auth_exceptions
from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.scheduler import ThreadScheduler
from loguru import logger

from ..core.message import Message
from ..core.outcome import ConfigurationError, Outcome
from ..core.state import BridgeState
from .interfaces import ISource, MessageHandler


def subscription_path(project: str | None, subscription: str) -> str:
    if subscription.startswith("projects/"):
        return subscription
    if not project:
        raise ConfigurationError(f"No GCP project given for subscription '{subscription}'")
    return f"projects/{project}/subscriptions/{subscription}"


class PubSubSource(ISource):
    """
    Message source listening on a Google Cloud Pub/Sub subscription.

    Callbacks run on a bounded pool of `max_in_flight` workers, with flow
    control holding the same number of outstanding messages. A message is
    acked unless the handler reports FAIL_AND_EXIT, in which case it is
    nacked for redelivery.
    """

    def __init__(self, config: dict):
        self.config = config
        self.subscription_path = subscription_path(
            config.get("project"), config["subscription"]
        )
        self.max_in_flight = max(1, int(config.get("max_in_flight", 1)))
        self.shutdown_timeout = config.get("shutdown_timeout_seconds", 30)

        self.client: pubsub_v1.SubscriberClient | None = None
        self._future = None
        self._handler: MessageHandler | None = None
        self._state: BridgeState | None = None
        self._received_lock = threading.Lock()
        self.received = 0

    def connect(self) -> bool:
        try:
            self.client = pubsub_v1.SubscriberClient()
            logger.success(f"Pub/Sub subscriber ready for {self.subscription_path}")
            return True
        except auth_exceptions.DefaultCredentialsError as e:
            logger.critical(f"Pub/Sub subscriber could not be created: {e}")
            return False
        except Exception:
            logger.exception("An unexpected error occurred while creating the Pub/Sub subscriber")
            return False

    def start(self, handler: MessageHandler, state: BridgeState) -> None:
        if not self.client:
            logger.error("Pub/Sub: Cannot start source as it is not connected.")
            return
        if not callable(handler):
            raise TypeError("handler must be a callable function.")

        self._handler = handler
        self._state = state

        scheduler = ThreadScheduler(
            executor=ThreadPoolExecutor(
                max_workers=self.max_in_flight, thread_name_prefix="pubsub-callback"
            )
        )
        flow_control = pubsub_v1.types.FlowControl(max_messages=self.max_in_flight)
        self._future = self.client.subscribe(
            self.subscription_path,
            callback=self._on_message,
            flow_control=flow_control,
            scheduler=scheduler,
            await_callbacks_on_shutdown=True,
        )
        self._future.add_done_callback(self._on_stream_closed)
        logger.info(f"Listening for messages on {self.subscription_path}...")

    def _on_message(self, received) -> None:
        """Adapts a Pub/Sub message, hands it to the bridge and settles it."""
        with self._received_lock:
            self.received += 1
        logger.info(f"Received Pub/Sub message {received.message_id}:")

        if not self._state.healthy:
            logger.debug(f"Bridge is stopping; nacking message {received.message_id}.")
            received.nack()
            return

        message = Message(
            message_id=received.message_id,
            payload=received.data,
            source_id=self.subscription_path,
            attributes=dict(received.attributes),
        )
        outcome = self._handler(message)

        if outcome.acknowledges:
            received.ack()
        else:
            received.nack()

    def _on_stream_closed(self, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Pub/Sub streaming pull on {self.subscription_path} ended: {error}")
            self._state.fail(f"Pub/Sub streaming pull failed: {error}")

    def stop(self) -> None:
        if self._future is not None:
            logger.info(f"Pub/Sub: Cancelling subscription {self.subscription_path}...")
            self._future.cancel()
            try:
                self._future.result(timeout=self.shutdown_timeout)
            except Exception as e:
                logger.debug(f"Streaming pull closed with: {e!r}")
            self._future = None

        if self.client:
            try:
                self.client.close()
                logger.info(f"Pub/Sub: Stopped. {self.received} message(s) received.")
            except Exception as e:
                logger.warning(f"Exception during Pub/Sub subscriber closing: {e}")
            self.client = None
