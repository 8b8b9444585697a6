from concurrent import futures
from google.api_core import exceptions as gapi_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import pubsub_v1
from loguru import logger

from mqbridge.core.envelope import wrap_for_pubsub
from mqbridge.core.message import Message
from mqbridge.core.outcome import ConfigurationError, TransportError
from mqbridge.core.retry import build_retrier
from mqbridge.core.state import BridgeState
from mqbridge.destinations.interfaces import IDestination


def topic_path(project: str | None, topic: str) -> str:
    if topic.startswith("projects/"):
        return topic
    if not project:
        raise ConfigurationError(f"No GCP project given for topic '{topic}'")
    return f"projects/{project}/topics/{topic}"


class PubSubDestination(IDestination):
    """
    Publishes messages received from MQ to a Google Cloud Pub/Sub topic,
    tagging each one with its origin and MQ message id.
    """

    def __init__(self, config: dict, state: BridgeState | None = None):
        self.config = config
        self.client: pubsub_v1.PublisherClient | None = None
        self.topic_path = topic_path(config.get("project"), config["topic"])

        publishing_config = self.config.get("publishing", {})
        self.retrier = build_retrier(publishing_config, state)
        self.timeout = publishing_config.get("timeout_seconds", 30)

    def connect(self) -> bool:
        try:
            self.client = pubsub_v1.PublisherClient()
            logger.success(f"Pub/Sub publisher ready for topic {self.topic_path}")
            return True
        except auth_exceptions.DefaultCredentialsError as e:
            logger.critical(f"Pub/Sub publisher could not be created: {e}")
            return False
        except Exception:
            logger.exception("An unexpected error occurred while creating the Pub/Sub publisher")
            return False

    def _publish(self, data: bytes, attributes: dict[str, str]) -> str:
        try:
            future = self.client.publish(self.topic_path, data, **attributes)
            message_id = future.result(timeout=self.timeout)
        except gapi_exceptions.InvalidArgument as e:
            raise TransportError("publish", detail=str(e), permanent=True) from e
        except (gapi_exceptions.GoogleAPICallError, futures.TimeoutError) as e:
            logger.warning(
                f"Failed to publish to Pub/Sub topic '{self.topic_path}'. "
                f"Error: {e.__class__.__name__}."
            )
            raise TransportError("publish", detail=str(e) or e.__class__.__name__) from e
        return message_id

    def send(self, message: Message) -> None:
        if not self.client:
            raise TransportError("publish", detail="Pub/Sub publisher is not connected")

        data, attributes = wrap_for_pubsub(message)
        logger.debug(f"Publishing {data!r} with attributes {attributes}")
        message_id = self.retrier(self._publish, data, attributes)
        logger.success(f"Message {message_id} published.")

    def stop(self) -> None:
        if self.client:
            try:
                self.client.stop()
                logger.info("Pub/Sub publisher: Stopped.")
            except Exception as e:
                logger.warning(f"Exception during Pub/Sub publisher stop: {e}")
