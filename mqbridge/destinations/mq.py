from typing import Callable
from loguru import logger

from mqbridge.core.envelope import wrap_for_mq
from mqbridge.core.message import MQ_STRING_FORMAT, Message
from mqbridge.core.retry import build_retrier
from mqbridge.core.state import BridgeState
from mqbridge.destinations.interfaces import IDestination
from mqbridge.mq.interfaces import (
    ConnectionDescriptor,
    IQueueManagerClient,
    MQTarget,
    ObjectKind,
    OpenMode,
)
from mqbridge.mq.session import MQSession


class MQDestination(IDestination):
    """
    Puts messages on an MQ queue, or publishes them on an MQ topic string.

    Every attempt runs the full connect, open, put, close, disconnect
    sequence on a fresh connection.
    """

    def __init__(
        self,
        config: dict,
        client_factory: Callable[[], IQueueManagerClient],
        state: BridgeState | None = None,
    ):
        self.config = config
        self.descriptor = ConnectionDescriptor.from_config(config)
        kind = ObjectKind(config.get("kind", ObjectKind.QUEUE.value))
        self.target = MQTarget(config["target"], kind)
        self.wrap = config.get("envelope", True)

        self._client_factory = client_factory
        self.retrier = build_retrier(config.get("publishing"), state)

    def connect(self) -> bool:
        mode = "client" if self.descriptor.client_mode else "local"
        logger.info(
            f"MQ destination ready: {self.target.kind.value} '{self.target}' "
            f"on {self.descriptor.queue_manager} ({mode} binding)."
        )
        return True

    def send(self, message: Message) -> None:
        if self.wrap:
            payload = wrap_for_mq(message).encode("utf-8")
            fmt = MQ_STRING_FORMAT
        else:
            payload = message.payload
            fmt = message.format

        self.retrier(self._put_once, payload, fmt)
        logger.info(f"Forwarded message {message.message_id} to {self.target.kind.value} '{self.target}'.")

    def _put_once(self, payload: bytes, fmt: str | None) -> bytes:
        with MQSession(self._client_factory(), self.descriptor, self.target) as session:
            session.open(OpenMode.OUTPUT)
            return session.put(payload, fmt)

    def stop(self) -> None:
        logger.info("MQ destination: Stopped.")
