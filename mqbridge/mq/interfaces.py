from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any


class ObjectKind(Enum):
    QUEUE = "queue"
    TOPIC = "topic"


class OpenMode(Enum):
    OUTPUT = "output"
    INPUT = "input"
    # Managed, non-durable subscription to a topic string.
    SUBSCRIBE = "subscribe"


class PutOption(Flag):
    NONE = 0
    NO_SYNCPOINT = auto()
    NEW_MSG_ID = auto()
    NEW_CORREL_ID = auto()
    WARN_IF_NO_SUBS_MATCHED = auto()


@dataclass(frozen=True)
class MQTarget:
    name: str
    kind: ObjectKind = ObjectKind.QUEUE

    @property
    def put_options(self) -> PutOption:
        options = PutOption.NO_SYNCPOINT | PutOption.NEW_MSG_ID | PutOption.NEW_CORREL_ID
        if self.kind is ObjectKind.TOPIC:
            options |= PutOption.WARN_IF_NO_SUBS_MATCHED
        return options

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ConnectionDescriptor:
    """How to reach a queue manager: local binding, or client binding over a channel."""

    queue_manager: str
    connection_name: str | None = None
    channel: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    cipher_spec: str | None = None
    key_repository: str | None = None

    @property
    def client_mode(self) -> bool:
        return bool(self.connection_name and self.channel)

    @classmethod
    def from_config(cls, config: dict) -> "ConnectionDescriptor":
        return cls(
            queue_manager=config["queue_manager"],
            connection_name=config.get("connection_name"),
            channel=config.get("channel"),
            user=config.get("user"),
            password=config.get("password"),
            cipher_spec=config.get("cipher_spec"),
            key_repository=config.get("key_repository"),
        )


@dataclass(frozen=True)
class GetOptions:
    wait_interval_ms: int = 3000
    syncpoint: bool = True
    match_msg_id: bytes | None = None


@dataclass(frozen=True)
class MQDelivery:
    payload: bytes
    msg_id: bytes
    format: str


class IQueueManagerClient(ABC):
    """
    One connection to a queue manager. Failures are raised as TransportError;
    an empty get is raised as NoMessageAvailable.
    """

    @abstractmethod
    def connect(self, descriptor: ConnectionDescriptor) -> None:
        raise NotImplementedError

    @abstractmethod
    def open(self, target: MQTarget, mode: OpenMode) -> Any:
        """Opens a queue, topic or managed subscription and returns its handle."""
        raise NotImplementedError

    @abstractmethod
    def put(self, handle: Any, payload: bytes, options: PutOption, fmt: str | None = None) -> bytes:
        """Puts one message and returns the MQ message id assigned to it."""
        raise NotImplementedError

    @abstractmethod
    def get(self, handle: Any, options: GetOptions) -> MQDelivery:
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def backout(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self, handle: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        raise NotImplementedError
