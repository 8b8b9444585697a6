from abc import ABC, abstractmethod
from mqbridge.core.message import Message


class IConnectable(ABC):
    """Defines a contract for components that have a connect/stop lifecycle."""

    @abstractmethod
    def connect(self) -> bool:
        """Establishes the connection to the endpoint."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Stops the component and cleans up resources."""
        raise NotImplementedError


class IDestination(IConnectable):
    """Defines a contract for any message sink (MQ queue or topic, Pub/Sub topic)."""

    @abstractmethod
    def send(self, message: Message) -> None:
        """
        Forwards a standardized Message to the sink.
        Raises TransportError once the sink has definitively failed.
        """
        raise NotImplementedError
