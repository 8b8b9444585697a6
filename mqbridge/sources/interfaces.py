from abc import abstractmethod
from typing import Callable

from ..core.message import Message
from ..core.outcome import Outcome
from ..core.state import BridgeState
from ..destinations.interfaces import IConnectable

MessageHandler = Callable[[Message], Outcome]


class ISource(IConnectable):
    """
    Defines the contract for any message source (Pub/Sub subscription,
    MQ queue or topic) that the bridge can read from. The handler decides
    whether each message is acknowledged to the source.
    """

    @abstractmethod
    def start(self, handler: MessageHandler, state: BridgeState) -> None:
        """Starts delivering messages to the handler. Must not block."""
        raise NotImplementedError
