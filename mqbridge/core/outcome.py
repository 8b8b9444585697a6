from enum import Enum


class Outcome(Enum):
    """What the source should do with a message once the sink has been tried."""

    CONTINUE = "continue"
    DROP_AND_ACK = "drop-and-ack"
    FAIL_AND_EXIT = "fail-and-exit"

    @property
    def acknowledges(self) -> bool:
        return self is not Outcome.FAIL_AND_EXIT


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class ConfigurationError(BridgeError):
    pass


class NoMessageAvailable(BridgeError):
    """A poll found nothing within its wait interval."""


class TransportError(BridgeError):
    """
    A call into one of the transports failed.

    Args:
        call: Name of the failed call (MQCONN, MQPUT, publish...).
        reason: Transport reason code, if there is one.
        comp: MQ completion code, if there is one.
        detail: Human readable description of the failure.
        permanent: True when retrying the same message cannot succeed.
    """

    def __init__(
        self,
        call: str,
        reason: int | None = None,
        comp: int | None = None,
        detail: str = "",
        permanent: bool = False,
    ):
        self.call = call
        self.reason = reason
        self.comp = comp
        self.detail = detail
        self.permanent = permanent
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"MQ call failed in {self.call}" if self.call.startswith("MQ") else f"{self.call} failed"
        if self.reason is not None:
            text += f" with reason {self.reason}"
        if self.detail:
            text += f": {self.detail}"
        return text


def is_transient(error: BaseException) -> bool:
    return isinstance(error, TransportError) and not error.permanent


def classify(error: BaseException) -> Outcome:
    if isinstance(error, TransportError) and error.permanent:
        return Outcome.DROP_AND_ACK
    return Outcome.FAIL_AND_EXIT
