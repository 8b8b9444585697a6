from typing import Any
from loguru import logger

from mqbridge.core.envelope import to_hex
from mqbridge.core.outcome import TransportError
from .interfaces import (
    ConnectionDescriptor,
    GetOptions,
    IQueueManagerClient,
    MQDelivery,
    MQTarget,
    OpenMode,
)


class MQSession:
    """
    Owns one queue manager connection and at most one object handle on it.

    The object handle is always released before the connection, and each is
    released exactly once no matter which intervening call failed. Usable as
    a context manager.
    """

    def __init__(
        self,
        client: IQueueManagerClient,
        descriptor: ConnectionDescriptor,
        target: MQTarget,
    ):
        self.client = client
        self.descriptor = descriptor
        self.target = target
        self._connected = False
        self._handle: Any = None

    def open(self, mode: OpenMode) -> None:
        """Connects and opens the target. Raises TransportError on either failure."""
        try:
            self.client.connect(self.descriptor)
        except TransportError as e:
            logger.error(str(e))
            raise
        self._connected = True
        logger.success(f"MQCONN to {self.descriptor.queue_manager} successful")

        try:
            self._handle = self.client.open(self.target, mode)
        except TransportError as e:
            logger.error(str(e))
            raise
        if mode is OpenMode.SUBSCRIBE:
            logger.success(f"MQSUB to topic {self.target} successful")
        else:
            logger.success(f"MQOPEN of {self.target} successful")

    def put(self, payload: bytes, fmt: str | None = None) -> bytes:
        self._ensure_open()
        try:
            msg_id = self.client.put(self._handle, payload, self.target.put_options, fmt)
        except TransportError as e:
            logger.error(str(e))
            raise
        logger.success("MQPUT successful")
        if msg_id:
            logger.info(f"MQ MsgId: {to_hex(msg_id)}")
        return msg_id

    def get(self, options: GetOptions) -> MQDelivery:
        self._ensure_open()
        return self.client.get(self._handle, options)

    def commit(self) -> None:
        self.client.commit()

    def backout(self) -> None:
        self.client.backout()
        logger.warning(f"MQBACK on {self.descriptor.queue_manager} successful")

    def close(self) -> None:
        """Closes the object handle, then disconnects. Failures are logged, never raised."""
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                self.client.close(handle)
                logger.success("MQCLOSE successful")
            except TransportError as e:
                logger.error(str(e))
            except Exception as e:
                logger.warning(f"Exception during MQCLOSE: {e}")

        if self._connected:
            self._connected = False
            try:
                self.client.disconnect()
                logger.success("MQDISC successful")
            except TransportError as e:
                logger.error(str(e))
            except Exception as e:
                logger.warning(f"Exception during MQDISC: {e}")

    def _ensure_open(self):
        if self._handle is None:
            raise TransportError("MQOPEN", detail=f"{self.target} is not open")

    def __enter__(self) -> "MQSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
