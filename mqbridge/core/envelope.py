"""
Envelope transform applied to every message crossing the bridge.

Messages going into MQ are wrapped in a small textual header carrying the
originating Pub/Sub id. Messages going into Pub/Sub are JSON-stringified and
tagged with attributes naming their origin and MQ message id.
"""

import json

from .message import Message

CR = "\r"
MQ_ORIGIN = "ibm-mq"


def to_hex(data: bytes) -> str:
    """Two lowercase, zero-padded hex digits per byte, in byte order."""
    return bytes(data).hex()


def from_hex(text: str) -> bytes:
    return bytes.fromhex(text)


def wrap_for_mq(message: Message) -> str:
    return f'"googleID": {message.message_id}{CR}"Content": {{{CR}{message.text()}}}'


def wrap_for_pubsub(message: Message) -> tuple[bytes, dict[str, str]]:
    if message.is_text:
        data = json.dumps(message.text(), ensure_ascii=False)
    else:
        # Binary payloads keep the {"type": "Buffer"} shape downstream consumers parse.
        data = json.dumps(
            {"type": "Buffer", "data": list(message.payload)}, separators=(",", ":")
        )

    attributes = {"origin": MQ_ORIGIN, "msgId": message.message_id}
    return data.encode("utf-8"), attributes
