from dataclasses import dataclass, field
from datetime import datetime, timezone

MQ_STRING_FORMAT = "MQSTR"


@dataclass(frozen=True)
class Message:
    """
    Represents a standardized, immutable message within the bridge.
    Produced by whichever transport received it; MQ message ids are
    carried hex-encoded.
    """

    message_id: str
    payload: bytes
    source_id: str

    attributes: dict[str, str] = field(default_factory=dict)
    format: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def age_seconds(self) -> float:
        """Seconds elapsed since the bridge received the message."""
        return (datetime.now(timezone.utc) - self.timestamp).total_seconds()

    @property
    def is_text(self) -> bool:
        return self.format == MQ_STRING_FORMAT

    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")
