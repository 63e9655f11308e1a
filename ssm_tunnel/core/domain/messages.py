"""
Wire message domain models.

An AgentMessage is one frame of the data channel protocol: a fixed
116-byte header followed by the payload. The codec in
``ssm_tunnel.infrastructure.protocol.codec`` turns these into bytes.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional


class MessageType(Enum):
    """Message type tags. Values are the on-wire strings (max 16 bytes)."""
    INPUT_STREAM_DATA = "input_data"
    OUTPUT_STREAM_DATA = "output_data"
    ACKNOWLEDGE = "acknowledge"
    CHANNEL_CLOSED = "channel_closed"
    START_PUBLICATION = "start_publish"
    PAUSE_PUBLICATION = "pause_publish"

    @classmethod
    def from_tag(cls, tag: str) -> Optional['MessageType']:
        """Look up a type by its wire tag, None if unknown."""
        for member in cls:
            if member.value == tag:
                return member
        return None


class PayloadType(IntEnum):
    """Payload type enum carried in the header."""
    OUTPUT = 1
    ERROR = 2
    HANDSHAKE_REQUEST = 5
    HANDSHAKE_RESPONSE = 6
    HANDSHAKE_COMPLETE = 7
    FLAG = 10


# Payload types whose content is status text rather than forwarded bytes
INFORMATIONAL_PAYLOADS = frozenset({
    PayloadType.ERROR,
    PayloadType.FLAG,
    PayloadType.HANDSHAKE_REQUEST,
    PayloadType.HANDSHAKE_RESPONSE,
    PayloadType.HANDSHAKE_COMPLETE,
})


@dataclass(frozen=True)
class AgentMessage:
    """One decoded data channel frame."""

    message_type: MessageType
    """Message type tag."""

    sequence_number: int
    """Per-direction sequence number."""

    payload: bytes = b""
    """Payload bytes."""

    payload_type: PayloadType = PayloadType.OUTPUT
    """What the payload contains."""

    header_length: int = 116
    """Header length as carried on the wire."""

    schema_version: int = 1
    """Frame schema version."""

    created_date: int = 0
    """Creation timestamp, milliseconds since the epoch."""

    flags: int = 0
    """Header flags."""

    message_id: uuid.UUID = field(default_factory=uuid.uuid4)
    """Random per-message identifier."""

    payload_digest: bytes = b""
    """Truncated SHA-256 of the payload."""

    @property
    def payload_length(self) -> int:
        return len(self.payload)

    @property
    def is_informational(self) -> bool:
        """True when the payload is status text, not forwarded data."""
        return self.payload_type in INFORMATIONAL_PAYLOADS

    def payload_text(self) -> str:
        """Payload decoded as text, replacing undecodable bytes."""
        return self.payload.decode("utf-8", errors="replace")
