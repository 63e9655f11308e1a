"""
Data channel frame codec.

Wire format (binary, big-endian), 116-byte header:
┌──────────┬──────────┬────────┬─────────┬──────────┬───────┬───────────┬──────────┬──────────┬──────────┬──────────┬─────────┐
│HeaderLen │ MsgType  │ Schema │ Created │ Sequence │ Flags │ MessageId │ Digest   │ PayloadT │ PayloadL │ Reserved │ Payload │
│  (4B)    │  (16B)   │  (4B)  │  (8B)   │   (8B)   │ (8B)  │   (16B)   │  (20B)   │   (4B)   │   (4B)   │  (24B)   │  (var)  │
└──────────┴──────────┴────────┴─────────┴──────────┴───────┴───────────┴──────────┴──────────┴──────────┴──────────┴─────────┘

The payload starts at the offset given by HeaderLen, which is always 116
for frames this module produces.
"""

import hashlib
import json
import struct
import time
import uuid
from typing import Optional, Union

from ...core.domain.exceptions import ProtocolError
from ...core.domain.messages import AgentMessage, MessageType, PayloadType

# =============================================================================
# Header Format
# =============================================================================

HEADER_FORMAT = ">I16sIQqQ16s20sII24x"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 116 bytes

# Offsets of the fields read before the full struct unpack
TYPE_OFFSET = 4
TYPE_WIDTH = 16
PAYLOAD_LENGTH_OFFSET = 88

SCHEMA_VERSION = 1
DIGEST_SIZE = 20
HANDSHAKE_SCHEMA_VERSION = "1.0"
CLIENT_VERSION = "1.0.0"


def compute_digest(payload: bytes) -> bytes:
    """Truncated SHA-256 of the payload. Integrity only, not authentication."""
    return hashlib.sha256(payload).digest()[:DIGEST_SIZE]


def encode(
    message_type: MessageType,
    payload: bytes,
    sequence_number: int,
    payload_type: PayloadType = PayloadType.OUTPUT,
    flags: int = 0,
    message_id: Optional[uuid.UUID] = None,
) -> bytes:
    """
    Build a data channel frame.

    Args:
        message_type: Message type tag
        payload: Payload bytes
        sequence_number: Outbound sequence number for this frame
        payload_type: What the payload contains
        flags: Header flags
        message_id: Message id, random when omitted

    Returns:
        Complete frame as bytes

    Raises:
        ProtocolError: If message_type is not a MessageType
    """
    if not isinstance(message_type, MessageType):
        raise ProtocolError(f"Unknown message type: {message_type!r}")

    payload = bytes(payload)
    header = struct.pack(
        HEADER_FORMAT,
        HEADER_SIZE,
        message_type.value.encode("ascii"),
        SCHEMA_VERSION,
        int(time.time() * 1000),
        sequence_number,
        flags,
        (message_id or uuid.uuid4()).bytes,
        compute_digest(payload),
        int(PayloadType(payload_type)),
        len(payload),
    )
    return header + payload


def decode(frame: Union[bytes, bytearray, memoryview]) -> AgentMessage:
    """
    Parse a data channel frame.

    Args:
        frame: Raw frame bytes

    Returns:
        Decoded AgentMessage

    Raises:
        ProtocolError: If the frame is not a well-formed frame
    """
    data = bytes(frame)
    if len(data) < HEADER_SIZE:
        raise ProtocolError(
            f"Frame too short: {len(data)} bytes, header needs {HEADER_SIZE}")

    (
        header_length,
        raw_type,
        schema_version,
        created_date,
        sequence_number,
        flags,
        raw_message_id,
        digest,
        raw_payload_type,
        payload_length,
    ) = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])

    if header_length < HEADER_SIZE or header_length > len(data):
        raise ProtocolError(f"Invalid header length: {header_length}")

    try:
        tag = raw_type.rstrip(b"\x00").decode("ascii")
    except UnicodeDecodeError:
        raise ProtocolError("Message type is not ASCII")

    message_type = MessageType.from_tag(tag)
    if message_type is None:
        raise ProtocolError(f"Unknown message type tag: {tag!r}")

    try:
        payload_type = PayloadType(raw_payload_type)
    except ValueError:
        raise ProtocolError(f"Unknown payload type: {raw_payload_type}")

    payload = data[header_length:]
    if payload_length != len(payload):
        raise ProtocolError(
            f"Payload length mismatch: header says {payload_length}, frame carries {len(payload)}")

    return AgentMessage(
        message_type=message_type,
        sequence_number=sequence_number,
        payload=payload,
        payload_type=payload_type,
        header_length=header_length,
        schema_version=schema_version,
        created_date=created_date,
        flags=flags,
        message_id=uuid.UUID(bytes=raw_message_id),
        payload_digest=digest,
    )


def try_decode(frame: Union[bytes, bytearray, memoryview]) -> Optional[AgentMessage]:
    """Parse a frame, returning None instead of raising."""
    try:
        return decode(frame)
    except ProtocolError:
        return None


def verify_digest(message: AgentMessage) -> bool:
    """Check the payload digest carried in the header."""
    return message.payload_digest == compute_digest(message.payload)


# =============================================================================
# Payload builders
# =============================================================================

def build_acknowledge(message: AgentMessage) -> bytes:
    """Payload for the ACKNOWLEDGE frame answering ``message``."""
    return json.dumps({
        "AcknowledgedMessageType": message.message_type.value,
        "AcknowledgedMessageId": str(message.message_id),
        "AcknowledgedMessageSequenceNumber": message.sequence_number,
        "IsSequentialMessage": True,
    }).encode("utf-8")


def parse_acknowledge(payload: bytes) -> Optional[dict]:
    """Parse an ACKNOWLEDGE payload, None when it is not valid JSON."""
    try:
        content = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return content if isinstance(content, dict) else None


def build_handshake(token_value: str) -> str:
    """
    Opening handshake text sent once on a new transport.

    Returns:
        JSON text carrying the token plus fresh request and client ids
    """
    return json.dumps({
        "schemaVersion": HANDSHAKE_SCHEMA_VERSION,
        "requestId": str(uuid.uuid4()),
        "tokenValue": token_value,
        "clientId": str(uuid.uuid4()),
    })


def build_handshake_response() -> bytes:
    """Payload answering a HANDSHAKE_REQUEST from the remote agent."""
    return json.dumps({
        "ClientVersion": CLIENT_VERSION,
        "ProcessedClientActions": [],
        "Errors": [],
    }).encode("utf-8")
