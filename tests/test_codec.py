"""
Tests for the data channel frame codec.
"""

import json
import struct
import uuid

import pytest

from ssm_tunnel.core.domain.exceptions import ProtocolError
from ssm_tunnel.core.domain.messages import AgentMessage, MessageType, PayloadType
from ssm_tunnel.infrastructure.protocol import codec


class TestHeaderLayout:
    """Byte layout of encoded frames."""

    def test_header_size(self) -> None:
        assert codec.HEADER_SIZE == 116
        assert struct.calcsize(codec.HEADER_FORMAT) == 116

    def test_field_offsets(self) -> None:
        message_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
        frame = codec.encode(
            MessageType.INPUT_STREAM_DATA, b"abc", 7,
            PayloadType.OUTPUT, flags=3, message_id=message_id)

        assert len(frame) == 116 + 3
        assert struct.unpack(">I", frame[0:4])[0] == 116
        assert frame[4:20].rstrip(b"\x00") == b"input_data"
        assert struct.unpack(">I", frame[20:24])[0] == 1
        assert struct.unpack(">q", frame[32:40])[0] == 7
        assert struct.unpack(">Q", frame[40:48])[0] == 3
        assert frame[48:64] == message_id.bytes
        assert frame[64:84] == codec.compute_digest(b"abc")
        assert struct.unpack(">I", frame[84:88])[0] == int(PayloadType.OUTPUT)
        assert struct.unpack(">I", frame[88:92])[0] == 3
        assert frame[92:116] == b"\x00" * 24
        assert frame[116:] == b"abc"

    def test_created_date_is_milliseconds(self) -> None:
        frame = codec.encode(MessageType.OUTPUT_STREAM_DATA, b"", 0)
        created = struct.unpack(">Q", frame[24:32])[0]
        # Milliseconds since the epoch, well past 2020
        assert created > 1_577_836_800_000

    def test_message_ids_are_random(self) -> None:
        first = codec.decode(codec.encode(MessageType.INPUT_STREAM_DATA, b"x", 0))
        second = codec.decode(codec.encode(MessageType.INPUT_STREAM_DATA, b"x", 0))
        assert first.message_id != second.message_id


class TestEncodeDecode:
    """Encoding and decoding of whole frames."""

    @pytest.mark.parametrize("message_type", list(MessageType))
    @pytest.mark.parametrize("payload_type", list(PayloadType))
    @pytest.mark.parametrize("sequence_number", [0, 42, 2**63 - 1])
    def test_decode_recovers_fields(
        self,
        message_type: MessageType,
        payload_type: PayloadType,
        sequence_number: int
    ) -> None:
        message_id = uuid.uuid4()
        frame = codec.encode(
            message_type, b"hello world", sequence_number, payload_type, message_id=message_id)

        message = codec.decode(frame)

        assert isinstance(message, AgentMessage)
        assert message.message_type == message_type
        assert message.sequence_number == sequence_number
        assert message.payload == b"hello world"
        assert message.payload_type == payload_type
        assert message.message_id == message_id
        assert message.header_length == 116
        assert message.schema_version == 1
        assert message.payload_length == 11
        assert codec.verify_digest(message)

    def test_empty_payload(self) -> None:
        message = codec.decode(codec.encode(MessageType.ACKNOWLEDGE, b"", 0))
        assert message.payload == b""
        assert message.payload_length == 0

    def test_decode_accepts_bytearray(self) -> None:
        frame = bytearray(codec.encode(MessageType.CHANNEL_CLOSED, b"bye", 1))
        assert codec.decode(frame).message_type == MessageType.CHANNEL_CLOSED

    def test_encode_rejects_unknown_type(self) -> None:
        with pytest.raises(ProtocolError):
            codec.encode("input_data", b"", 0)  # type: ignore[arg-type]

    def test_decode_rejects_short_frame(self) -> None:
        with pytest.raises(ProtocolError, match="too short"):
            codec.decode(b"\x00" * 115)

    def test_decode_rejects_length_mismatch(self) -> None:
        frame = codec.encode(MessageType.INPUT_STREAM_DATA, b"abcdef", 0)
        with pytest.raises(ProtocolError, match="length mismatch"):
            codec.decode(frame[:-2])

    def test_decode_rejects_unknown_tag(self) -> None:
        frame = bytearray(codec.encode(MessageType.INPUT_STREAM_DATA, b"", 0))
        frame[4:20] = b"not_a_real_type\x00"
        with pytest.raises(ProtocolError, match="Unknown message type"):
            codec.decode(bytes(frame))

    def test_decode_rejects_unknown_payload_type(self) -> None:
        frame = bytearray(codec.encode(MessageType.INPUT_STREAM_DATA, b"", 0))
        frame[84:88] = struct.pack(">I", 99)
        with pytest.raises(ProtocolError, match="payload type"):
            codec.decode(bytes(frame))

    def test_decode_rejects_bad_header_length(self) -> None:
        frame = bytearray(codec.encode(MessageType.INPUT_STREAM_DATA, b"", 0))
        frame[0:4] = struct.pack(">I", 100)
        with pytest.raises(ProtocolError, match="header length"):
            codec.decode(bytes(frame))

    def test_try_decode_returns_none_for_raw_bytes(self) -> None:
        assert codec.try_decode(b"GET / HTTP/1.1\r\n") is None

    def test_digest_mismatch_detected(self) -> None:
        frame = bytearray(codec.encode(MessageType.OUTPUT_STREAM_DATA, b"abc", 0))
        frame[-1:] = b"z"
        message = codec.decode(bytes(frame))
        assert not codec.verify_digest(message)


class TestPayloadBuilders:
    """ACK and handshake payloads."""

    def test_acknowledge_references_message(self) -> None:
        message = codec.decode(codec.encode(MessageType.OUTPUT_STREAM_DATA, b"x", 9))

        content = codec.parse_acknowledge(codec.build_acknowledge(message))

        assert content == {
            "AcknowledgedMessageType": "output_data",
            "AcknowledgedMessageId": str(message.message_id),
            "AcknowledgedMessageSequenceNumber": 9,
            "IsSequentialMessage": True,
        }

    def test_parse_acknowledge_invalid(self) -> None:
        assert codec.parse_acknowledge(b"\xff\xfe") is None
        assert codec.parse_acknowledge(b"[1, 2]") is None

    def test_handshake_carries_token(self) -> None:
        content = json.loads(codec.build_handshake("secret-token"))

        assert content["tokenValue"] == "secret-token"
        assert content["schemaVersion"] == "1.0"
        uuid.UUID(content["requestId"])
        uuid.UUID(content["clientId"])

    def test_handshake_response(self) -> None:
        content = json.loads(codec.build_handshake_response())
        assert content["Errors"] == []


class TestAgentMessage:
    """AgentMessage helpers."""

    def test_informational_payloads(self) -> None:
        assert AgentMessage(MessageType.OUTPUT_STREAM_DATA, 0, payload_type=PayloadType.ERROR).is_informational
        assert not AgentMessage(MessageType.OUTPUT_STREAM_DATA, 0).is_informational

    def test_payload_text_replaces_bad_bytes(self) -> None:
        message = AgentMessage(MessageType.OUTPUT_STREAM_DATA, 0, payload=b"ok\xff")
        assert message.payload_text() == "ok�"

    def test_from_tag(self) -> None:
        assert MessageType.from_tag("acknowledge") == MessageType.ACKNOWLEDGE
        assert MessageType.from_tag("bogus") is None
