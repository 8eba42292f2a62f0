"""
MQTT 3.1.1 Packet Codec
MQTT控制报文编解码

Pure byte-level encoding of CONNECT and PUBLISH and decoding of CONNACK.
No I/O happens here.

The remaining length is always written as a single byte, so a packet whose
variable header plus payload exceeds 255 bytes is rejected with
EncodingError instead of being truncated.
"""

import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import EncodingError

CONNECT = 0x10
CONNACK = 0x20
PUBLISH_QOS0 = 0x30

PROTOCOL_NAME = b"MQTT"
PROTOCOL_LEVEL = 4  # 3.1.1
KEEP_ALIVE_SECONDS = 60
CONNECT_VARIABLE_HEADER_LENGTH = 10

FLAG_USERNAME = 0x80
FLAG_PASSWORD = 0x40

MAX_REMAINING_LENGTH = 255

CONNACK_RETURN_CODES = {
    0x00: "Connection accepted",
    0x01: "Unacceptable protocol version",
    0x02: "Identifier rejected",
    0x03: "Server unavailable",
    0x04: "Bad user name or password",
    0x05: "Not authorized",
}


@dataclass(frozen=True)
class ConnAck:
    """Decoded CONNACK. return_code is None when the reply was malformed."""
    accepted: bool
    return_code: Optional[int] = None

    @property
    def reason(self) -> str:
        if self.return_code is None:
            return "Malformed CONNACK"
        return CONNACK_RETURN_CODES.get(self.return_code, f"Unknown return code 0x{self.return_code:02x}")


def _encode_string(value: str) -> bytes:
    data = value.encode("utf-8")
    if len(data) > 0xFFFF:
        raise EncodingError(f"String field too long: {len(data)} bytes", len(data))
    return struct.pack("!H", len(data)) + data


def _fixed_header(packet_type: int, remaining_length: int) -> bytes:
    if remaining_length > MAX_REMAINING_LENGTH:
        raise EncodingError(
            f"Remaining length {remaining_length} exceeds single-byte limit of {MAX_REMAINING_LENGTH}",
            remaining_length,
        )
    return bytes((packet_type, remaining_length))


def encode_connect(client_id: str, username: Optional[str] = None,
                   password: Optional[str] = None) -> bytes:
    """
    Build a CONNECT packet

    Args:
        client_id: MQTT client identifier
        username: Optional user name (sets connect flag bit 7)
        password: Optional password (sets connect flag bit 6)

    Raises:
        EncodingError: If the packet does not fit a one-byte remaining length
    """
    flags = 0
    payload = _encode_string(client_id)
    if username:
        flags |= FLAG_USERNAME
        payload += _encode_string(username)
    if password:
        flags |= FLAG_PASSWORD
        payload += _encode_string(password)

    variable_header = (
        _encode_string(PROTOCOL_NAME.decode("ascii"))
        + bytes((PROTOCOL_LEVEL, flags))
        + struct.pack("!H", KEEP_ALIVE_SECONDS)
    )

    remaining_length = CONNECT_VARIABLE_HEADER_LENGTH + len(payload)
    return _fixed_header(CONNECT, remaining_length) + variable_header + payload


def encode_publish(topic: str, message: str) -> bytes:
    """
    Build a QoS 0 PUBLISH packet (no DUP, no RETAIN)

    The message occupies the rest of the packet without a length prefix.
    """
    topic_field = _encode_string(topic)
    body = message.encode("utf-8")
    remaining_length = len(topic_field) + len(body)
    return _fixed_header(PUBLISH_QOS0, remaining_length) + topic_field + body


def decode_connack(data: bytes) -> ConnAck:
    """
    Decode a CONNACK reply

    Anything that is not at least four bytes starting with 0x20 decodes as
    not accepted; this function never raises.
    """
    if not data or len(data) < 4 or data[0] != CONNACK:
        return ConnAck(accepted=False)
    return_code = data[3]
    return ConnAck(accepted=return_code == 0x00, return_code=return_code)


def decode_fixed_header(packet: bytes) -> Tuple[int, int, int]:
    """Split the first two bytes into (packet type, flags, remaining length)"""
    if len(packet) < 2:
        raise ValueError("Packet shorter than a fixed header")
    return packet[0] >> 4, packet[0] & 0x0F, packet[1]
