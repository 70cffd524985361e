"""Wire format shared by the whiteboard server and its clients.

TCP frames are ``type (1 byte) | client id (4 bytes, big endian) | payload | '\\n'``.
UDP frames are ``type (1 byte) | payload | '\\n'``.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

TCP_PORT = 12345
UDP_PORT = TCP_PORT + 1

TCP_FRAME_MIN_LEN = 5
UDP_FRAME_MIN_LEN = 5

FRAME_END = b"\n"
COLOR_LEN = 7


class MessageType(IntEnum):
    """Kinds of messages exchanged between server and clients."""

    NONE = 0
    ACK_CONNECT = 1
    REGISTER_CLIENT = 2
    ACK_REGISTER_CLIENT = 3
    REGISTER_UDP_PORT = 4
    ACK_REGISTER_UDP_PORT = 5
    REQUEST_ALL_CLIENT_INFOS = 6
    CLIENT_INFOS = 7
    DATA_CANVAS_CLIENT = 8
    DATA_CANVAS_SYNC = 9
    CLIENT_DISCONNECTED = 100


class ProtocolError(ValueError):
    """Raised when a frame or payload cannot be encoded or decoded."""


_HEADER = struct.Struct(">BI")
_ID = struct.Struct(">I")
_STROKE = struct.Struct(">iiiiI")
_COLOR_RE = re.compile(r"#[0-9a-fA-F]{6}")


def _normalize_color(color: str) -> str:
    if not isinstance(color, str) or not _COLOR_RE.fullmatch(color):
        raise ProtocolError(f"invalid color {color!r}, expected #rrggbb")
    return color.lower()


def _message_type(value: int) -> Union[MessageType, int]:
    try:
        return MessageType(value)
    except ValueError:
        return value


def _strip_end(data: bytes) -> bytes:
    return data[: -len(FRAME_END)] if data.endswith(FRAME_END) else data


@dataclass(frozen=True)
class TcpFrame:
    """A decoded TCP frame."""

    msg_type: Union[MessageType, int]
    client_id: int
    payload: bytes = b""


@dataclass(frozen=True)
class UdpFrame:
    """A decoded UDP datagram."""

    msg_type: Union[MessageType, int]
    payload: bytes = b""


def encode_tcp_frame(msg_type: int, client_id: int, payload: bytes = b"") -> bytes:
    """Build a newline-terminated TCP frame."""
    try:
        header = _HEADER.pack(int(msg_type), client_id)
    except struct.error as exc:
        raise ProtocolError(f"cannot encode TCP header: {exc}") from exc
    return header + bytes(payload) + FRAME_END


def decode_tcp_frame(data: bytes) -> TcpFrame:
    """Split a TCP frame into type, client id and payload."""
    data = bytes(data)
    if len(data) < TCP_FRAME_MIN_LEN:
        raise ProtocolError(
            f"TCP frame too short: {len(data)} bytes, need {TCP_FRAME_MIN_LEN}"
        )
    (client_id,) = _ID.unpack_from(data, 1)
    return TcpFrame(
        msg_type=_message_type(data[0]),
        client_id=client_id,
        payload=_strip_end(data[TCP_FRAME_MIN_LEN:]),
    )


def encode_udp_frame(msg_type: int, payload: bytes = b"") -> bytes:
    """Build a newline-terminated UDP datagram."""
    value = int(msg_type)
    if not 0 <= value <= 0xFF:
        raise ProtocolError(f"message type {value} does not fit in one byte")
    return bytes((value,)) + bytes(payload) + FRAME_END


def decode_udp_frame(data: bytes) -> UdpFrame:
    """Split a UDP datagram into type and payload."""
    data = bytes(data)
    if len(data) < UDP_FRAME_MIN_LEN:
        raise ProtocolError(
            f"UDP frame too short: {len(data)} bytes, need {UDP_FRAME_MIN_LEN}"
        )
    return UdpFrame(msg_type=_message_type(data[0]), payload=_strip_end(data[1:]))


@dataclass(frozen=True)
class Stroke:
    """One line segment drawn on the canvas."""

    x_begin: int
    y_begin: int
    x_end: int
    y_end: int
    width: int
    color: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "color", _normalize_color(self.color))

    def to_bytes(self) -> bytes:
        """Encode as four signed coordinates, an unsigned width and a hex color."""
        try:
            head = _STROKE.pack(
                self.x_begin, self.y_begin, self.x_end, self.y_end, self.width
            )
        except struct.error as exc:
            raise ProtocolError(f"cannot encode stroke: {exc}") from exc
        return head + self.color.encode("ascii")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Stroke":
        """Decode a stroke payload as produced by :meth:`to_bytes`."""
        data = bytes(data)
        need = _STROKE.size + COLOR_LEN
        if len(data) < need:
            raise ProtocolError(f"stroke payload too short: {len(data)} bytes, need {need}")
        x_begin, y_begin, x_end, y_end, width = _STROKE.unpack_from(data)
        raw_color = data[_STROKE.size : need]
        try:
            color = raw_color.decode("ascii")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"invalid color bytes {raw_color!r}") from exc
        return cls(x_begin, y_begin, x_end, y_end, width, color)


@dataclass(frozen=True)
class ClientInfo:
    """Identity of a client as announced by the server."""

    client_id: int
    color: str
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "color", _normalize_color(self.color))

    def to_payload(self) -> bytes:
        """Encode as id (4 bytes), hex color and UTF-8 name."""
        try:
            head = _ID.pack(self.client_id)
        except struct.error as exc:
            raise ProtocolError(f"cannot encode client id: {exc}") from exc
        return head + self.color.encode("ascii") + self.name.encode("utf-8")

    @classmethod
    def from_payload(cls, payload: bytes) -> "ClientInfo":
        """Decode a CLIENT_INFOS payload."""
        payload = bytes(payload)
        if len(payload) < _ID.size:
            raise ProtocolError("client info payload too short")
        (client_id,) = _ID.unpack_from(payload)
        start = payload.find(b"#", _ID.size)
        if start == -1 or start + COLOR_LEN > len(payload):
            raise ProtocolError("invalid color format in client info payload")
        try:
            color = payload[start : start + COLOR_LEN].decode("ascii")
            name = payload[start + COLOR_LEN :].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("undecodable client info payload") from exc
        return cls(client_id, color, name)