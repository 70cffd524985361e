"""Client side of the registration handshake with the whiteboard server."""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from .peer import Peer
from .protocol import (
    TCP_FRAME_MIN_LEN,
    ClientInfo,
    MessageType,
    ProtocolError,
    TcpFrame,
    decode_tcp_frame,
    encode_tcp_frame,
)

log = logging.getLogger(__name__)

_PORT = struct.Struct(">H")
_IPV4_RE = re.compile(
    r"((25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
)
_COLOR_RE = re.compile(r"#[0-9a-fA-F]{6}")


class LoginError(ValueError):
    """Raised when the user name or server address entered is not usable."""

    def __init__(self, name_missing: bool, address_invalid: bool) -> None:
        self.name_missing = name_missing
        self.address_invalid = address_invalid
        problems = []
        if name_missing:
            problems.append("The username must not be empty")
        if address_invalid:
            problems.append("The IP adress have to be : X.X.X.X")
        super().__init__("; ".join(problems))


def is_valid_ipv4(text: str) -> bool:
    """Return True if ``text`` is a dotted-quad IPv4 address."""
    return bool(text) and _IPV4_RE.fullmatch(text) is not None


def validate_login(name: str, address: str) -> None:
    """Raise :class:`LoginError` unless the name is set and the address is IPv4."""
    name_missing = not name
    address_invalid = not is_valid_ipv4(address)
    if name_missing or address_invalid:
        raise LoginError(name_missing, address_invalid)


@dataclass(frozen=True)
class ClientJoined:
    """The server announced a client (possibly ourselves)."""

    peer: Peer


@dataclass(frozen=True)
class ClientLeft:
    """The server announced that a client disconnected."""

    client_id: int
    peer: Optional[Peer] = None


Event = Union[ClientJoined, ClientLeft]


@dataclass(frozen=True)
class SessionReply:
    """Frames to send back to the server and events for the user interface."""

    messages: Tuple[bytes, ...] = ()
    events: Tuple[Event, ...] = ()

    def __add__(self, other: "SessionReply") -> "SessionReply":
        return SessionReply(self.messages + other.messages, self.events + other.events)


class ClientSession:
    """Drives the handshake: connect ack, name, UDP port, then the client list."""

    def __init__(self, name: str, udp_port: int = 0) -> None:
        self.name = name
        self.udp_port = udp_port
        self.me: Optional[Peer] = None
        self.clients: Dict[int, Peer] = {}
        self._buffer = b""

    @property
    def connected(self) -> bool:
        return self.me is not None

    def _require_me(self) -> Peer:
        if self.me is None:
            raise ProtocolError("no ACK_CONNECT received yet")
        return self.me

    def handle_frame(self, data: bytes) -> SessionReply:
        """Act on one TCP line from the server."""
        frame = decode_tcp_frame(data)
        log.debug(
            ">>> TCP | Type: %s | Id: %d | Payload: %r",
            frame.msg_type, frame.client_id, frame.payload,
        )
        if frame.msg_type == MessageType.ACK_CONNECT:
            return self._on_ack_connect(frame)
        if frame.msg_type == MessageType.ACK_REGISTER_CLIENT:
            me = self._require_me()
            port = _PORT.pack(self.udp_port)
            return SessionReply(
                messages=(encode_tcp_frame(MessageType.REGISTER_UDP_PORT, me.client_id, port),)
            )
        if frame.msg_type == MessageType.ACK_REGISTER_UDP_PORT:
            me = self._require_me()
            return SessionReply(
                messages=(encode_tcp_frame(MessageType.REQUEST_ALL_CLIENT_INFOS, me.client_id),)
            )
        if frame.msg_type == MessageType.CLIENT_INFOS:
            return self._on_client_infos(frame)
        if frame.msg_type == MessageType.CLIENT_DISCONNECTED:
            peer = self.clients.pop(frame.client_id, None)
            return SessionReply(events=(ClientLeft(frame.client_id, peer),))
        return SessionReply()

    def _on_ack_connect(self, frame: TcpFrame) -> SessionReply:
        color = frame.payload.decode("ascii", errors="replace")
        if not _COLOR_RE.fullmatch(color):
            raise ProtocolError(f"invalid color {color!r} in ACK_CONNECT")
        self.me = Peer(client_id=frame.client_id, color=color.lower(), name=self.name)
        return SessionReply(
            messages=(
                encode_tcp_frame(
                    MessageType.REGISTER_CLIENT, frame.client_id, self.name.encode("utf-8")
                ),
            )
        )

    def _on_client_infos(self, frame: TcpFrame) -> SessionReply:
        try:
            info = ClientInfo.from_payload(frame.payload)
        except ProtocolError as exc:
            log.warning("Invalid client info: %s", exc)
            return SessionReply()
        peer = self.clients.get(info.client_id)
        if peer is None:
            peer = Peer(client_id=info.client_id, color=info.color, name=info.name)
            self.clients[info.client_id] = peer
        return SessionReply(events=(ClientJoined(peer),))

    def feed(self, data: bytes) -> SessionReply:
        """Buffer raw stream bytes and handle every complete line."""
        self._buffer += bytes(data)
        reply = SessionReply()
        while True:
            end = self._buffer.find(b"\n")
            if end == -1:
                return reply
            line, self._buffer = self._buffer[: end + 1], self._buffer[end + 1 :]
            if len(line) >= TCP_FRAME_MIN_LEN:
                reply = reply + self.handle_frame(line)