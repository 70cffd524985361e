"""Whiteboard server: registers clients over TCP and relays strokes over UDP."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import itertools
import logging
import random
import socket
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from .colors import ColorPool
from .peer import Peer
from .protocol import (
    TCP_FRAME_MIN_LEN,
    TCP_PORT,
    UDP_FRAME_MIN_LEN,
    UDP_PORT,
    ClientInfo,
    MessageType,
    ProtocolError,
    Stroke,
    decode_tcp_frame,
    decode_udp_frame,
    encode_tcp_frame,
    encode_udp_frame,
)

log = logging.getLogger(__name__)

_PORT = struct.Struct(">H")


def get_host_ip_address() -> str:
    """Return the first non-loopback IPv4 address of this host, or ''."""
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return ""
    for *_, sockaddr in infos:
        address = sockaddr[0]
        if not address.startswith("127."):
            return address
    return ""


@dataclass(eq=False)
class ConnectedClient:
    """A peer together with the TCP stream it is connected through."""

    peer: Peer
    writer: Any
    address: Tuple[Any, ...] = ()

    @property
    def client_id(self) -> int:
        return self.peer.client_id

    @property
    def host(self) -> str:
        return str(self.address[0]) if self.address else ""

    @property
    def port(self) -> int:
        return int(self.address[1]) if len(self.address) > 1 else 0

    def send(self, message: bytes) -> None:
        self.writer.write(message)


class _UdpProtocol(asyncio.DatagramProtocol):
    def __init__(self, server: "WhiteboardServer") -> None:
        self._server = server

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        if len(data) < UDP_FRAME_MIN_LEN:
            return
        try:
            self._server.handle_udp_frame(addr, data)
        except ProtocolError as exc:
            log.warning("Bad UDP frame from %s: %s", addr, exc)


class WhiteboardServer:
    """Tracks connected clients and keeps their canvases in sync."""

    def __init__(
        self,
        tcp_port: int = TCP_PORT,
        udp_port: int = UDP_PORT,
        host: str = "0.0.0.0",
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tcp_port = tcp_port
        self.udp_port = udp_port
        self.host = host
        self.colors = ColorPool(rng)
        self._ids = itertools.count(1)
        self._clients: Dict[int, ConnectedClient] = {}
        self._tcp_server: Optional[asyncio.AbstractServer] = None
        self._udp_transport: Optional[asyncio.DatagramTransport] = None

    @property
    def clients(self) -> Tuple[ConnectedClient, ...]:
        """Connected clients in order of arrival."""
        return tuple(self._clients.values())

    def get(self, client_id: int) -> Optional[ConnectedClient]:
        return self._clients.get(client_id)

    # ----- lifecycle -------------------------------------------------

    async def start(self) -> None:
        """Open the TCP listener and the UDP socket."""
        log.info("Host Server IP address: %s", get_host_ip_address())
        loop = asyncio.get_running_loop()

        self._tcp_server = await asyncio.start_server(
            self._handle_connection, self.host, self.tcp_port
        )
        self.tcp_port = self._tcp_server.sockets[0].getsockname()[1]
        log.info("Started TCP server on port %d", self.tcp_port)

        transport, _ = await loop.create_datagram_endpoint(
            lambda: _UdpProtocol(self), local_addr=(self.host, self.udp_port)
        )
        self._udp_transport = transport
        self.udp_port = transport.get_extra_info("sockname")[1]
        log.info("Started UDP socket on port %d", self.udp_port)

    async def close(self) -> None:
        """Disconnect every client and release both sockets."""
        for client in list(self._clients.values()):
            with contextlib.suppress(Exception):
                client.writer.close()
        self._clients.clear()
        if self._tcp_server is not None:
            self._tcp_server.close()
            with contextlib.suppress(Exception):
                await self._tcp_server.wait_closed()
            self._tcp_server = None
        if self._udp_transport is not None:
            self._udp_transport.close()
            self._udp_transport = None

    async def serve_forever(self) -> None:
        """Start if needed and serve until cancelled."""
        if self._tcp_server is None:
            await self.start()
        assert self._tcp_server is not None
        try:
            await self._tcp_server.serve_forever()
        finally:
            await self.close()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        address = writer.get_extra_info("peername") or ()
        client = self.add_client(writer, tuple(address))
        try:
            await writer.drain()
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    log.warning("Line too long from client %d", client.client_id)
                    break
                if not line or not line.endswith(b"\n"):
                    break
                if len(line) >= TCP_FRAME_MIN_LEN:
                    try:
                        self.handle_tcp_frame(client, line)
                    except ProtocolError as exc:
                        log.warning("Bad TCP frame from client %d: %s", client.client_id, exc)
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            self.remove_client(client)
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    # ----- client bookkeeping ----------------------------------------

    def add_client(self, writer: Any, address: Tuple[Any, ...] = ()) -> ConnectedClient:
        """Register a new connection, give it an id and color, and acknowledge it."""
        peer = Peer(client_id=next(self._ids), color=self.colors.allocate())
        client = ConnectedClient(peer=peer, writer=writer, address=tuple(address))
        self._clients[peer.client_id] = client
        log.info(
            "Client connected from %s port %s | Id: %d | Color: %s",
            client.host, client.port, peer.client_id, peer.color,
        )
        self._send_ack_connect(client)
        return client

    def remove_client(self, client: ConnectedClient) -> bool:
        """Drop a client, tell the others, and free its color."""
        if self._clients.get(client.client_id) is not client:
            return False
        log.info("Client disconnected | Id: %d", client.client_id)
        self._broadcast_client_disconnected(client)
        self.colors.remove(client.peer.color)
        del self._clients[client.client_id]
        with contextlib.suppress(Exception):
            client.writer.close()
        return True

    # ----- incoming frames -------------------------------------------

    def handle_tcp_frame(self, client: ConnectedClient, data: bytes) -> None:
        """Act on one TCP line received from ``client``."""
        frame = decode_tcp_frame(data)
        log.info(
            ">>> TCP from %s port %s | Type: %s | Id: %d | Payload: %r",
            client.host, client.port, frame.msg_type, frame.client_id, frame.payload,
        )
        if frame.client_id != client.client_id:
            return

        if frame.msg_type == MessageType.REGISTER_CLIENT:
            client.peer.name = frame.payload.decode("utf-8", errors="replace")
            self._send_ack_register_client(client)
            self._broadcast_client_connected(client)
        elif frame.msg_type == MessageType.REGISTER_UDP_PORT:
            if len(frame.payload) < _PORT.size:
                raise ProtocolError("UDP port payload too short")
            (client.peer.udp_port,) = _PORT.unpack_from(frame.payload)
            self._send_ack_register_udp_port(client)
        elif frame.msg_type == MessageType.REQUEST_ALL_CLIENT_INFOS:
            self._send_all_clients_infos(client)

    def handle_udp_frame(self, sender: Tuple[Any, ...], data: bytes) -> int:
        """Act on one datagram; return how many datagrams were relayed."""
        frame = decode_udp_frame(data)
        log.info(
            ">>> UDP from %s port %s | Type: %s | Payload: %r",
            sender[0] if sender else "", sender[1] if len(sender) > 1 else "",
            frame.msg_type, frame.payload,
        )
        if frame.msg_type == MessageType.DATA_CANVAS_CLIENT:
            return self._broadcast_data_canvas_sync(frame.payload)
        return 0

    # ----- outgoing frames -------------------------------------------

    def _send_ack_connect(self, client: ConnectedClient) -> None:
        peer = client.peer
        client.send(
            encode_tcp_frame(MessageType.ACK_CONNECT, peer.client_id, peer.color.encode("ascii"))
        )
        log.info("<<< TCP to %s port %s | ACK_CONNECT | %s", client.host, client.port, peer.describe())

    def _send_ack_register_client(self, client: ConnectedClient) -> None:
        peer = client.peer
        client.send(
            encode_tcp_frame(MessageType.ACK_REGISTER_CLIENT, peer.client_id, peer.name.encode("utf-8"))
        )
        log.info(
            "<<< TCP to %s port %s | ACK_REGISTER_CLIENT | Id: %d | Name: %s",
            client.host, client.port, peer.client_id, peer.name,
        )

    def _send_ack_register_udp_port(self, client: ConnectedClient) -> None:
        peer = client.peer
        client.send(
            encode_tcp_frame(
                MessageType.ACK_REGISTER_UDP_PORT, peer.client_id, _PORT.pack(peer.udp_port)
            )
        )
        log.info(
            "<<< TCP to %s port %s | ACK_REGISTER_UDP_PORT | Id: %d | UDP Port: %d",
            client.host, client.port, peer.client_id, peer.udp_port,
        )

    @staticmethod
    def _client_infos_frame(recipient: ConnectedClient, subject: ConnectedClient) -> bytes:
        info = ClientInfo(subject.client_id, subject.peer.color, subject.peer.name)
        return encode_tcp_frame(MessageType.CLIENT_INFOS, recipient.client_id, info.to_payload())

    def _send_all_clients_infos(self, client: ConnectedClient) -> None:
        for other in list(self._clients.values()):
            client.send(self._client_infos_frame(client, other))
            log.info(
                "<<< TCP to %s port %s | CLIENT_INFOS | Id: %d | OId: %d | Color: %s | Name: %s",
                client.host, client.port, client.client_id, other.client_id,
                other.peer.color, other.peer.name,
            )

    def _broadcast_client_connected(self, client: ConnectedClient) -> None:
        for other in list(self._clients.values()):
            if other is client:
                continue
            other.send(self._client_infos_frame(other, client))
            log.info(
                "<<< TCP to %s port %s | CLIENT_INFOS | Id: %d | OId: %d | Color: %s | Name: %s",
                other.host, other.port, other.client_id, client.client_id,
                client.peer.color, client.peer.name,
            )

    def _broadcast_client_disconnected(self, client: ConnectedClient) -> None:
        message = encode_tcp_frame(
            MessageType.CLIENT_DISCONNECTED, client.client_id, client.peer.name.encode("utf-8")
        )
        for other in list(self._clients.values()):
            if other is client or other.writer is None:
                continue
            other.send(message)
            log.info(
                "<<< TCP to %s port %s | CLIENT_DISCONNECTED | Id: %d | Name: %s",
                other.host, other.port, client.client_id, client.peer.name,
            )

    def _broadcast_data_canvas_sync(self, payload: bytes) -> int:
        try:
            summary = repr(Stroke.from_bytes(payload))
        except ProtocolError:
            summary = repr(payload)
        message = encode_udp_frame(MessageType.DATA_CANVAS_SYNC, payload)
        sent = 0
        for client in list(self._clients.values()):
            if not client.peer.udp_port or not client.host:
                continue
            if self._udp_transport is None:
                raise RuntimeError("server is not started")
            self._udp_transport.sendto(message, (client.host, client.peer.udp_port))
            sent += 1
            log.info(
                "<<< UDP to %s port %d | DATA_CANVAS_SYNC | %s",
                client.host, client.peer.udp_port, summary,
            )
        return sent


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the whiteboard server until interrupted."""
    parser = argparse.ArgumentParser(prog="sharedboard-server", description=__doc__)
    parser.add_argument("--host", default="0.0.0.0", help="address to bind")
    parser.add_argument("--tcp-port", type=int, default=TCP_PORT)
    parser.add_argument("--udp-port", type=int, default=UDP_PORT)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    server = WhiteboardServer(tcp_port=args.tcp_port, udp_port=args.udp_port, host=args.host)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        pass
    return 0