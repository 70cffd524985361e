import asyncio
import ipaddress
import random
import struct

import pytest

from sharedboard.protocol import (
    ClientInfo,
    MessageType,
    ProtocolError,
    Stroke,
    TCP_FRAME_MIN_LEN,
    decode_tcp_frame,
    decode_udp_frame,
    encode_tcp_frame,
    encode_udp_frame,
)
from sharedboard.server import WhiteboardServer, get_host_ip_address, main


class FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, chunk):
        self.data += chunk

    def close(self):
        self.closed = True

    def frames(self):
        out = [decode_tcp_frame(line) for line in bytes(self.data).splitlines(keepends=True)]
        self.data.clear()
        return out


def make_server():
    return WhiteboardServer(tcp_port=0, udp_port=0, host="127.0.0.1", rng=random.Random(7))


def test_add_client_sends_ack_connect_with_color():
    server = make_server()
    writer = FakeWriter()
    client = server.add_client(writer, ("127.0.0.1", 5000))
    assert client.client_id == 1
    assert client.peer.color in server.colors
    (frame,) = writer.frames()
    assert frame.msg_type == MessageType.ACK_CONNECT
    assert frame.client_id == 1
    assert frame.payload == client.peer.color.encode("ascii")


def test_ids_increment_and_colors_are_distinct():
    server = make_server()
    first = server.add_client(FakeWriter(), ("127.0.0.1", 1))
    second = server.add_client(FakeWriter(), ("127.0.0.1", 2))
    assert second.client_id == first.client_id + 1
    assert first.peer.color != second.peer.color
    assert len(server.colors) == 2
    assert server.clients == (first, second)


def test_register_client_acks_and_notifies_others():
    server = make_server()
    w1, w2 = FakeWriter(), FakeWriter()
    c1 = server.add_client(w1, ("127.0.0.1", 1))
    c2 = server.add_client(w2, ("127.0.0.1", 2))
    w1.frames()
    w2.frames()

    server.handle_tcp_frame(c1, encode_tcp_frame(MessageType.REGISTER_CLIENT, c1.client_id, b"alice"))
    assert c1.peer.name == "alice"

    (ack,) = w1.frames()
    assert ack.msg_type == MessageType.ACK_REGISTER_CLIENT
    assert ack.client_id == c1.client_id
    assert ack.payload == b"alice"

    (note,) = w2.frames()
    assert note.msg_type == MessageType.CLIENT_INFOS
    assert note.client_id == c2.client_id
    assert ClientInfo.from_payload(note.payload) == ClientInfo(c1.client_id, c1.peer.color, "alice")


def test_frame_with_foreign_id_is_ignored():
    server = make_server()
    writer = FakeWriter()
    client = server.add_client(writer, ("127.0.0.1", 1))
    writer.frames()
    server.handle_tcp_frame(client, encode_tcp_frame(MessageType.REGISTER_CLIENT, client.client_id + 5, b"bob"))
    assert client.peer.name == ""
    assert writer.frames() == []


def test_register_udp_port_is_acknowledged():
    server = make_server()
    writer = FakeWriter()
    client = server.add_client(writer, ("127.0.0.1", 1))
    writer.frames()
    port_bytes = struct.pack(">H", 40000)
    server.handle_tcp_frame(client, encode_tcp_frame(MessageType.REGISTER_UDP_PORT, client.client_id, port_bytes))
    assert client.peer.udp_port == 40000
    (ack,) = writer.frames()
    assert ack.msg_type == MessageType.ACK_REGISTER_UDP_PORT
    assert ack.payload == port_bytes


def test_short_udp_port_payload_raises():
    server = make_server()
    client = server.add_client(FakeWriter(), ("127.0.0.1", 1))
    with pytest.raises(ProtocolError):
        server.handle_tcp_frame(client, encode_tcp_frame(MessageType.REGISTER_UDP_PORT, client.client_id, b"\x01"))


def test_too_short_tcp_frame_raises():
    server = make_server()
    client = server.add_client(FakeWriter(), ("127.0.0.1", 1))
    with pytest.raises(ProtocolError):
        server.handle_tcp_frame(client, b"\x02\x00\n"[: TCP_FRAME_MIN_LEN - 1])


def test_request_all_infos_lists_every_client_in_order():
    server = make_server()
    writers = [FakeWriter() for _ in range(3)]
    clients = [server.add_client(w, ("127.0.0.1", n)) for n, w in enumerate(writers)]
    for name, client in zip(["ann", "ben", "cy"], clients):
        server.handle_tcp_frame(client, encode_tcp_frame(MessageType.REGISTER_CLIENT, client.client_id, name.encode()))
    writers[1].frames()

    asker = clients[1]
    server.handle_tcp_frame(asker, encode_tcp_frame(MessageType.REQUEST_ALL_CLIENT_INFOS, asker.client_id))
    frames = writers[1].frames()
    assert all(f.msg_type == MessageType.CLIENT_INFOS for f in frames)
    assert all(f.client_id == asker.client_id for f in frames)
    infos = [ClientInfo.from_payload(f.payload) for f in frames]
    assert [(i.client_id, i.color, i.name) for i in infos] == [
        (c.client_id, c.peer.color, c.peer.name) for c in clients
    ]


def test_remove_client_notifies_and_frees_color():
    server = make_server()
    w1, w2 = FakeWriter(), FakeWriter()
    c1 = server.add_client(w1, ("127.0.0.1", 1))
    c2 = server.add_client(w2, ("127.0.0.1", 2))
    server.handle_tcp_frame(c1, encode_tcp_frame(MessageType.REGISTER_CLIENT, c1.client_id, b"alice"))
    w2.frames()

    assert server.remove_client(c1) is True
    assert w1.closed
    assert c1.peer.color not in server.colors
    assert server.clients == (c2,)
    (note,) = w2.frames()
    assert note.msg_type == MessageType.CLIENT_DISCONNECTED
    assert note.client_id == c1.client_id
    assert note.payload == b"alice"
    assert server.remove_client(c1) is False


def test_udp_non_canvas_frame_relays_nothing():
    server = make_server()
    client = server.add_client(FakeWriter(), ("127.0.0.1", 1))
    client.peer.udp_port = 40000
    assert server.handle_udp_frame(("127.0.0.1", 9), encode_udp_frame(MessageType.NONE, b"abcd")) == 0


def test_udp_canvas_relay_before_start_raises():
    server = make_server()
    client = server.add_client(FakeWriter(), ("127.0.0.1", 1))
    client.peer.udp_port = 40000
    stroke = Stroke(1, 2, 3, 4, 3, "#ff0000")
    with pytest.raises(RuntimeError):
        server.handle_udp_frame(("127.0.0.1", 9), encode_udp_frame(MessageType.DATA_CANVAS_CLIENT, stroke.to_bytes()))


def test_host_ip_address_is_empty_or_non_loopback_ipv4():
    address = get_host_ip_address()
    if address:
        parsed = ipaddress.IPv4Address(address)
        assert not parsed.is_loopback
    else:
        assert address == ""


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit):
        main(["--tcp-port", "not-a-number"])


class _Collector(asyncio.DatagramProtocol):
    def __init__(self):
        self.queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.queue.put_nowait(data)


@pytest.mark.asyncio
async def test_end_to_end_registration_and_stroke_relay():
    server = make_server()
    await server.start()
    loop = asyncio.get_running_loop()
    transport, collector = await loop.create_datagram_endpoint(_Collector, local_addr=("127.0.0.1", 0))
    writer = None
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.tcp_port)
        ack = decode_tcp_frame(await asyncio.wait_for(reader.readline(), 5))
        assert ack.msg_type == MessageType.ACK_CONNECT
        client_id = ack.client_id

        writer.write(encode_tcp_frame(MessageType.REGISTER_CLIENT, client_id, b"alice"))
        await writer.drain()
        reg = decode_tcp_frame(await asyncio.wait_for(reader.readline(), 5))
        assert reg.msg_type == MessageType.ACK_REGISTER_CLIENT
        assert reg.payload == b"alice"

        udp_port = transport.get_extra_info("sockname")[1]
        writer.write(encode_tcp_frame(MessageType.REGISTER_UDP_PORT, client_id, struct.pack(">H", udp_port)))
        await writer.drain()
        port_ack = decode_tcp_frame(await asyncio.wait_for(reader.readline(), 5))
        assert port_ack.msg_type == MessageType.ACK_REGISTER_UDP_PORT
        assert struct.unpack(">H", port_ack.payload)[0] == udp_port

        stroke = Stroke(10, 20, 30, 40, 3, "#00ff00")
        transport.sendto(
            encode_udp_frame(MessageType.DATA_CANVAS_CLIENT, stroke.to_bytes()),
            ("127.0.0.1", server.udp_port),
        )
        relayed = decode_udp_frame(await asyncio.wait_for(collector.queue.get(), 5))
        assert relayed.msg_type == MessageType.DATA_CANVAS_SYNC
        assert Stroke.from_bytes(relayed.payload) == stroke

        writer.close()
        for _ in range(100):
            if not server.clients:
                break
            await asyncio.sleep(0.02)
        assert server.clients == ()
        assert len(server.colors) == 0
    finally:
        transport.close()
        await server.close()