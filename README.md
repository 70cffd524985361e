# sharedboard

A small shared whiteboard for a local network. One machine runs the server;
everyone else opens the desktop client, picks a user name, enters the server's
IPv4 address and draws. Every stroke is relayed to all connected clients, and
each client sees the participants listed in the colour the server gave them.

## Installation

```
pip install .
```

The package uses only the standard library. The desktop client needs Tk
(`tkinter`), which ships with most Python installations; without it the
`sharedboard` command logs an error and exits with status 1.

## Running the server

```
sharedboard-server
```

Options:

- `--host` – address to bind (default `0.0.0.0`);
- `--tcp-port` – TCP port for control messages (default 12345);
- `--udp-port` – UDP port for strokes (default 12346).

The server logs the host's IPv4 address, listens for TCP connections and for
stroke datagrams, and runs until interrupted.

## Running the client

```
sharedboard
```

Options:

- `--tcp-port` / `--udp-port` – the server's ports (defaults 12345 / 12346);
- `--name` – user name to prefill in the login screen;
- `--server` – server IPv4 address to prefill.

Enter a user name and the server's address (in the form `X.X.X.X`) and press
*Connect*. An empty name or a malformed address is marked in red and the
address error is shown in a dialog. Once connected:

- drag with the mouse to draw in your own colour, width 3;
- *Rubber* switches to a white pen of width 10 to erase;
- *Pen* switches back to your colour and width 3;
- the list on the right shows the participants, each in their colour
  (a name already listed is not listed twice).

## How it works

Control messages travel over TCP, one per line: a one-byte message type, a
4-byte big-endian client id, then the payload, ended by `\n`. On connecting,
a client is given an id and a unique bright colour (`ACK_CONNECT`), registers
its name (`REGISTER_CLIENT`) and its UDP port (`REGISTER_UDP_PORT`), then asks
for everyone on the board (`REQUEST_ALL_CLIENT_INFOS`). Newcomers and
departures are announced to the other clients (`CLIENT_INFOS`,
`CLIENT_DISCONNECTED`).

Strokes travel over UDP. A client sends `DATA_CANVAS_CLIENT` with the start
and end points (signed 4-byte big-endian integers), the pen width (unsigned
4-byte big-endian) and the colour as `#rrggbb`; the server forwards the same
data as `DATA_CANVAS_SYNC` to every client that has registered a UDP port.

## Using the pieces on their own

- `sharedboard.protocol` – `MessageType`, `encode_tcp_frame`,
  `decode_tcp_frame`, `encode_udp_frame`, `decode_udp_frame`, and the
  `Stroke` and `ClientInfo` payloads; malformed data raises `ProtocolError`.
- `sharedboard.colors` – `hsv_to_hex`, `random_bright_color` and `ColorPool`,
  which hands out colours not already in use.
- `sharedboard.server.WhiteboardServer` – the asyncio server (`start`,
  `serve_forever`, `close`); `handle_tcp_frame` and `handle_udp_frame` can be
  driven directly.
- `sharedboard.session` – `validate_login`, `is_valid_ipv4` and
  `ClientSession`, which turns server lines (`feed`, `handle_frame`) into a
  `SessionReply` of frames to send and `ClientJoined` / `ClientLeft` events.
- `sharedboard.board.Board` – drawing state: `press`, `move` (returns the
  datagram to send), `release`, `select_pen`, `select_rubber`,
  `handle_udp_frame`, and the participant list (`add_client`,
  `remove_client`, `roster`).
- `sharedboard.gui.WhiteboardApp` – the Tk client; created with `root=None`
  it builds no widgets, so `connect` and the drawing state work without a
  display.

## Limitations

- The canvas is not stored anywhere: a client that joins late sees only
  strokes drawn after it connected, and nothing is saved when the client
  closes.
- Strokes are sent as UDP datagrams without acknowledgement or
  retransmission; a lost datagram is a missing segment on the other boards.

## Tests

```
pip install ".[test]"
pytest
```