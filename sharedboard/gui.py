"""Desktop client: login screen, shared canvas and list of participants."""

from __future__ import annotations

import argparse
import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

try:
    import tkinter as tk
    from tkinter import messagebox
except ImportError:  # Python built without Tk
    tk = None  # type: ignore[assignment]
    messagebox = None  # type: ignore[assignment]

from .board import Board
from .peer import Peer
from .protocol import TCP_PORT, UDP_PORT, ProtocolError, Stroke
from .session import ClientJoined, ClientLeft, ClientSession, LoginError, validate_login

log = logging.getLogger(__name__)

WINDOW_WIDTH = 800
WINDOW_HEIGHT = 600
POLL_MS = 20
CONNECT_TIMEOUT = 5.0
SOCKET_POLL = 0.2
IP_FORMAT_MESSAGE = "The IP adress have to be : X.X.X.X"


@dataclass(frozen=True)
class _Ready:
    """The server acknowledged the connection and assigned us an id and color."""

    peer: Peer


@dataclass(frozen=True)
class _Datagram:
    """A UDP datagram received from the server."""

    data: bytes


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse the command line of the whiteboard client."""
    parser = argparse.ArgumentParser(
        prog="sharedboard", description="Collaborative whiteboard client."
    )
    parser.add_argument("--tcp-port", type=int, default=TCP_PORT, help="server TCP port")
    parser.add_argument("--udp-port", type=int, default=UDP_PORT, help="server UDP port")
    parser.add_argument("--name", default="", help="user name to prefill")
    parser.add_argument("--server", default="", help="server IPv4 address to prefill")
    return parser.parse_args(argv)


def roster_label(peer: Peer) -> str:
    """Text shown for a participant in the list of clients."""
    return peer.name or f"Client {peer.client_id}"


class WhiteboardApp:
    """Connects to the server, draws locally and shows what others draw.

    With ``root=None`` no widgets are built; the networking and drawing state
    still work, which lets the client run without a display.
    """

    def __init__(
        self,
        root: Any = None,
        tcp_port: int = TCP_PORT,
        udp_port: int = UDP_PORT,
    ) -> None:
        self.root = root
        self.tcp_port = tcp_port
        self.udp_port = udp_port
        self.server_address: Optional[str] = None
        self.session: Optional[ClientSession] = None
        self.board: Optional[Board] = None
        self._tcp: Optional[socket.socket] = None
        self._udp: Optional[socket.socket] = None
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._closed = threading.Event()
        self._threads: List[threading.Thread] = []
        self._canvas: Any = None
        self._roster_list: Any = None
        self._name_entry: Any = None
        self._address_entry: Any = None
        self._login_frame: Any = None
        self._board_frame: Any = None
        if root is not None:
            self._build_ui()

    @property
    def udp_local_port(self) -> int:
        """Local port of the UDP socket, or 0 when not connected."""
        return self._udp.getsockname()[1] if self._udp is not None else 0

    # ----- networking ------------------------------------------------

    def connect(self, name: str, address: str) -> ClientSession:
        """Validate the login, open both sockets and start the handshake."""
        validate_login(name, address)
        if self.session is not None:
            raise RuntimeError("already connected")

        tcp = socket.create_connection((address, self.tcp_port), timeout=CONNECT_TIMEOUT)
        tcp.settimeout(SOCKET_POLL)
        udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            udp.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            udp.bind(("", 0))
        except OSError:
            udp.close()
            tcp.close()
            raise
        udp.settimeout(SOCKET_POLL)

        self._tcp, self._udp, self.server_address = tcp, udp, address
        session = ClientSession(name, self.udp_local_port)
        self.session = session
        log.info("Connected to server %s on port %d", address, self.tcp_port)
        log.info("UDP socket bound on port %d", self.udp_local_port)

        self._threads = [
            threading.Thread(target=self._read_tcp, args=(tcp, session), daemon=True),
            threading.Thread(target=self._read_udp, args=(udp,), daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        return session

    def _read_tcp(self, sock: socket.socket, session: ClientSession) -> None:
        try:
            while not self._closed.is_set():
                try:
                    data = sock.recv(4096)
                except TimeoutError:
                    continue
                if not data:
                    log.warning("Connection to server closed")
                    return
                had_identity = session.me is not None
                try:
                    reply = session.feed(data)
                except ProtocolError as exc:
                    log.warning("Bad frame from server: %s", exc)
                    continue
                if not had_identity and session.me is not None:
                    self._events.put(_Ready(session.me))
                for message in reply.messages:
                    sock.sendall(message)
                for event in reply.events:
                    self._events.put(event)
        except OSError as exc:
            if not self._closed.is_set():
                log.warning("Connection to server lost: %s", exc)

    def _read_udp(self, sock: socket.socket) -> None:
        try:
            while not self._closed.is_set():
                try:
                    data, _ = sock.recvfrom(65536)
                except TimeoutError:
                    continue
                if data:
                    self._events.put(_Datagram(data))
        except OSError as exc:
            if not self._closed.is_set():
                log.warning("UDP socket failed: %s", exc)

    def close(self) -> None:
        """Stop the reader threads and release both sockets."""
        self._closed.set()
        for sock in (self._tcp, self._udp):
            if sock is not None:
                sock.close()
        for thread in self._threads:
            thread.join(timeout=2 * SOCKET_POLL + 1)
        self._threads = []

    # ----- events from the reader threads ----------------------------

    def _process_events(self) -> int:
        """Apply every queued event; return how many were handled."""
        handled = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return handled
            self._apply(event)
            handled += 1

    def _apply(self, event: Any) -> None:
        if isinstance(event, _Ready):
            self.board = Board(event.peer.color)
            log.debug("id: %d | color: %s", event.peer.client_id, event.peer.color)
        elif self.board is None:
            log.debug("Dropping %r received before the connection was acknowledged", event)
        elif isinstance(event, _Datagram):
            stroke = self.board.handle_udp_frame(event.data)
            if stroke is not None:
                self._paint(stroke)
        elif isinstance(event, ClientJoined):
            if self.board.add_client(event.peer):
                self._refresh_roster()
        elif isinstance(event, ClientLeft):
            log.debug("disconnected %d", event.client_id)
            if self.board.remove_client(event.client_id):
                self._refresh_roster()

    # ----- drawing ---------------------------------------------------

    def _pointer_pressed(self, x: int, y: int) -> None:
        if self.board is not None:
            self.board.press(x, y)

    def _pointer_moved(self, x: int, y: int) -> Optional[bytes]:
        """Extend the local stroke and send it to the server."""
        if self.board is None:
            return None
        message = self.board.move(x, y)
        if message is None:
            return None
        self._paint(self.board.strokes[-1])
        if self._udp is not None and self.server_address is not None:
            self._udp.sendto(message, (self.server_address, self.udp_port))
        return message

    def _pointer_released(self) -> None:
        if self.board is not None:
            self.board.release()

    def _use_pen(self) -> None:
        if self.board is not None:
            self.board.select_pen()

    def _use_rubber(self) -> None:
        if self.board is not None:
            self.board.select_rubber()

    def _paint(self, stroke: Stroke) -> None:
        if self._canvas is None:
            return
        self._canvas.create_line(
            stroke.x_begin, stroke.y_begin, stroke.x_end, stroke.y_end,
            fill=stroke.color, width=stroke.width, capstyle=tk.ROUND,
        )

    def _refresh_roster(self) -> None:
        if self._roster_list is None or self.board is None:
            return
        self._roster_list.delete(0, tk.END)
        for index, peer in enumerate(self.board.roster()):
            self._roster_list.insert(tk.END, roster_label(peer))
            self._roster_list.itemconfig(index, foreground=peer.color)

    # ----- widgets ---------------------------------------------------

    def _build_ui(self) -> None:
        if tk is None:
            raise RuntimeError("tkinter is not available")
        root = self.root
        root.title("Whiteboard")
        root.geometry(f"{WINDOW_WIDTH}x{WINDOW_HEIGHT}")
        root.resizable(False, False)

        login = tk.Frame(root)
        tk.Label(login, text="Connection to Whiteboard", font=("TkDefaultFont", 18)).pack(
            pady=(140, 50)
        )
        tk.Label(login, text="Username : ").pack()
        self._name_entry = tk.Entry(login, width=32, highlightthickness=1)
        self._name_entry.pack(pady=(0, 10))
        tk.Label(login, text="Server IP address : ").pack()
        self._address_entry = tk.Entry(login, width=32, highlightthickness=1)
        self._address_entry.pack(pady=(0, 10))
        tk.Button(login, text="Connect", width=30, command=self._on_connect_clicked).pack()
        self._login_frame = login

        board = tk.Frame(root)
        tk.Label(board, text="Canva", font=("TkDefaultFont", 16)).pack()
        tools = tk.Frame(board)
        tk.Button(tools, text="Pen", command=self._use_pen).pack(side=tk.LEFT, expand=True, fill=tk.X)
        tk.Button(tools, text="Rubber", command=self._use_rubber).pack(
            side=tk.LEFT, expand=True, fill=tk.X
        )
        tools.pack(fill=tk.X)
        body = tk.Frame(board)
        self._canvas = tk.Canvas(body, background="white", highlightthickness=0)
        self._canvas.pack(side=tk.LEFT, expand=True, fill=tk.BOTH)
        self._roster_list = tk.Listbox(body, width=18)
        self._roster_list.pack(side=tk.RIGHT, fill=tk.Y)
        body.pack(expand=True, fill=tk.BOTH)
        self._board_frame = board

        self._canvas.bind("<ButtonPress-1>", lambda e: self._pointer_pressed(e.x, e.y))
        self._canvas.bind("<B1-Motion>", lambda e: self._pointer_moved(e.x, e.y))
        self._canvas.bind("<ButtonRelease-1>", lambda e: self._pointer_released())

        login.pack(expand=True, fill=tk.BOTH)

    def _prefill(self, name: str, address: str) -> None:
        if self._name_entry is not None:
            self._name_entry.insert(0, name)
        if self._address_entry is not None:
            self._address_entry.insert(0, address)

    @staticmethod
    def _mark(entry: Any, ok: bool) -> None:
        colour = "green" if ok else "red"
        entry.config(highlightbackground=colour, highlightcolor=colour)

    def _on_connect_clicked(self) -> None:
        name = self._name_entry.get()
        address = self._address_entry.get()
        try:
            self.connect(name, address)
        except LoginError as exc:
            self._mark(self._name_entry, not exc.name_missing)
            self._mark(self._address_entry, not exc.address_invalid)
            if exc.address_invalid:
                messagebox.showerror("Error", IP_FORMAT_MESSAGE)
            return
        except OSError as exc:
            log.warning("Connection to server failed: %s", exc)
            messagebox.showwarning("Connection to canva", f"Connection failed: {exc}")
            return
        self._mark(self._name_entry, True)
        self._mark(self._address_entry, True)
        self._login_frame.pack_forget()
        self._board_frame.pack(expand=True, fill=tk.BOTH)

    def _poll(self) -> None:
        self._process_events()
        if not self._closed.is_set():
            self.root.after(POLL_MS, self._poll)

    def run(self) -> None:
        """Run the window until it is closed, then disconnect."""
        if self.root is None:
            raise RuntimeError("no window to run")
        self.root.after(POLL_MS, self._poll)
        try:
            self.root.mainloop()
        finally:
            self.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Open the whiteboard client window."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    if tk is None:
        log.error("tkinter is not available")
        return 1
    root = tk.Tk()
    app = WhiteboardApp(root, tcp_port=args.tcp_port, udp_port=args.udp_port)
    app._prefill(args.name, args.server)
    app.run()
    return 0