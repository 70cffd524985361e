"""Drawing state of the shared canvas and the roster of participants."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .peer import Peer
from .protocol import (
    UDP_FRAME_MIN_LEN,
    MessageType,
    ProtocolError,
    Stroke,
    decode_udp_frame,
    encode_udp_frame,
)

log = logging.getLogger(__name__)

PEN_WIDTH = 3
RUBBER_WIDTH = 10
RUBBER_COLOR = "#ffffff"


class Tool(Enum):
    """Drawing tool currently selected."""

    PEN = "pen"
    RUBBER = "rubber"


@dataclass
class Pen:
    """Color and width used for the next strokes."""

    color: str
    width: int = PEN_WIDTH


class Board:
    """Local strokes, strokes received from others and the list of clients."""

    def __init__(self, color: str) -> None:
        self.color = color.lower()
        self.pen = Pen(self.color)
        self.tool = Tool.PEN
        self.strokes: List[Stroke] = []
        self._drawing = False
        self._last: Optional[Tuple[int, int]] = None
        self._known: Dict[int, Peer] = {}
        self._roster: List[Peer] = []

    @property
    def drawing(self) -> bool:
        return self._drawing

    def select_pen(self) -> None:
        """Draw with the client's own color."""
        self.tool = Tool.PEN
        self.pen = Pen(self.color, PEN_WIDTH)

    def select_rubber(self) -> None:
        """Erase by painting wide white strokes."""
        self.tool = Tool.RUBBER
        self.pen = Pen(RUBBER_COLOR, RUBBER_WIDTH)

    def press(self, x: int, y: int) -> None:
        """Start a stroke at the given point."""
        self._drawing = True
        self._last = (x, y)

    def move(self, x: int, y: int) -> Optional[bytes]:
        """Extend the stroke; return the datagram to send, or None when not drawing."""
        if not self._drawing or self._last is None:
            return None
        x_begin, y_begin = self._last
        stroke = Stroke(x_begin, y_begin, x, y, self.pen.width, self.pen.color)
        message = encode_udp_frame(MessageType.DATA_CANVAS_CLIENT, stroke.to_bytes())
        self.strokes.append(stroke)
        self._last = (x, y)
        return message

    def release(self) -> None:
        """End the current stroke."""
        self._drawing = False

    def handle_udp_frame(self, data: bytes) -> Optional[Stroke]:
        """Apply a datagram from the server; return the stroke drawn, if any."""
        if len(data) < UDP_FRAME_MIN_LEN:
            return None
        frame = decode_udp_frame(data)
        if frame.msg_type != MessageType.DATA_CANVAS_SYNC:
            return None
        try:
            return self.apply_sync(frame.payload)
        except ProtocolError as exc:
            log.warning("Invalid canvas data: %s", exc)
            return None

    def apply_sync(self, payload: bytes) -> Stroke:
        """Draw a stroke received from another client."""
        stroke = Stroke.from_bytes(payload)
        self.strokes.append(stroke)
        return stroke

    def add_client(self, peer: Peer) -> bool:
        """List a client unless one with the same name is already listed."""
        self._known[peer.client_id] = peer
        if any(entry.name == peer.name for entry in self._roster):
            return False
        self._roster.append(peer)
        return True

    def remove_client(self, client_id: int) -> bool:
        """Remove the listed entry bearing the name of the given client."""
        peer = self._known.pop(client_id, None)
        if peer is None:
            log.warning("Client not found for ID: %d", client_id)
            return False
        for entry in self._roster:
            if entry.name == peer.name:
                self._roster.remove(entry)
                return True
        return False

    def roster(self) -> Tuple[Peer, ...]:
        """Listed clients in order of arrival."""
        return tuple(self._roster)