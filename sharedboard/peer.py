"""Identity of a participant on the shared board."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Peer:
    """A client known by id, with its assigned color, name and UDP port."""

    client_id: int
    color: str
    name: str = ""
    udp_port: int = 0

    def describe(self) -> str:
        """One-line summary used in log messages."""
        text = f"Id: {self.client_id} | Color: {self.color} | Name: {self.name}"
        if self.udp_port:
            text += f" | UDP Port: {self.udp_port}"
        return text