"""Shared whiteboard: an asyncio relay server, the wire protocol and a Tk drawing client."""

__version__ = "0.1.0"