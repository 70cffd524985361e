"""Assignment of distinct, bright colors to connected clients."""

from __future__ import annotations

import colorsys
import logging
import random
from typing import List, Optional

log = logging.getLogger(__name__)


def hsv_to_hex(hue: int, saturation: int, value: int) -> str:
    """Convert hue (0-359), saturation and value (0-255) to ``#rrggbb``."""
    if not 0 <= hue < 360:
        raise ValueError(f"hue {hue} out of range 0-359")
    for label, component in (("saturation", saturation), ("value", value)):
        if not 0 <= component <= 255:
            raise ValueError(f"{label} {component} out of range 0-255")
    rgb = colorsys.hsv_to_rgb(hue / 360, saturation / 255, value / 255)
    return "#" + "".join(f"{round(channel * 255):02x}" for channel in rgb)


def random_bright_color(rng: Optional[random.Random] = None) -> str:
    """Pick a random hue with high saturation and value."""
    source = rng if rng is not None else random
    hue = source.randrange(0, 360)
    saturation = 200 + source.randrange(55)
    value = 200 + source.randrange(55)
    return hsv_to_hex(hue, saturation, value)


class ColorPool:
    """Tracks which colors are in use and hands out unused ones."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._used: List[str] = []

    def __contains__(self, color: object) -> bool:
        return isinstance(color, str) and color.lower() in self._used

    def __len__(self) -> int:
        return len(self._used)

    def add(self, color: str) -> bool:
        """Mark a color as used; return False if it already was."""
        if color in self:
            log.info("Color %s already used!", color)
            return False
        self._used.append(color.lower())
        return True

    def remove(self, color: str) -> bool:
        """Release a color; return False if it was not in use."""
        if color not in self:
            log.info("Color %s not found in used colors!", color)
            return False
        self._used.remove(color.lower())
        return True

    def allocate(self) -> str:
        """Draw random colors until an unused one comes up, and reserve it."""
        while True:
            color = random_bright_color(self._rng)
            if color not in self:
                self.add(color)
                return color