"""Feedback parameter handles that only hit the wire when their value changes."""

from __future__ import annotations

import logging
from typing import Any, Callable

from software.shockosc.transport import SHOCKOSC_PARAMS

logger = logging.getLogger(__name__)

Sender = Callable[[str, Any], None]


class ChangeTrackedParam:
    """Remember the last value sent to ``<root>/<group><suffix>`` and skip repeats."""

    def __init__(self, group_name: str, suffix: str, initial: Any, send: Sender):
        self.address = f"{SHOCKOSC_PARAMS}{group_name}{suffix}"
        self.value = initial
        self._send = send

    def set_value(self, value: Any) -> bool:
        """Send ``value`` if it differs from the last one sent; return whether it did."""

        if value == self.value:
            return False
        try:
            self._send(self.address, value)
        except OSError as exc:
            # leave the old value in place so the next publish retries
            logger.warning("Failed to send %s=%r: %s", self.address, value, exc)
            return False
        self.value = value
        return True

    def __repr__(self) -> str:
        return f"ChangeTrackedParam({self.address!r}, {self.value!r})"
