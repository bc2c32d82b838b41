"""Latest-value registry of avatar parameters plus the change observer list."""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class ParamsChange(enum.Enum):
    # new avatar, or ShockOsc parameter activity
    STRUCTURAL = "structural"
    VALUE = "value"


ParamsListener = Callable[[ParamsChange], None]


class ParameterRegistry:
    """Two name → value maps, keyed by the address with its root stripped.

    ``all_params`` holds every avatar parameter seen (recognised or not),
    ``in_use`` the ShockOsc parameters the group state machine consumes.
    """

    def __init__(self) -> None:
        self.all_params: Dict[str, Any] = {}
        self.in_use: Dict[str, Any] = {}
        self._listeners: List[ParamsListener] = []

    def subscribe(self, listener: ParamsListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ParamsListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def notify(self, change: ParamsChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:  # noqa: BLE001 - one bad subscriber must not stall ingest
                logger.exception("Params change listener %r failed", listener)

    def update_avatar_param(self, name: str, value: Any) -> bool:
        """Store ``value``; return True when ``name`` was already known."""

        known = name in self.all_params
        self.all_params[name] = value
        return known

    def update_in_use(self, name: str, value: Any) -> bool:
        known = name in self.in_use
        self.in_use[name] = value
        return known

    def clear(self) -> None:
        self.all_params.clear()
        self.in_use.clear()
