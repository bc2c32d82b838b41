"""Feedback publisher: per-group and ``_Any`` output parameters for the avatar."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Tuple

from software.shockosc.change_tracker import ChangeTrackedParam, Sender
from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.policy import clamp01, feedback_intensity
from software.shockosc.state import SessionState

logger = logging.getLogger(__name__)

ANY_GROUP = "_Any"


class FeedbackPublisher:
    """Recompute active/cooldown/cooldown%/intensity and push what changed.

    Called every 300 ms by the send loop and right after a dispatch so the
    avatar reflects the new state without waiting for the next tick.
    """

    def __init__(self, state: SessionState, config: ShockOscConfig, send: Sender, clock: Callable[[], float]):
        self._state = state
        self._config = config
        self._clock = clock
        self.any_active = ChangeTrackedParam(ANY_GROUP, "_Active", False, send)
        self.any_cooldown = ChangeTrackedParam(ANY_GROUP, "_Cooldown", False, send)
        self.any_cooldown_percentage = ChangeTrackedParam(ANY_GROUP, "_CooldownPercentage", 0.0, send)
        self.any_intensity = ChangeTrackedParam(ANY_GROUP, "_Intensity", 0.0, send)
        # compute + write as one step so an older snapshot never lands last
        self._publish_lock = threading.Lock()

    def publish(self) -> int:
        """Publish the current state; return how many transport writes it took.

        Must not be called while holding ``state.lock``.
        """

        with self._publish_lock:
            updates = self._compute()
            writes = 0
            for handle, value in updates:
                if handle.set_value(value):
                    writes += 1
            return writes

    def _compute(self) -> List[Tuple[ChangeTrackedParam, Any]]:
        behaviour = self._config.behaviour
        cooldown_time = behaviour.cooldown_time
        now = self._clock()

        updates: List[Tuple[ChangeTrackedParam, Any]] = []
        any_active = False
        any_cooldown = False
        any_cooldown_percentage = 0.0
        any_intensity = 0.0

        with self._state.lock:
            for group in self._state.groups:
                is_active = group.is_active(now)
                is_active_or_on_cooldown = group.is_active_or_on_cooldown(now, cooldown_time)
                if not is_active_or_on_cooldown and group.last_intensity > 0:
                    group.last_intensity = 0

                on_cooldown = is_active_or_on_cooldown and not is_active

                cooldown_percentage = 0.0
                if on_cooldown and cooldown_time > 0:
                    ended_at = group.last_executed + group.last_duration / 1000.0
                    elapsed_ms = (now - ended_at) * 1000.0
                    cooldown_percentage = clamp01(1.0 - elapsed_ms / cooldown_time)

                intensity = feedback_intensity(group.last_intensity, behaviour)

                updates.append((group.param_active, is_active))
                updates.append((group.param_cooldown, on_cooldown))
                updates.append((group.param_cooldown_percentage, cooldown_percentage))
                updates.append((group.param_intensity, intensity))

                any_active = any_active or is_active
                any_cooldown = any_cooldown or on_cooldown
                any_cooldown_percentage = max(any_cooldown_percentage, cooldown_percentage)
                any_intensity = max(any_intensity, intensity)

        updates.append((self.any_active, any_active))
        updates.append((self.any_cooldown, any_cooldown))
        updates.append((self.any_cooldown_percentage, any_cooldown_percentage))
        updates.append((self.any_intensity, any_intensity))
        return updates
