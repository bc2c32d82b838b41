"""Trigger/check evaluator, run every 20 ms by the session's check loop."""

from __future__ import annotations

import logging
import random
from functools import partial
from typing import Callable, List, Optional

from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.dispatch import CommandDispatcher, ControlType, SuppressReason
from software.shockosc.groups import ProgramGroup, TriggerMethod
from software.shockosc.policy import pick_duration, pick_intensity, stretch_intensity
from software.shockosc.state import SessionState

logger = logging.getLogger(__name__)

VIBRATION_INTERVAL_S = 0.3
VIBRATION_DURATION_MS = 1000

Action = Callable[[], object]


class CheckEvaluator:
    """Scan every group and turn pending triggers into dispatches.

    Decisions are made for all groups under one hold of ``state.lock``; the
    resulting dispatches and notices run afterwards, unlocked.
    """

    def __init__(
        self,
        state: SessionState,
        config: ShockOscConfig,
        dispatcher: CommandDispatcher,
        clock: Callable[[], float],
        *,
        rng: Optional[random.Random] = None,
    ):
        self._state = state
        self._config = config
        self._dispatcher = dispatcher
        self._clock = clock
        self._rng = rng

    def tick(self) -> int:
        """Evaluate once; return how many actions (dispatches or notices) ran."""

        actions: List[Action] = []
        with self._state.lock:
            now = self._clock()
            for group in self._state.groups:
                action = self._evaluate(group, now)
                if action is not None:
                    actions.append(action)
        for action in actions:
            action()
        return len(actions)

    def _evaluate(self, group: ProgramGroup, now: float) -> Optional[Action]:
        behaviour = self._config.behaviour
        is_active_or_on_cooldown = group.is_active_or_on_cooldown(now, behaviour.cooldown_time)

        if (
            group.trigger_method is TriggerMethod.NONE
            and behaviour.while_bone_held != "none"
            and not is_active_or_on_cooldown
            and group.is_grabbed
            and now - group.last_vibration >= VIBRATION_INTERVAL_S
        ):
            intensity = max(1, int(group.last_stretch_value * 100))
            group.last_vibration = now
            control_type = ControlType.SHOCK if behaviour.while_bone_held == "shock" else ControlType.VIBRATE
            logger.debug("Vibrating %s at %d", group.name, intensity)
            return partial(self._dispatcher.control_group, group.id, VIBRATION_DURATION_MS, intensity, control_type)

        if group.trigger_method is TriggerMethod.NONE:
            return None

        if group.trigger_method is TriggerMethod.MANUAL and (now - group.last_active) * 1000.0 < behaviour.hold_time:
            return None

        if is_active_or_on_cooldown:
            group.trigger_method = TriggerMethod.NONE
            return partial(self._dispatcher.report_suppressed, group, SuppressReason.COOLDOWN)

        if self._state.kill_switch:
            group.trigger_method = TriggerMethod.NONE
            return partial(self._dispatcher.report_suppressed, group, SuppressReason.KILL_SWITCH)

        if self._state.is_afk and behaviour.disable_while_afk:
            group.trigger_method = TriggerMethod.NONE
            return partial(self._dispatcher.report_suppressed, group, SuppressReason.AFK)

        if group.trigger_method is TriggerMethod.PHYSBONE_RELEASE:
            intensity = stretch_intensity(behaviour, group.last_stretch_value)
            group.last_stretch_value = 0.0
        else:
            intensity = pick_intensity(behaviour, self._rng)

        duration = pick_duration(behaviour, self._rng)
        return partial(self._dispatcher.instant_shock, group, duration, intensity)
