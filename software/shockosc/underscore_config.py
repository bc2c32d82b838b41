"""In-game config commands under ``ShockOsc/_Config/...``.

Avatar menus drive a handful of live settings through parameters such as
``_Config/_All/Paused`` (the kill switch) or ``_Config/_All/MaxIntensity``.
Menu sliders are 0-1 floats, scaled here into the config's own units:

=================  ===============================
setting            0-1 slider maps to
=================  ===============================
Paused             kill switch (bool)
MinIntensity       intensity_range.min, 0-100
MaxIntensity       intensity_range.max, 0-100
Duration           fixed_duration, 0-30000 ms
CooldownTime       cooldown_time, 0-100000 ms
HoldTime           hold_time, 0-1000 ms
=================  ===============================

:meth:`UnderscoreConfig.send_update_for_all` pushes the current values back
so the menu matches the config after an avatar change.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Sequence

from software.shockosc.config_validation import MAX_DURATION_MS, MAX_INTENSITY, ShockOscConfig
from software.shockosc.policy import clamp01
from software.shockosc.state import SessionState
from software.shockosc.transport import SHOCKOSC_PARAMS

logger = logging.getLogger(__name__)

CONFIG_PREFIX = "_Config/"
ALL_GROUPS = "_All"
MAX_COOLDOWN_MS = 100_000
MAX_HOLD_MS = 1_000


class UnderscoreConfig:
    def __init__(self, state: SessionState, config: ShockOscConfig, send: Callable[[str, Any], None]):
        self._state = state
        self._config = config
        self._send = send

    @property
    def kill_switch(self) -> bool:
        with self._state.lock:
            return self._state.kill_switch

    def handle_command(self, pos: str, args: Sequence[Any]) -> None:
        """Apply ``_Config/<target>/<setting>`` with the first OSC argument."""

        parts = pos.split("/")
        if len(parts) != 3:
            logger.debug("Malformed config command %s", pos)
            return
        _prefix, target, setting = parts
        if target != ALL_GROUPS:
            logger.debug("Config command %s targets %s; only %s is supported", pos, target, ALL_GROUPS)
            return

        value = args[0] if args else None
        if setting == "Paused":
            with self._state.lock:
                self._state.kill_switch = value is True
            logger.info("Kill switch %s", "engaged" if value is True else "released")
            return

        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.debug("Config command %s expects a number, got %r", pos, value)
            return
        fraction = clamp01(float(value))
        behaviour = self._config.behaviour

        with self._state.lock:
            if setting == "MinIntensity":
                behaviour.intensity_range.min = round(fraction * MAX_INTENSITY)
                behaviour.intensity_range.max = max(behaviour.intensity_range.max, behaviour.intensity_range.min)
            elif setting == "MaxIntensity":
                behaviour.intensity_range.max = round(fraction * MAX_INTENSITY)
                behaviour.intensity_range.min = min(behaviour.intensity_range.min, behaviour.intensity_range.max)
            elif setting == "Duration":
                behaviour.fixed_duration = round(fraction * MAX_DURATION_MS)
            elif setting == "CooldownTime":
                behaviour.cooldown_time = round(fraction * MAX_COOLDOWN_MS)
            elif setting == "HoldTime":
                behaviour.hold_time = round(fraction * MAX_HOLD_MS)
            else:
                logger.debug("Unknown config setting %s", setting)
                return
        logger.info("Config %s set from menu to %.3f", setting, fraction)

    def current_values(self) -> Dict[str, Any]:
        behaviour = self._config.behaviour
        with self._state.lock:
            return {
                "Paused": self._state.kill_switch,
                "MinIntensity": clamp01(behaviour.intensity_range.min / MAX_INTENSITY),
                "MaxIntensity": clamp01(behaviour.intensity_range.max / MAX_INTENSITY),
                "Duration": clamp01(behaviour.fixed_duration / MAX_DURATION_MS),
                "CooldownTime": clamp01(behaviour.cooldown_time / MAX_COOLDOWN_MS),
                "HoldTime": clamp01(behaviour.hold_time / MAX_HOLD_MS),
            }

    def send_update_for_all(self) -> None:
        for setting, value in self.current_values().items():
            address = f"{SHOCKOSC_PARAMS}{CONFIG_PREFIX}{ALL_GROUPS}/{setting}"
            try:
                self._send(address, value)
            except OSError as exc:
                logger.warning("Failed to announce %s: %s", address, exc)
