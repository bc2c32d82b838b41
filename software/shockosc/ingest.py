"""Parameter ingest: classify inbound OSC updates and route them to groups.

Addresses look like ``/avatar/parameters/ShockOsc/<Group>[_<Action>]``. The
remainder after the ShockOsc root is split on its *last* underscore, so
``Leg_IShock`` is group ``Leg`` with action ``IShock`` and a bare ``Leg`` is
the manual trigger parameter.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.dispatch import CommandDispatcher
from software.shockosc.groups import ProgramGroup, TriggerMethod
from software.shockosc.policy import clamp01, pick_duration, pick_intensity
from software.shockosc.registry import ParamsChange
from software.shockosc.state import SessionState
from software.shockosc.tasks import BackgroundTasks
from software.shockosc.transport import AVATAR_CHANGE, AVATAR_PARAMS, SHOCKOSC_PARAMS
from software.shockosc.underscore_config import CONFIG_PREFIX, UnderscoreConfig

logger = logging.getLogger(__name__)

SHOCKER_ACTIONS = frozenset(
    {
        "",
        "Stretch",
        "IsGrabbed",
        "Cooldown",
        "Active",
        "Intensity",
        "CooldownPercentage",
        "IShock",
    }
)

ParameterSource = Callable[[], Optional[Dict[str, Any]]]


def split_parameter(name: str) -> Tuple[str, str]:
    """Split ``Group_Action`` on the last underscore; no underscore means action ``""``."""

    idx = name.rfind("_")
    if idx > 0:
        return name[:idx], name[idx + 1 :]
    return name, ""


class ParameterIngest:
    def __init__(
        self,
        state: SessionState,
        config: ShockOscConfig,
        dispatcher: CommandDispatcher,
        underscore_config: UnderscoreConfig,
        tasks: BackgroundTasks,
        clock: Callable[[], float],
        *,
        parameter_source: Optional[ParameterSource] = None,
        rng: Optional[random.Random] = None,
    ):
        self._state = state
        self._config = config
        self._dispatcher = dispatcher
        self._underscore_config = underscore_config
        self._tasks = tasks
        self._clock = clock
        self._parameter_source = parameter_source
        self._rng = rng

    # ------------------------------------------------------------------
    # Address classification
    # ------------------------------------------------------------------
    def resolve(self, name: str) -> Tuple[str, Optional[str]]:
        """Return ``(group_name, action)``; action is None when not a shocker action.

        A group whose configured name itself contains an underscore still
        resolves as its bare manual-trigger address.
        """

        group_name, action = split_parameter(name)
        if action in SHOCKER_ACTIONS:
            return group_name, action
        if name in self._state.groups:
            return name, ""
        return group_name, None

    def handle(self, address: str, args: Sequence[Any]) -> None:
        value = args[0] if args else None
        registry = self._state.registry

        if address == AVATAR_CHANGE:
            logger.debug("Avatar changed: %s", value)
            self._tasks.spawn("avatar refresh", self.refresh_avatar, "" if value is None else str(value))
            return

        if address.startswith(AVATAR_PARAMS):
            name = address[len(AVATAR_PARAMS) :]
            with self._state.lock:
                known = registry.update_avatar_param(name, value)
            if known:
                registry.notify(ParamsChange.VALUE)

            if name == "AFK":
                with self._state.lock:
                    self._state.is_afk = value is True
                logger.debug("Afk: %s", value is True)
                return
            if name == "MuteSelf":
                with self._state.lock:
                    self._state.is_muted = value is True
                logger.debug("Muted: %s", value is True)
                return

        if not address.startswith(SHOCKOSC_PARAMS):
            return

        pos = address[len(SHOCKOSC_PARAMS) :]
        if pos.startswith(CONFIG_PREFIX):
            self._underscore_config.handle_command(pos, args)
            return

        with self._state.lock:
            known = registry.update_in_use(pos, value)
        if known:
            registry.notify(ParamsChange.STRUCTURAL)

        group_name, action = self.resolve(pos)
        if action is None:
            logger.debug("Ignoring unrecognised ShockOsc parameter %s", pos)
            return

        group = self._state.groups.get(group_name)
        if group is None:
            if group_name.startswith("_"):
                return
            logger.warning("Unknown shocker %s", group_name)
            logger.debug("Param: %s", pos)
            return

        self._route(group, action, value)

    # ------------------------------------------------------------------
    # Actions on a resolved group
    # ------------------------------------------------------------------
    def _route(self, group: ProgramGroup, action: str, value: Any) -> None:
        if action == "IShock":
            self._on_instant_shock(group, value)
        elif action == "Stretch":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                with self._state.lock:
                    group.last_stretch_value = clamp01(float(value))
        elif action == "IsGrabbed":
            self._on_grabbed(group, value is True)
        elif action == "":
            with self._state.lock:
                if value is True:
                    group.trigger_method = TriggerMethod.MANUAL
                    group.last_active = self._clock()
                else:
                    group.trigger_method = TriggerMethod.NONE
        # Active/Cooldown/CooldownPercentage/Intensity are our own outputs echoed back

    def _on_instant_shock(self, group: ProgramGroup, value: Any) -> None:
        if value is not True:
            return
        behaviour = self._config.behaviour
        self._dispatcher.instant_shock(
            group,
            pick_duration(behaviour, self._rng),
            pick_intensity(behaviour, self._rng),
        )

    def _on_grabbed(self, group: ProgramGroup, is_grabbed: bool) -> None:
        cancel = False
        with self._state.lock:
            if group.is_grabbed and not is_grabbed:
                if group.last_stretch_value != 0:
                    group.trigger_method = TriggerMethod.PHYSBONE_RELEASE
                    group.last_active = self._clock()
                elif self._config.behaviour.while_bone_held != "none":
                    cancel = True
            group.is_grabbed = is_grabbed
        if cancel:
            self._dispatcher.cancel_action(group)

    # ------------------------------------------------------------------
    # Avatar change
    # ------------------------------------------------------------------
    def refresh_avatar(self, avatar_id: str) -> None:
        """Re-read the full parameter set for a new avatar and re-announce config."""

        if self._parameter_source is None:
            parameters: Optional[Dict[str, Any]] = {}
        else:
            parameters = self._parameter_source()
        self.on_avatar_change(parameters, avatar_id)
        self._underscore_config.send_update_for_all()

    def on_avatar_change(self, parameters: Optional[Dict[str, Any]], avatar_id: str) -> None:
        """Reset group transients and rebuild both registries from ``parameters``.

        ``parameters`` maps full OSC addresses to values; ``None`` means the
        snapshot could not be fetched (registries stay empty).
        """

        registry = self._state.registry
        unknown = set()
        parameter_count = 0
        with self._state.lock:
            self._state.avatar_id = avatar_id
            self._state.groups.reset_all()
            registry.clear()
            if parameters is not None:
                for address, value in parameters.items():
                    if address.startswith(AVATAR_PARAMS):
                        registry.all_params.setdefault(address[len(AVATAR_PARAMS) :], value)
                    if not address.startswith(SHOCKOSC_PARAMS):
                        continue
                    pos = address[len(SHOCKOSC_PARAMS) :]
                    if pos.startswith(CONFIG_PREFIX):
                        continue
                    group_name, action = self.resolve(pos)
                    if action is not None:
                        parameter_count += 1
                        registry.in_use.setdefault(pos, value)
                    if group_name not in self._state.groups and not group_name.startswith("_"):
                        unknown.add(group_name)

        if parameters is None:
            logger.error("Failed to receive avatar parameters for %s", avatar_id or "<unknown avatar>")
        else:
            for group_name in sorted(unknown):
                logger.warning("Unknown shocker on avatar %s", group_name)
            logger.info("Loaded avatar config with %d parameters", parameter_count)
        registry.notify(ParamsChange.STRUCTURAL)
