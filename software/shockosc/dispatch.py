"""Command dispatch towards the remote device-control backend.

The backend itself is a collaborator: anything with a ``control(commands)``
method. :class:`DryRunControlClient` stands in for it when no backend is wired
up, logging what would have been sent.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence

from software.shockosc.audit import AuditLogger
from software.shockosc.chatbox import Chatbox, duration_seconds
from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.feedback import FeedbackPublisher
from software.shockosc.groups import ProgramGroup, TriggerMethod
from software.shockosc.policy import feedback_intensity
from software.shockosc.state import SessionState
from software.shockosc.tasks import BackgroundTasks
from software.shockosc.transport import VOICE_INPUT

logger = logging.getLogger(__name__)

FORCE_UNMUTE_SPACING_S = 0.05


class ControlType(enum.Enum):
    SHOCK = "Shock"
    VIBRATE = "Vibrate"
    SOUND = "Sound"
    STOP = "Stop"

    @property
    def template_key(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class ControlCommand:
    device_id: str
    duration: int
    intensity: int
    type: ControlType


class ControlClient(Protocol):
    def control(self, commands: Sequence[ControlCommand]) -> None:
        ...


RemoteCallback = Callable[[Mapping[str, Any]], int]


class RemoteEventSource(Protocol):
    """Optional backend capability: push control-log payloads as they arrive.

    A backend that also implements ``subscribe`` gets the session's payload
    handler on ``start()``. Payloads use the shape read by
    :func:`software.shockosc.remote.parse_control_log`.
    """

    def subscribe(self, callback: RemoteCallback) -> None:
        ...


class DryRunControlClient:
    """Stand-in backend that logs commands instead of sending them."""

    def __init__(self) -> None:
        self.command_count = 0

    def control(self, commands: Sequence[ControlCommand]) -> None:
        for command in commands:
            self.command_count += 1
            logger.info(
                "[dry-run] %s device=%s intensity=%d duration=%dms",
                command.type.value,
                command.device_id,
                command.intensity,
                command.duration,
            )


class SuppressReason(enum.Enum):
    KILL_SWITCH = "kill_switch"
    AFK = "afk"
    COOLDOWN = "cooldown"


class CommandDispatcher:
    """Turn (group, duration, intensity, type) into backend commands.

    None of the public methods may be called while holding ``state.lock``:
    they take it themselves for the state update and then do I/O unlocked.
    """

    def __init__(
        self,
        state: SessionState,
        config: ShockOscConfig,
        control_client: ControlClient,
        send: Callable[[str, object], None],
        chatbox: Chatbox,
        publisher: FeedbackPublisher,
        tasks: BackgroundTasks,
        clock: Callable[[], float],
        *,
        audit: Optional[AuditLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._state = state
        self._config = config
        self._client = control_client
        self._send = send
        self._chatbox = chatbox
        self._publisher = publisher
        self._tasks = tasks
        self._clock = clock
        self._audit = audit
        self._sleep = sleep

    def check_gates(self, group: ProgramGroup, now: float) -> Optional[SuppressReason]:
        """Kill switch, then AFK, then cooldown. Call with ``state.lock`` held."""

        if self._state.kill_switch:
            return SuppressReason.KILL_SWITCH
        if self._state.is_afk and self._config.behaviour.disable_while_afk:
            return SuppressReason.AFK
        if group.is_active_or_on_cooldown(now, self._config.behaviour.cooldown_time):
            return SuppressReason.COOLDOWN
        return None

    def instant_shock(self, group: ProgramGroup, duration: int, intensity: int) -> bool:
        """Record and fire a one-shot shock on every device of ``group``.

        The policy gates are evaluated in the same critical section as the
        execution record, so two loops racing on one group cannot both fire.
        Returns False when a gate blocked the shock.
        """

        if self._state.groups.device_ids(group.id) is None:
            logger.warning("Group %s (%s) has no configured devices; dropping shock", group.name, group.id)
            return False

        with self._state.lock:
            now = self._clock()
            reason = self.check_gates(group, now)
            if reason is None:
                group.last_executed = now
                group.last_duration = duration
                group.last_intensity = intensity
            group.trigger_method = TriggerMethod.NONE
        if reason is not None:
            self.report_suppressed(group, reason)
            return False

        self.force_unmute()
        self._publisher.publish()

        intensity_percentage = round(feedback_intensity(intensity, self._config.behaviour) * 100)
        in_seconds = duration_seconds(duration)
        logger.info(
            "Sending shock to %s Intensity: %d IntensityPercentage: %d%% Length: %ss",
            group.name,
            intensity,
            intensity_percentage,
            in_seconds,
        )
        if self._audit is not None:
            self._audit.write(
                "shock_dispatched",
                status="info",
                details={"group": group.name, "intensity": intensity, "duration": duration},
            )

        self.control_group(group.id, duration, intensity, ControlType.SHOCK)

        self._chatbox.send_local(
            ControlType.SHOCK.template_key,
            {
                "shocker_name": group.name,
                "intensity": intensity,
                "intensity_percentage": intensity_percentage,
                "duration": duration,
                "duration_seconds": in_seconds,
            },
        )
        return True

    def control_group(self, group_id: str, duration: int, intensity: int, control_type: ControlType) -> bool:
        """Submit one command per device mapped to ``group_id``.

        Returns False, without side effects, when the group has no mapping.
        Submission itself is fire-and-forget; its failures are only logged.
        """

        device_ids = self._state.groups.device_ids(group_id)
        if device_ids is None:
            return False
        commands: List[ControlCommand] = [
            ControlCommand(device_id=device_id, duration=duration, intensity=intensity, type=control_type)
            for device_id in device_ids
        ]
        self._tasks.spawn(f"control {control_type.value} {group_id}", self._client.control, commands)
        return True

    def cancel_action(self, group: ProgramGroup) -> bool:
        logger.debug("Cancelling action on %s", group.name)
        return self.control_group(group.id, 0, 0, ControlType.STOP)

    def force_unmute(self) -> None:
        """Toggle voice off/on/off if configured and the user is muted. Best effort."""

        with self._state.lock:
            muted = self._state.is_muted
        if not (self._config.behaviour.force_unmute and muted):
            return
        self._tasks.spawn("force unmute", self._toggle_voice)

    def _toggle_voice(self) -> None:
        logger.debug("Force unmuting...")
        try:
            self._send(VOICE_INPUT, False)
            self._sleep(FORCE_UNMUTE_SPACING_S)
            self._send(VOICE_INPUT, True)
            self._sleep(FORCE_UNMUTE_SPACING_S)
            self._send(VOICE_INPUT, False)
        except OSError as exc:
            logger.warning("Force unmute failed: %s", exc)

    def report_suppressed(self, group: ProgramGroup, reason: SuppressReason) -> None:
        """Log, chat and audit a policy rejection. The caller already cleared the trigger."""

        chat_text = ""
        if reason is SuppressReason.KILL_SWITCH:
            logger.info("Ignoring shock on %s, kill switch is active", group.name)
            chat_text = self._config.chatbox.ignored_kill_switch_active
        elif reason is SuppressReason.AFK:
            logger.info("Ignoring shock on %s, user is AFK", group.name)
            chat_text = self._config.chatbox.ignored_afk
        else:
            logger.info("Ignoring shock, group %s is on cooldown", group.name)

        if self._audit is not None:
            self._audit.write("shock_suppressed", status=reason.value, details={"group": group.name})
        self._chatbox.send_suppressed(chat_text)
