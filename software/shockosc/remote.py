"""Fold control events issued by other users into local group state.

The backend reports every command executed on our devices, including ones
sent from elsewhere. Applying them keeps cooldown and intensity feedback on
the avatar truthful no matter who pressed the button.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from software.shockosc.chatbox import Chatbox, duration_seconds
from software.shockosc.dispatch import CommandDispatcher, ControlType
from software.shockosc.feedback import FeedbackPublisher
from software.shockosc.state import SessionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlLogSender:
    id: str
    name: str
    custom_name: Optional[str] = None


@dataclass(frozen=True)
class ControlLog:
    device_id: str
    device_name: str
    type: ControlType
    intensity: int
    duration: int
    executed_at: float


_FRACTION = re.compile(r"\.(\d+)")


def _parse_timestamp(raw: Any) -> float:
    """Epoch seconds from a number or an ISO-8601 string; naive strings are UTC."""

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # fromisoformat before 3.11 only takes 3 or 6 fraction digits; backends send 7
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise ValueError(f"executedAt must be a timestamp or ISO-8601 string, got {raw!r}")


def parse_control_log(payload: Mapping[str, Any]) -> Tuple[ControlLogSender, ControlLog]:
    """Build sender + log from a backend event payload.

    Expected shape::

        {"sender": {"id": ..., "name": ..., "customName": ...},
         "shocker": {"id": ..., "name": ...},
         "type": "Shock", "intensity": 40, "duration": 1500,
         "executedAt": "2024-05-01T12:00:00Z"}

    Raises ``ValueError`` for a payload that does not fit.
    """

    try:
        sender_raw = payload["sender"]
        shocker_raw = payload["shocker"]
        sender = ControlLogSender(
            id=str(sender_raw["id"]),
            name=str(sender_raw["name"]),
            custom_name=sender_raw.get("customName"),
        )
        log = ControlLog(
            device_id=str(shocker_raw["id"]),
            device_name=str(shocker_raw.get("name", shocker_raw["id"])),
            type=ControlType(payload["type"]),
            intensity=int(payload["intensity"]),
            duration=int(payload["duration"]),
            executed_at=_parse_timestamp(payload["executedAt"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed control log payload: {exc}") from exc
    return sender, log


class RemoteEventApplier:
    def __init__(
        self,
        state: SessionState,
        dispatcher: CommandDispatcher,
        publisher: FeedbackPublisher,
        chatbox: Chatbox,
    ):
        self._state = state
        self._dispatcher = dispatcher
        self._publisher = publisher
        self._chatbox = chatbox

    def apply(self, sender: ControlLogSender, log: ControlLog) -> int:
        """Apply ``log`` to every group mapping its device; return the match count."""

        in_seconds = duration_seconds(log.duration)
        if sender.custom_name is None:
            logger.info(
                'Received remote %s for "%s" at %d%%:%ss by %s',
                log.type.value, log.device_name, log.intensity, in_seconds, sender.name,
            )
        else:
            logger.info(
                'Received remote %s for "%s" at %d%%:%ss by %s [%s]',
                log.type.value, log.device_name, log.intensity, in_seconds, sender.custom_name, sender.name,
            )

        self._chatbox.send_remote(
            log.type.template_key,
            {
                "shocker_name": log.device_name,
                "intensity": log.intensity,
                "duration": log.duration,
                "duration_seconds": in_seconds,
                "name": sender.name,
                "custom_name": sender.custom_name,
            },
            sender.custom_name,
        )

        one_shock = False
        stopped = False
        with self._state.lock:
            matches = self._state.groups.groups_for_device(log.device_id)
            for group in matches:
                if log.type is ControlType.SHOCK:
                    group.last_intensity = log.intensity
                    group.last_duration = log.duration
                    group.last_executed = log.executed_at
                    one_shock = True
                elif log.type is ControlType.VIBRATE:
                    group.last_vibration = log.executed_at
                elif log.type is ControlType.STOP:
                    group.last_duration = 0
                    stopped = True

        if not matches:
            logger.debug("Remote %s for device %s matches no local group", log.type.value, log.device_id)
            return 0

        if one_shock:
            self._dispatcher.force_unmute()
        if one_shock or stopped:
            self._publisher.publish()
        return len(matches)
