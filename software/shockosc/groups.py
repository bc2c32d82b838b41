"""Group store: one :class:`ProgramGroup` per configured shocker group."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.change_tracker import ChangeTrackedParam, Sender


class TriggerMethod(enum.Enum):
    NONE = "none"
    MANUAL = "manual"
    PHYSBONE_RELEASE = "physbone_release"


@dataclass
class ProgramGroup:
    """Runtime state of a shocker group.

    Timestamps are epoch seconds from the session clock; ``0.0`` means
    "never". Durations are milliseconds, intensities 0-100.
    """

    id: str
    name: str
    param_active: ChangeTrackedParam = field(repr=False)
    param_cooldown: ChangeTrackedParam = field(repr=False)
    param_cooldown_percentage: ChangeTrackedParam = field(repr=False)
    param_intensity: ChangeTrackedParam = field(repr=False)
    is_grabbed: bool = False
    last_stretch_value: float = 0.0
    trigger_method: TriggerMethod = TriggerMethod.NONE
    last_active: float = 0.0
    last_executed: float = 0.0
    last_duration: int = 0
    last_intensity: int = 0
    last_vibration: float = 0.0

    @classmethod
    def create(cls, group_id: str, name: str, send: Sender) -> "ProgramGroup":
        return cls(
            id=group_id,
            name=name,
            param_active=ChangeTrackedParam(name, "_Active", False, send),
            param_cooldown=ChangeTrackedParam(name, "_Cooldown", False, send),
            param_cooldown_percentage=ChangeTrackedParam(name, "_CooldownPercentage", 0.0, send),
            param_intensity=ChangeTrackedParam(name, "_Intensity", 0.0, send),
        )

    def is_active(self, now: float) -> bool:
        return now < self.last_executed + self.last_duration / 1000.0

    def is_active_or_on_cooldown(self, now: float, cooldown_time: int) -> bool:
        return now < self.last_executed + (self.last_duration + cooldown_time) / 1000.0

    def reset(self) -> None:
        self.is_grabbed = False
        self.last_stretch_value = 0.0
        self.trigger_method = TriggerMethod.NONE


class GroupStore:
    """Name → group mapping, created once from config and never shrunk."""

    def __init__(self, config: ShockOscConfig, send: Sender):
        self._config = config
        self._groups: Dict[str, ProgramGroup] = {}
        for group in config.groups:
            self._groups[group.name] = ProgramGroup.create(group.id, group.name, send)

    def __iter__(self) -> Iterator[ProgramGroup]:
        return iter(list(self._groups.values()))

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, name: str) -> bool:
        return name in self._groups

    def get(self, name: str) -> Optional[ProgramGroup]:
        return self._groups.get(name)

    def device_ids(self, group_id: str) -> Optional[List[str]]:
        """Device ids mapped to ``group_id``, or ``None`` if the group is unknown."""

        settings = self._config.group_by_id(group_id)
        if settings is None:
            return None
        return list(settings.shockers)

    def groups_for_device(self, device_id: str) -> List[ProgramGroup]:
        matches = []
        for settings in self._config.groups:
            if device_id in settings.shockers:
                group = self._groups.get(settings.name)
                if group is not None:
                    matches.append(group)
        return matches

    def reset_all(self) -> None:
        for group in self._groups.values():
            group.reset()
