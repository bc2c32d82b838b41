"""Config validation helpers for the ShockOsc bridge.

The YAML file is validated in one pass so operators see every problem at once
instead of fixing them one crash at a time. Once it validates,
:func:`build_config` turns the raw mapping into the typed settings the runtime
reads.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, MutableMapping, Optional

import yaml


class ValidationError(Exception):
    """Aggregates config validation failures."""

    def __init__(self, errors: Iterable[str]):
        messages = list(errors)
        super().__init__("; ".join(messages))
        self.errors = messages


BONE_HELD_ACTIONS = ("none", "vibrate", "shock")
CONTROL_TYPE_KEYS = ("shock", "vibrate", "sound", "stop")
MAX_INTENSITY = 100
MAX_DURATION_MS = 30_000


@dataclasses.dataclass
class IntRange:
    min: int
    max: int


@dataclasses.dataclass
class OscSettings:
    host: str = "127.0.0.1"
    send_port: int = 9000
    receive_port: int = 9001
    chatbox: bool = True


@dataclasses.dataclass
class BehaviourSettings:
    disable_while_afk: bool = True
    force_unmute: bool = False
    hold_time: int = 250
    cooldown_time: int = 5000
    random_intensity: bool = True
    fixed_intensity: int = 50
    intensity_range: IntRange = dataclasses.field(default_factory=lambda: IntRange(1, 30))
    random_duration: bool = True
    fixed_duration: int = 2000
    duration_range: IntRange = dataclasses.field(default_factory=lambda: IntRange(1000, 5000))
    random_duration_step: int = 100
    while_bone_held: str = "vibrate"


@dataclasses.dataclass
class ChatTemplate:
    enabled: bool = True
    local: str = ""
    remote: str = ""
    remote_with_custom_name: str = ""


def _default_templates() -> Dict[str, ChatTemplate]:
    return {
        "shock": ChatTemplate(
            local="⚡ {shocker_name}:{intensity}%:{duration_seconds}s",
            remote="⚡ {name} {shocker_name}:{intensity}%:{duration_seconds}s",
            remote_with_custom_name="⚡ {custom_name} [{name}] {shocker_name}:{intensity}%:{duration_seconds}s",
        ),
        "vibrate": ChatTemplate(
            local="〜 {shocker_name}:{intensity}%:{duration_seconds}s",
            remote="〜 {name} {shocker_name}:{intensity}%:{duration_seconds}s",
            remote_with_custom_name="〜 {custom_name} [{name}] {shocker_name}:{intensity}%:{duration_seconds}s",
        ),
        "sound": ChatTemplate(
            local="🔈 {shocker_name}:{intensity}%:{duration_seconds}s",
            remote="🔈 {name} {shocker_name}:{intensity}%:{duration_seconds}s",
            remote_with_custom_name="🔈 {custom_name} [{name}] {shocker_name}:{intensity}%:{duration_seconds}s",
        ),
        "stop": ChatTemplate(
            enabled=False,
            local="⏹ {shocker_name}",
            remote="⏹ {name} {shocker_name}",
            remote_with_custom_name="⏹ {custom_name} [{name}] {shocker_name}",
        ),
    }


@dataclasses.dataclass
class ChatboxSettings:
    prefix: str = "[ShockOsc] "
    display_remote_control: bool = True
    ignored_kill_switch_active: str = "Ignoring Shock, kill switch is active"
    ignored_afk: str = "Ignoring Shock, user is AFK"
    types: Dict[str, ChatTemplate] = dataclasses.field(default_factory=_default_templates)

    def template_for(self, control_type: str) -> ChatTemplate:
        return self.types.get(control_type.lower()) or ChatTemplate(enabled=False)


@dataclasses.dataclass
class GroupSettings:
    id: str
    name: str
    shockers: List[str]


@dataclasses.dataclass
class ShockOscConfig:
    osc: OscSettings = dataclasses.field(default_factory=OscSettings)
    behaviour: BehaviourSettings = dataclasses.field(default_factory=BehaviourSettings)
    chatbox: ChatboxSettings = dataclasses.field(default_factory=ChatboxSettings)
    groups: List[GroupSettings] = dataclasses.field(default_factory=list)

    def group_by_id(self, group_id: str) -> Optional[GroupSettings]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None


# ---- validation primitives -------------------------------------------------


def _optional_mapping(section: Mapping, key: str, path: str, errors: list[str]) -> Mapping:
    value = section.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        errors.append(f"'{path}.{key}' must be a mapping")
        return {}
    return value


def _check_int(
    section: Mapping,
    key: str,
    path: str,
    *,
    minimum=None,
    maximum=None,
    errors: list[str],
):
    if key not in section:
        return None
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"'{path}.{key}' must be an integer")
        return None
    if minimum is not None and value < minimum:
        errors.append(f"'{path}.{key}' must be >= {minimum}")
    if maximum is not None and value > maximum:
        errors.append(f"'{path}.{key}' must be <= {maximum}")
    return value


def _check_bool(section: Mapping, key: str, path: str, errors: list[str]) -> None:
    if key in section and not isinstance(section[key], bool):
        errors.append(f"'{path}.{key}' must be boolean")


def _check_str(section: Mapping, key: str, path: str, errors: list[str]) -> None:
    if key in section and not isinstance(section[key], str):
        errors.append(f"'{path}.{key}' must be a string")


def _check_range(section: Mapping, key: str, path: str, maximum: int, errors: list[str]) -> None:
    range_cfg = _optional_mapping(section, key, path, errors)
    if not range_cfg:
        return
    low = _check_int(range_cfg, "min", f"{path}.{key}", minimum=0, maximum=maximum, errors=errors)
    high = _check_int(range_cfg, "max", f"{path}.{key}", minimum=0, maximum=maximum, errors=errors)
    if low is not None and high is not None and low > high:
        errors.append(f"'{path}.{key}.min' cannot exceed max")


def _validate_osc(cfg: Mapping, source: str, errors: list[str]) -> None:
    osc = _optional_mapping(cfg, "osc", source, errors)
    path = f"{source}.osc"
    _check_str(osc, "host", path, errors)
    _check_int(osc, "send_port", path, minimum=0, maximum=65535, errors=errors)
    _check_int(osc, "receive_port", path, minimum=0, maximum=65535, errors=errors)
    _check_bool(osc, "chatbox", path, errors)


def _validate_behaviour(cfg: Mapping, source: str, errors: list[str]) -> None:
    behaviour = _optional_mapping(cfg, "behaviour", source, errors)
    path = f"{source}.behaviour"
    for flag in ("disable_while_afk", "force_unmute", "random_intensity", "random_duration"):
        _check_bool(behaviour, flag, path, errors)
    _check_int(behaviour, "hold_time", path, minimum=0, errors=errors)
    _check_int(behaviour, "cooldown_time", path, minimum=0, errors=errors)
    _check_int(behaviour, "fixed_intensity", path, minimum=0, maximum=MAX_INTENSITY, errors=errors)
    _check_int(behaviour, "fixed_duration", path, minimum=0, maximum=MAX_DURATION_MS, errors=errors)
    _check_int(behaviour, "random_duration_step", path, minimum=1, errors=errors)
    _check_range(behaviour, "intensity_range", path, MAX_INTENSITY, errors)
    _check_range(behaviour, "duration_range", path, MAX_DURATION_MS, errors)
    held = behaviour.get("while_bone_held", "vibrate")
    if held not in BONE_HELD_ACTIONS:
        errors.append(f"'{path}.while_bone_held' must be one of {list(BONE_HELD_ACTIONS)}")


def _validate_chatbox(cfg: Mapping, source: str, errors: list[str]) -> None:
    chatbox = _optional_mapping(cfg, "chatbox", source, errors)
    path = f"{source}.chatbox"
    for key in ("prefix", "ignored_kill_switch_active", "ignored_afk"):
        _check_str(chatbox, key, path, errors)
    _check_bool(chatbox, "display_remote_control", path, errors)
    types = _optional_mapping(chatbox, "types", path, errors)
    for type_name, template in types.items():
        type_path = f"{path}.types.{type_name}"
        if type_name not in CONTROL_TYPE_KEYS:
            errors.append(f"'{type_path}' is not a control type, expected one of {list(CONTROL_TYPE_KEYS)}")
            continue
        if not isinstance(template, Mapping):
            errors.append(f"'{type_path}' must be a mapping")
            continue
        _check_bool(template, "enabled", type_path, errors)
        for key in ("local", "remote", "remote_with_custom_name"):
            _check_str(template, key, type_path, errors)


def _validate_groups(cfg: Mapping, source: str, errors: list[str]) -> None:
    groups = cfg.get("groups")
    if groups is None:
        return
    if not isinstance(groups, list):
        errors.append(f"'{source}.groups' must be a list")
        return
    seen_names = set()
    seen_ids = set()
    for idx, group in enumerate(groups):
        path = f"{source}.groups[{idx}]"
        if not isinstance(group, Mapping):
            errors.append(f"{path} must be a mapping")
            continue
        group_id = group.get("id")
        if not isinstance(group_id, str) or not group_id:
            errors.append(f"{path}.id must be a non-empty string")
        elif group_id in seen_ids:
            errors.append(f"{path}.id '{group_id}' is declared twice")
        else:
            seen_ids.add(group_id)
        name = group.get("name")
        if not isinstance(name, str) or not name:
            errors.append(f"{path}.name must be a non-empty string")
        elif name.startswith("_"):
            errors.append(f"{path}.name '{name}' cannot start with '_' (reserved for internal parameters)")
        elif "/" in name:
            errors.append(f"{path}.name '{name}' cannot contain '/'")
        elif name in seen_names:
            errors.append(f"{path}.name '{name}' is declared twice")
        else:
            seen_names.add(name)
        shockers = group.get("shockers")
        if not isinstance(shockers, list) or not all(isinstance(s, str) and s for s in shockers):
            errors.append(f"{path}.shockers must be a list of device id strings")


def validate_config(cfg: Mapping, source: str = "config") -> None:
    errors: list[str] = []
    if not isinstance(cfg, Mapping):
        raise ValidationError([f"{source}: config must be a mapping"])

    _validate_osc(cfg, source, errors)
    _validate_behaviour(cfg, source, errors)
    _validate_chatbox(cfg, source, errors)
    _validate_groups(cfg, source, errors)

    if errors:
        raise ValidationError(errors)


# ---- typed settings ----------------------------------------------------------


def _build_range(raw: Optional[Mapping], default: IntRange) -> IntRange:
    raw = raw or {}
    return IntRange(int(raw.get("min", default.min)), int(raw.get("max", default.max)))


def build_config(cfg: Mapping) -> ShockOscConfig:
    """Turn a validated mapping into :class:`ShockOscConfig`, filling defaults."""

    defaults = ShockOscConfig()

    osc_cfg = cfg.get("osc") or {}
    osc = OscSettings(
        host=osc_cfg.get("host", defaults.osc.host),
        send_port=int(osc_cfg.get("send_port", defaults.osc.send_port)),
        receive_port=int(osc_cfg.get("receive_port", defaults.osc.receive_port)),
        chatbox=bool(osc_cfg.get("chatbox", defaults.osc.chatbox)),
    )

    b_cfg = cfg.get("behaviour") or {}
    b_def = defaults.behaviour
    behaviour = BehaviourSettings(
        disable_while_afk=bool(b_cfg.get("disable_while_afk", b_def.disable_while_afk)),
        force_unmute=bool(b_cfg.get("force_unmute", b_def.force_unmute)),
        hold_time=int(b_cfg.get("hold_time", b_def.hold_time)),
        cooldown_time=int(b_cfg.get("cooldown_time", b_def.cooldown_time)),
        random_intensity=bool(b_cfg.get("random_intensity", b_def.random_intensity)),
        fixed_intensity=int(b_cfg.get("fixed_intensity", b_def.fixed_intensity)),
        intensity_range=_build_range(b_cfg.get("intensity_range"), b_def.intensity_range),
        random_duration=bool(b_cfg.get("random_duration", b_def.random_duration)),
        fixed_duration=int(b_cfg.get("fixed_duration", b_def.fixed_duration)),
        duration_range=_build_range(b_cfg.get("duration_range"), b_def.duration_range),
        random_duration_step=int(b_cfg.get("random_duration_step", b_def.random_duration_step)),
        while_bone_held=str(b_cfg.get("while_bone_held", b_def.while_bone_held)),
    )

    c_cfg = cfg.get("chatbox") or {}
    c_def = defaults.chatbox
    types = dict(c_def.types)
    for type_name, raw in (c_cfg.get("types") or {}).items():
        base = types.get(type_name, ChatTemplate())
        types[type_name] = ChatTemplate(
            enabled=bool(raw.get("enabled", base.enabled)),
            local=raw.get("local", base.local),
            remote=raw.get("remote", base.remote),
            remote_with_custom_name=raw.get("remote_with_custom_name", base.remote_with_custom_name),
        )
    chatbox = ChatboxSettings(
        prefix=c_cfg.get("prefix", c_def.prefix),
        display_remote_control=bool(c_cfg.get("display_remote_control", c_def.display_remote_control)),
        ignored_kill_switch_active=c_cfg.get("ignored_kill_switch_active", c_def.ignored_kill_switch_active),
        ignored_afk=c_cfg.get("ignored_afk", c_def.ignored_afk),
        types=types,
    )

    groups = [
        GroupSettings(id=str(g["id"]), name=str(g["name"]), shockers=[str(s) for s in g.get("shockers", [])])
        for g in cfg.get("groups") or []
    ]
    return ShockOscConfig(osc=osc, behaviour=behaviour, chatbox=chatbox, groups=groups)


def load_yaml(path: Path) -> MutableMapping:
    try:
        return yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Unable to parse YAML at {path}: {exc}") from exc


def validate_file(path: Path, *, source_label: str | None = None) -> MutableMapping:
    cfg = load_yaml(path)
    validate_config(cfg, source_label or Path(path).name)
    return cfg


def validate_profile(path: Path, loader) -> MutableMapping:
    cfg = loader(path)
    validate_config(cfg, Path(path).name)
    return cfg
