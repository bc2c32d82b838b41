"""Utility helpers for loading the base config and profile overlays.

A "profile" is a lightweight overlay that tweaks the default ShockOsc config
(say, a gentler intensity range for a long session) without cloning the whole
file. Profiles live in ``config/profiles`` next to ``config/shockosc.yaml``
and only override the keys they care about.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

import yaml

from software.shockosc.config_validation import ShockOscConfig, build_config, validate_config

DEFAULT_CONFIG_PATH = "config/shockosc.yaml"
DEFAULT_PROFILES_DIR = "config/profiles"


def _validate_mapping(obj: Any, label: str) -> Dict[str, Any]:
    """Ensure the loaded YAML object is a dict.

    Raises
    ------
    ValueError
        If the parsed YAML is not a mapping/dictionary.
    """

    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValueError(f"Config file {label} must contain a top-level dictionary; got {type(obj)}")
    return obj


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overlay`` on top of ``base``.

    - Nested dictionaries are merged so that only the touched keys change.
    - Scalars and lists (``groups`` included) are replaced entirely.
    - ``base`` is not mutated; a merged copy is returned.
    """

    merged = copy.deepcopy(base)
    for key, overlay_value in overlay.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(overlay_value, dict):
            merged[key] = _deep_merge(base_value, overlay_value)
        else:
            merged[key] = copy.deepcopy(overlay_value)
    return merged


def _read_yaml(path: Path, label: str) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Unable to parse {label} YAML at {path}: {exc}") from exc
    return _validate_mapping(data, str(path))


def load_profile_file(path: Path, base_path: str | Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load a single profile overlay merged over the base config."""

    path = Path(path)
    base_path = Path(base_path)
    base = _read_yaml(base_path, "base config") if base_path.is_file() else {}
    return _deep_merge(base, _read_yaml(path, "profile"))


def load_config(
    base_path: str = DEFAULT_CONFIG_PATH,
    profile_name: str | None = None,
    profiles_dir: str = DEFAULT_PROFILES_DIR,
) -> Dict[str, Any]:
    """Load the base config and optionally overlay a named profile.

    Parameters
    ----------
    base_path: str
        Path to the canonical config YAML file.
    profile_name: str | None
        If provided, the loader looks for ``<profiles_dir>/<profile_name>.yaml``
        and overlays it on top of the base config.
    profiles_dir: str
        Directory that contains profile YAML overlays.

    Raises
    ------
    FileNotFoundError
        If the base config or the requested profile cannot be found.
    ValueError
        If YAML parsing fails or the parsed content is not a dictionary.
    """

    base_file = Path(base_path)
    if not base_file.is_file():
        raise FileNotFoundError(f"Base config file not found: {base_file}")
    base_config = _read_yaml(base_file, "base config")

    if profile_name is None:
        return base_config

    profile_file = Path(profiles_dir) / f"{profile_name}.yaml"
    if not profile_file.is_file():
        raise FileNotFoundError(f"Profile '{profile_name}' not found in {profiles_dir}")

    return _deep_merge(base_config, _read_yaml(profile_file, "profile"))


def load_shockosc_config(
    base_path: str = DEFAULT_CONFIG_PATH,
    profile_name: str | None = None,
    profiles_dir: str = DEFAULT_PROFILES_DIR,
) -> ShockOscConfig:
    """Load, validate and type the config in one go."""

    raw = load_config(base_path=base_path, profile_name=profile_name, profiles_dir=profiles_dir)
    validate_config(raw, profile_name or Path(base_path).name)
    return build_config(raw)
