#!/usr/bin/env python3
"""Validate shockosc.yaml and every profile overlay before a session."""
from __future__ import annotations

import argparse
import sys
from functools import partial
from pathlib import Path
from typing import Iterable, List

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from software.shockosc import config_validation as cv
from software.shockosc.config_loader import load_profile_file

DEFAULT_CONFIG = REPO_ROOT / "config" / "shockosc.yaml"
DEFAULT_PROFILE_DIR = REPO_ROOT / "config" / "profiles"


def _iter_profile_paths(profile_dir: Path) -> Iterable[Path]:
    if not profile_dir.exists():
        return []
    return sorted(p for p in profile_dir.iterdir() if p.suffix.lower() in {".yaml", ".yml"})


def validate(config_path: Path, profile_dir: Path, *, verbose: bool = False) -> List[Path]:
    config_path = config_path.resolve()
    profile_dir = profile_dir.resolve()
    if verbose:
        print(f"[validate] config  → {config_path}")
    cv.validate_file(config_path, source_label="config")
    failures: List[Path] = []
    loader = partial(load_profile_file, base_path=config_path)
    for profile in _iter_profile_paths(profile_dir):
        if verbose:
            print(f"[validate] profile → {profile}")
        try:
            cv.validate_profile(profile, loader)
        except (cv.ValidationError, ValueError) as exc:
            failures.append(profile)
            print(f"[validate] ✖ {profile.name}: {exc}")
    if failures:
        raise cv.ValidationError([f"{len(failures)} profile(s) failed validation"])
    if verbose:
        print("[validate] all clear.")
    return failures


def main(argv: Iterable[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Sanity-check ShockOsc bridge configs")
    ap.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to shockosc.yaml")
    ap.add_argument("--profiles", type=Path, default=DEFAULT_PROFILE_DIR, help="Directory containing profiles")
    ap.add_argument("--quiet", action="store_true", help="Suppress success chatter")
    args = ap.parse_args(list(argv) if argv is not None else None)

    try:
        validate(args.config, args.profiles, verbose=not args.quiet)
    except cv.ValidationError as exc:
        if not args.quiet:
            print("[validate] config errors detected")
        for line in exc.errors:
            print(f"[validate] ✖ {line}")
        return 1
    except (FileNotFoundError, ValueError) as exc:
        print(f"[validate] ✖ {exc}")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
