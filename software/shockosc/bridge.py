#!/usr/bin/env python3
"""ShockOsc bridge: avatar parameters in, shocker control commands out.

Listens for the game client's OSC avatar parameters, turns grabs, stretches
and trigger parameters into control commands for the configured shocker
groups, and publishes active/cooldown/intensity feedback back to the avatar.

The remote device backend is pluggable: ``--backend pkg.module:factory``
names a callable that takes the loaded config and returns an object with a
``control(commands)`` method. A backend that also has ``subscribe(callback)``
is handed the session's control-log handler, so shocks fired from elsewhere
show up in the avatar feedback. Without a backend (or with ``--dry-run``)
commands are only logged.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import time
from pathlib import Path
from typing import List, Optional

from software.shockosc.audit import AuditLogger
from software.shockosc.config_loader import DEFAULT_CONFIG_PATH, DEFAULT_PROFILES_DIR, load_shockosc_config
from software.shockosc.config_validation import ShockOscConfig, ValidationError
from software.shockosc.dispatch import ControlClient, DryRunControlClient
from software.shockosc.session import ShockOscSession
from software.shockosc.transport import OscTransport

logger = logging.getLogger("shockosc")

LOG_FORMAT = "[%(asctime)s %(levelname).3s] [%(name)s] %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def load_backend(spec: str, config: ShockOscConfig) -> ControlClient:
    """Resolve ``pkg.module:factory`` and call the factory with ``config``."""

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Backend '{spec}' must look like 'package.module:factory'")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    return factory(config)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description=(
            "Route game-client avatar parameters to shocker groups and publish "
            "cooldown/intensity feedback back to the avatar."
        )
    )
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"Base config YAML (default: {DEFAULT_CONFIG_PATH}).")
    ap.add_argument("--profile", help="Profile overlay name from --profiles-dir (e.g. 'gentle').")
    ap.add_argument("--profiles-dir", default=DEFAULT_PROFILES_DIR)
    ap.add_argument("--host", help="Game client host (overrides osc.host).")
    ap.add_argument("--send-port", type=int, help="Port the game client listens on (overrides osc.send_port).")
    ap.add_argument("--receive-port", type=int, help="Port to listen on (overrides osc.receive_port).")
    ap.add_argument("--backend", help="Control backend factory as 'package.module:callable'.")
    ap.add_argument("--dry-run", action="store_true", help="Log control commands instead of sending them.")
    ap.add_argument("--log-events", action="store_true", help="Append audit events to logs/ops_events.jsonl.")
    ap.add_argument("--debug", action="store_true", help="Verbose logging.")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)
    audit = AuditLogger() if args.log_events else None

    config_path = Path(args.config).expanduser().resolve()
    try:
        config = load_shockosc_config(
            base_path=str(config_path),
            profile_name=args.profile,
            profiles_dir=args.profiles_dir,
        )
    except ValidationError as exc:
        logger.error("Config validation failed:")
        for line in exc.errors:
            logger.error("  %s", line)
        if audit is not None:
            audit.write("config_validation", status="error", message="Config validation failed", details={"errors": exc.errors})
        return 1
    except (FileNotFoundError, ValueError) as exc:
        logger.error("Failed to load config: %s", exc)
        if audit is not None:
            audit.write("config_load", status="error", message=str(exc), details={"path": str(config_path)})
        return 1

    if audit is not None:
        audit.write(
            "config_load",
            status="info",
            message="Loaded config",
            details={"path": str(config_path), "profile": args.profile, "groups": len(config.groups)},
        )

    if args.host:
        config.osc.host = args.host
    if args.send_port is not None:
        config.osc.send_port = args.send_port
    if args.receive_port is not None:
        config.osc.receive_port = args.receive_port

    if args.backend and not args.dry_run:
        try:
            control_client = load_backend(args.backend, config)
        except (ImportError, AttributeError, ValueError) as exc:
            logger.error("Failed to load backend %s: %s", args.backend, exc)
            return 1
    else:
        control_client = DryRunControlClient()
        logger.info("Dry run: control commands are logged, not sent")

    transport = OscTransport(config.osc.host, config.osc.send_port, config.osc.receive_port)
    session = ShockOscSession(config, transport, control_client, audit=audit)
    try:
        session.start()
    except OSError as exc:
        logger.error("Failed to open OSC receive port %d: %s", config.osc.receive_port, exc)
        if audit is not None:
            audit.write("session_start", status="error", message=str(exc), details={"receive_port": config.osc.receive_port})
        session.close()
        return 1
    try:
        while session.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
