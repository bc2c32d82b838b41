#!/usr/bin/env python3
"""End-to-end check for the ShockOsc bridge.

This harness pretends to be the whole outside world: the game client sending
avatar parameters over UDP, the avatar receiving feedback parameters, and the
device backend receiving control commands. Run it before a session to catch
a broken config or port clash without strapping anything on.

The loopback doubles defined here (:class:`LoopbackTransport`,
:class:`RecordingControlClient`, :class:`ManualClock`, :class:`InlineTasks`)
and :func:`loopback_rig`, which wires them into a session, double as the
fixtures of the unit tests.
"""
from __future__ import annotations

import argparse
import random
import sys
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pythonosc import dispatcher, udp_client
from pythonosc.osc_server import ThreadingOSCUDPServer

from software.shockosc.audit import AuditLogger
from software.shockosc.config_loader import load_shockosc_config
from software.shockosc.config_validation import ShockOscConfig, ValidationError, build_config, validate_config
from software.shockosc.dispatch import ControlCommand, ControlType
from software.shockosc.session import ShockOscSession
from software.shockosc.transport import SHOCKOSC_PARAMS, MessageHandler, OscTransport

DEFAULT_CONFIG = REPO_ROOT / "config" / "shockosc.yaml"


class LoopbackTransport:
    """Capture everything the session sends; inject inbound messages by hand."""

    def __init__(self) -> None:
        self._handler: Optional[MessageHandler] = None
        self._sent: List[Tuple[str, Any]] = []
        self._chat: List[str] = []
        self._lock = threading.Lock()
        self.closed = False

    def open(self, handler: MessageHandler) -> None:
        self._handler = handler
        self.closed = False

    def receive_once(self) -> None:
        time.sleep(0.005)

    def inject(self, address: str, *args: Any) -> None:
        if self._handler is None:
            raise RuntimeError("transport not opened")
        self._handler(address, args)

    def send(self, address: str, value: Any) -> None:
        with self._lock:
            self._sent.append((address, value))

    def send_chatbox(self, text: str) -> None:
        with self._lock:
            self._chat.append(text)

    def close(self) -> None:
        self.closed = True

    def sent(self) -> List[Tuple[str, Any]]:
        with self._lock:
            return list(self._sent)

    def chat(self) -> List[str]:
        with self._lock:
            return list(self._chat)

    def last_value(self, address: str) -> Any:
        for sent_address, value in reversed(self.sent()):
            if sent_address == address:
                return value
        return None

    def clear(self) -> None:
        with self._lock:
            self._sent.clear()
            self._chat.clear()


class RecordingControlClient:
    """Collect control batches so we can inspect what the bridge dispatched."""

    def __init__(self) -> None:
        self._batches: List[List[ControlCommand]] = []
        self._lock = threading.Lock()

    def control(self, commands: Sequence[ControlCommand]) -> None:
        with self._lock:
            self._batches.append(list(commands))

    def batches(self) -> List[List[ControlCommand]]:
        with self._lock:
            return [list(batch) for batch in self._batches]

    def commands(self, control_type: Optional[ControlType] = None) -> List[ControlCommand]:
        flat = [command for batch in self.batches() for command in batch]
        if control_type is None:
            return flat
        return [command for command in flat if command.type is control_type]


class ManualClock:
    """Session clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0


class InlineTasks:
    """Run "background" work on the calling thread so tests stay deterministic."""

    def __init__(self) -> None:
        self.failures: List[Tuple[str, BaseException]] = []

    def spawn(self, label: str, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:  # noqa: BLE001 - kept for assertions
            self.failures.append((label, exc))
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None


DEFAULT_GROUPS = [
    {"id": "group-leg", "name": "Leg", "shockers": ["dev-leg"]},
    {"id": "group-arm", "name": "Arm", "shockers": ["dev-arm-left", "dev-arm-right"]},
]


def make_config(
    behaviour: Optional[Dict[str, Any]] = None,
    *,
    groups: Optional[List[Dict[str, Any]]] = None,
    chatbox: Optional[Dict[str, Any]] = None,
    osc: Optional[Dict[str, Any]] = None,
) -> ShockOscConfig:
    """Validated config from inline sections; unspecified keys keep their defaults."""

    raw: Dict[str, Any] = {
        "behaviour": behaviour or {},
        "groups": DEFAULT_GROUPS if groups is None else groups,
    }
    if chatbox is not None:
        raw["chatbox"] = chatbox
    if osc is not None:
        raw["osc"] = osc
    validate_config(raw, "inline")
    return build_config(raw)


@dataclass
class LoopbackRig:
    """A session wired to loopback doubles; nothing runs until you drive it."""

    session: ShockOscSession
    transport: LoopbackTransport
    control_client: RecordingControlClient
    clock: ManualClock
    tasks: InlineTasks

    @property
    def state(self):
        return self.session.state

    def group(self, name: str):
        return self.session.state.groups.get(name)

    def receive(self, address: str, *args: Any) -> None:
        self.transport.inject(address, *args)

    def param(self, name: str, value: Any) -> None:
        """Deliver ``/avatar/parameters/ShockOsc/<name>``."""

        self.receive(f"{SHOCKOSC_PARAMS}{name}", value)

    def tick(self) -> int:
        return self.session.checker.tick()

    def feedback(self, name: str) -> Any:
        return self.transport.last_value(f"{SHOCKOSC_PARAMS}{name}")


def loopback_rig(
    config: ShockOscConfig,
    *,
    parameter_source=None,
    audit: Optional[AuditLogger] = None,
    seed: int = 0,
) -> LoopbackRig:
    transport = LoopbackTransport()
    control_client = RecordingControlClient()
    clock = ManualClock()
    tasks = InlineTasks()
    session = ShockOscSession(
        config,
        transport,
        control_client,
        parameter_source=parameter_source,
        audit=audit,
        clock=clock,
        rng=random.Random(seed),
        tasks=tasks,
        sleep=lambda _seconds: None,
    )
    transport.open(session.handle_message)
    return LoopbackRig(session, transport, control_client, clock, tasks)


class FeedbackSink:
    """Stand in for the avatar: record every OSC message the bridge sends."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, Tuple[Any, ...]]] = []
        self._lock = threading.Lock()
        disp = dispatcher.Dispatcher()
        disp.set_default_handler(self._record)
        self._server = ThreadingOSCUDPServer(("127.0.0.1", 0), disp)
        self._server.daemon_threads = True
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def _record(self, address: str, *args: Any) -> None:
        with self._lock:
            self.messages.append((address, args))

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=1)

    def values_for(self, address: str) -> List[Tuple[Any, ...]]:
        with self._lock:
            return [args for addr, args in self.messages if addr == address]


class SessionHarness:
    """Run a real session over UDP with a recording backend."""

    def __init__(self, config: ShockOscConfig, *, audit: Optional[AuditLogger] = None, seed: int = 0) -> None:
        self.config = config
        self.sink = FeedbackSink()
        self.control_client = RecordingControlClient()
        self.transport = OscTransport("127.0.0.1", self.sink.port, 0, receive_timeout=0.05)
        self.session = ShockOscSession(
            config,
            self.transport,
            self.control_client,
            audit=audit,
            rng=random.Random(seed),
        )

    @property
    def listening_port(self) -> int:
        return self.transport.listening_port

    def start(self) -> None:
        self.sink.start()
        self.session.start()

    def stop(self) -> None:
        self.session.close()
        self.sink.stop()

    def wait_for_commands(self, count: int, timeout: float = 2.0) -> bool:
        deadline = time.time() + timeout
        while time.time() < deadline:
            if len(self.control_client.commands(ControlType.SHOCK)) >= count:
                return True
            time.sleep(0.01)
        return False


def expected_devices(config: ShockOscConfig) -> Dict[str, List[str]]:
    return {group.name: list(group.shockers) for group in config.groups}


def assert_control_activity(client: RecordingControlClient, config: ShockOscConfig) -> None:
    shocks = client.commands(ControlType.SHOCK)
    if not shocks:
        raise AssertionError("Bridge never dispatched a shock, check OSC input")
    behaviour = config.behaviour
    shocked = {command.device_id for command in shocks}
    for name, devices in expected_devices(config).items():
        missing = [device for device in devices if device not in shocked]
        if missing:
            raise AssertionError(f"Group {name} never reached devices {missing}")
    for command in shocks:
        if behaviour.random_intensity:
            low, high = behaviour.intensity_range.min, behaviour.intensity_range.max
            if not (low <= command.intensity < max(high, low + 1)):
                raise AssertionError(f"Intensity {command.intensity} outside [{low}, {high})")
        elif command.intensity != behaviour.fixed_intensity:
            raise AssertionError(f"Intensity {command.intensity} != fixed {behaviour.fixed_intensity}")
        if behaviour.random_duration and command.duration % behaviour.random_duration_step:
            raise AssertionError(f"Duration {command.duration} is not a multiple of the step")


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a loopback smoke test of the ShockOsc bridge.")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Config YAML (defaults to config/shockosc.yaml)")
    parser.add_argument("--profile", help="Optional profile overlay name")
    parser.add_argument("--warmup", type=float, default=0.05, help="Pause after boot before sending")
    parser.add_argument("--timeout", type=float, default=2.0, help="How long to wait for dispatches")
    parser.add_argument("--log-events", action="store_true", help="Write audit events to logs/ops_events.jsonl")
    args = parser.parse_args(list(argv) if argv is not None else None)

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = (REPO_ROOT / config_path).resolve()
    if not config_path.is_file():
        print(f"Config file not found: {config_path}", file=sys.stderr)
        return 2
    try:
        config = load_shockosc_config(
            base_path=str(config_path),
            profile_name=args.profile,
            profiles_dir=str(config_path.parent / "profiles"),
        )
    except (ValidationError, FileNotFoundError, ValueError) as exc:
        print(f"Config invalid: {exc}", file=sys.stderr)
        return 2
    if not config.groups:
        print("Config declares no groups; nothing to check", file=sys.stderr)
        return 2
    # the smoke run must not be muted by menu state or chat spam
    config.behaviour.force_unmute = False
    config.osc.chatbox = False

    audit = AuditLogger() if args.log_events else None
    harness = SessionHarness(config, audit=audit)
    harness.start()
    try:
        client = udp_client.SimpleUDPClient("127.0.0.1", harness.listening_port)
        time.sleep(max(0.0, args.warmup))
        for group in config.groups:
            client.send_message(f"{SHOCKOSC_PARAMS}{group.name}_IShock", True)
        expected = sum(len(group.shockers) for group in config.groups)
        harness.wait_for_commands(expected, timeout=args.timeout)
        # let the next send tick publish feedback
        time.sleep(0.4)
    finally:
        harness.stop()

    try:
        assert_control_activity(harness.control_client, config)
        for group in config.groups:
            if not harness.sink.values_for(f"{SHOCKOSC_PARAMS}{group.name}_Active"):
                raise AssertionError(f"No {group.name}_Active feedback reached the avatar")
    except AssertionError as exc:
        print(f"✖ {exc}", file=sys.stderr)
        return 1

    print("✅ IShock parameters reached every configured device.")
    print("✅ Intensity and duration stayed inside the configured policy.")
    print("✅ Active feedback made it back to the avatar.")
    print("All green. Go run the real thing.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
