import json
import sys
import time
from pathlib import Path

import pytest
from pythonosc import udp_client

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import scripts.check_stack as check_stack
from software.shockosc.dispatch import ControlType
from software.shockosc.transport import SHOCKOSC_PARAMS

CONFIG = REPO_ROOT / "config" / "shockosc.yaml"


def test_loopback_transport_requires_open():
    transport = check_stack.LoopbackTransport()
    with pytest.raises(RuntimeError):
        transport.inject("/avatar/parameters/AFK", True)


def test_manual_clock_advances_in_milliseconds():
    clock = check_stack.ManualClock(start=10.0)
    clock.advance(250)
    assert clock() == pytest.approx(10.25)


def test_harness_dispatches_over_real_udp():
    config = check_stack.make_config(
        {"random_intensity": False, "fixed_intensity": 25, "random_duration": False, "fixed_duration": 800},
        osc={"chatbox": False},
    )
    harness = check_stack.SessionHarness(config)
    harness.start()
    try:
        client = udp_client.SimpleUDPClient("127.0.0.1", harness.listening_port)
        time.sleep(0.02)
        client.send_message(f"{SHOCKOSC_PARAMS}Arm_IShock", True)
        assert harness.wait_for_commands(2), "Arm shock never reached the recording backend"
    finally:
        harness.stop()

    commands = harness.control_client.commands(ControlType.SHOCK)
    assert sorted(c.device_id for c in commands) == ["dev-arm-left", "dev-arm-right"]
    assert all((c.intensity, c.duration) == (25, 800) for c in commands)
    assert (True,) in harness.sink.values_for(f"{SHOCKOSC_PARAMS}Arm_Active")


def test_assert_control_activity_flags_silent_bridge():
    client = check_stack.RecordingControlClient()
    with pytest.raises(AssertionError):
        check_stack.assert_control_activity(client, check_stack.make_config())


def test_cli_entrypoint_runs_fast():
    exit_code = check_stack.main(["--config", str(CONFIG), "--warmup", "0.02"])
    assert exit_code == 0


def test_cli_accepts_profile_overlay():
    exit_code = check_stack.main(["--config", str(CONFIG), "--profile", "gentle", "--warmup", "0.02"])
    assert exit_code == 0


def test_cli_rejects_missing_config(tmp_path, capsys):
    exit_code = check_stack.main(["--config", str(tmp_path / "nope.yaml")])
    captured = capsys.readouterr()
    assert exit_code == 2
    assert "Config file not found" in captured.err


def test_cli_rejects_invalid_config(tmp_path, capsys):
    bad = tmp_path / "bad.yaml"
    bad.write_text("behaviour:\n  while_bone_held: tickle\n")
    exit_code = check_stack.main(["--config", str(bad)])
    assert exit_code == 2
    assert "Config invalid" in capsys.readouterr().err


def test_check_stack_logs_audit_events(tmp_path, monkeypatch):
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("SHOCKOSC_LOG_DIR", str(log_dir))
    exit_code = check_stack.main(["--config", str(CONFIG), "--warmup", "0.02", "--log-events"])
    assert exit_code == 0
    log_path = log_dir / "ops_events.jsonl"
    assert log_path.exists(), "ops_events.jsonl missing despite logging flag"
    actions = [
        json.loads(line)["action"]
        for line in log_path.read_text().splitlines()
        if line.strip()
    ]

    def assert_subsequence(sequence, subsequence):
        iterator = iter(sequence)
        for target in subsequence:
            for item in iterator:
                if item == target:
                    break
            else:  # pragma: no cover
                raise AssertionError(f"{target} missing from actions")

    assert_subsequence(actions, ["session_start", "shock_dispatched", "session_stop"])
