import json
import logging
import sys
import time
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scripts.check_stack import LoopbackTransport, RecordingControlClient, loopback_rig, make_config
from software.shockosc.audit import AuditLogger
from software.shockosc.dispatch import ControlCommand, ControlType, DryRunControlClient
from software.shockosc.session import ShockOscSession
from software.shockosc.transport import SHOCKOSC_PARAMS


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_session_loops_start_and_stop_cleanly():
    config = make_config({"random_intensity": False, "fixed_intensity": 20})
    transport = LoopbackTransport()
    control_client = RecordingControlClient()
    session = ShockOscSession(config, transport, control_client)

    session.start()
    try:
        assert session.running
        paused = SHOCKOSC_PARAMS + "_Config/_All/Paused"
        assert _wait_for(lambda: transport.last_value(paused) is False), "config never announced"
        transport.inject(SHOCKOSC_PARAMS + "Leg_IShock", True)
        assert _wait_for(lambda: control_client.commands()), "shock never reached the backend"
    finally:
        session.close()

    assert not session.running
    assert transport.closed
    (command,) = control_client.commands()
    assert command.device_id == "dev-leg"
    assert command.intensity == 20


def test_stop_is_idempotent():
    session = ShockOscSession(make_config(), LoopbackTransport(), RecordingControlClient())
    session.stop()
    session.start()
    session.stop()
    session.stop()
    session.tasks.shutdown()
    assert not session.running


def test_failing_backend_is_logged_and_session_carries_on():
    class ExplodingClient:
        def control(self, commands):
            raise ConnectionError("backend down")

    config = make_config({"cooldown_time": 0, "random_duration": False, "fixed_duration": 0})
    rig = loopback_rig(config)
    rig.session.dispatcher._client = ExplodingClient()

    rig.param("Leg_IShock", True)
    rig.param("Arm_IShock", True)

    assert [label for label, _exc in rig.tasks.failures] == [
        "control Shock group-leg",
        "control Shock group-arm",
    ]
    assert rig.group("Arm").last_executed == rig.clock.now


def test_control_group_with_unknown_id_sends_nothing():
    rig = loopback_rig(make_config())
    assert rig.session.dispatcher.control_group("no-such-group", 1000, 10, ControlType.VIBRATE) is False
    assert rig.control_client.commands() == []


def test_force_unmute_only_when_muted():
    rig = loopback_rig(make_config({"force_unmute": True}))

    rig.session.dispatcher.force_unmute()
    assert rig.transport.sent() == []

    rig.receive("/avatar/parameters/MuteSelf", True)
    rig.param("Leg_IShock", True)
    voice = [value for address, value in rig.transport.sent() if address == "/input/Voice"]
    assert voice == [False, True, False]


def test_dry_run_client_counts_commands(caplog):
    client = DryRunControlClient()
    with caplog.at_level(logging.INFO, logger="software.shockosc.dispatch"):
        client.control(
            [
                ControlCommand("dev-1", 1000, 10, ControlType.SHOCK),
                ControlCommand("dev-2", 1000, 10, ControlType.SHOCK),
            ]
        )
    assert client.command_count == 2
    assert "[dry-run] Shock device=dev-1 intensity=10 duration=1000ms" in caplog.text


def test_dispatches_and_suppressions_are_audited(tmp_path):
    audit = AuditLogger(tmp_path)
    rig = loopback_rig(make_config(), audit=audit)

    rig.param("Leg_IShock", True)
    rig.param("Leg_IShock", True)

    events = [json.loads(line) for line in audit.log_path.read_text().splitlines()]
    assert [event["action"] for event in events] == ["shock_dispatched", "shock_suppressed"]
    assert events[0]["details"]["group"] == "Leg"
    assert events[1]["status"] == "cooldown"


def test_direct_instant_shock_is_gated_by_cooldown():
    rig = loopback_rig(make_config({"cooldown_time": 5000, "random_duration": False, "fixed_duration": 1000}))
    leg = rig.group("Leg")

    assert rig.session.dispatcher.instant_shock(leg, 1000, 10) is True
    rig.clock.advance(2000)
    assert rig.session.dispatcher.instant_shock(leg, 1000, 40) is False

    assert [command.intensity for command in rig.control_client.commands()] == [10]
    assert leg.last_intensity == 10
