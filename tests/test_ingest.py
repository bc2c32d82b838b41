import logging
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scripts.check_stack import loopback_rig, make_config
from software.shockosc.groups import TriggerMethod
from software.shockosc.ingest import split_parameter
from software.shockosc.registry import ParamsChange
from software.shockosc.transport import SHOCKOSC_PARAMS


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Leg_IShock", ("Leg", "IShock")),
        ("Leg", ("Leg", "")),
        ("Left_Leg_Stretch", ("Left_Leg", "Stretch")),
        ("_Any_Active", ("_Any", "Active")),
        ("_Config", ("_Config", "")),
    ],
)
def test_split_parameter_uses_last_underscore(name, expected):
    assert split_parameter(name) == expected


def test_group_name_with_underscore_resolves_as_manual_trigger():
    groups = [{"id": "g1", "name": "Left_Leg", "shockers": ["dev-1"]}]
    rig = loopback_rig(make_config(groups=groups))
    ingest = rig.session.ingest

    assert ingest.resolve("Left_Leg") == ("Left_Leg", "")
    assert ingest.resolve("Left_Leg_IShock") == ("Left_Leg", "IShock")
    assert ingest.resolve("Tail_Wag") == ("Tail", None)

    rig.param("Left_Leg", True)
    assert rig.group("Left_Leg").trigger_method is TriggerMethod.MANUAL


def test_unknown_group_logs_a_warning(caplog):
    rig = loopback_rig(make_config())
    with caplog.at_level(logging.WARNING, logger="software.shockosc.ingest"):
        rig.param("Tail_IShock", True)
    assert "Unknown shocker Tail" in caplog.text
    assert rig.control_client.commands() == []


def test_own_feedback_echoes_are_ignored(caplog):
    rig = loopback_rig(make_config())
    with caplog.at_level(logging.WARNING, logger="software.shockosc.ingest"):
        rig.param("_Any_Active", True)
        rig.param("Leg_Cooldown", True)
        rig.param("Leg_CooldownPercentage", 0.5)
    assert caplog.text == ""
    assert rig.control_client.commands() == []


def test_afk_and_mute_flags_follow_avatar_parameters():
    rig = loopback_rig(make_config())

    rig.receive("/avatar/parameters/AFK", True)
    rig.receive("/avatar/parameters/MuteSelf", True)
    assert rig.state.is_afk is True
    assert rig.state.is_muted is True

    rig.receive("/avatar/parameters/AFK", False)
    rig.receive("/avatar/parameters/MuteSelf", 1)
    assert rig.state.is_afk is False
    # only a real boolean true counts
    assert rig.state.is_muted is False


def test_registry_records_values_and_notifies_on_known_keys():
    rig = loopback_rig(make_config())
    changes = []
    rig.state.registry.subscribe(changes.append)

    rig.receive("/avatar/parameters/VelocityX", 0.2)
    assert changes == []
    rig.receive("/avatar/parameters/VelocityX", 0.3)
    assert changes == [ParamsChange.VALUE]
    assert rig.state.registry.all_params["VelocityX"] == 0.3

    changes.clear()
    rig.param("Leg_Stretch", 0.1)
    rig.param("Leg_Stretch", 0.2)
    assert ParamsChange.STRUCTURAL in changes
    assert rig.state.registry.in_use["Leg_Stretch"] == 0.2


def test_failing_listener_does_not_break_ingest():
    rig = loopback_rig(make_config())

    def broken(_change):
        raise RuntimeError("listener exploded")

    rig.state.registry.subscribe(broken)
    rig.param("Leg_Stretch", 0.1)
    rig.param("Leg_Stretch", 0.6)
    assert rig.group("Leg").last_stretch_value == pytest.approx(0.6)


def test_stretch_is_clamped_and_non_numbers_ignored():
    rig = loopback_rig(make_config())
    leg = rig.group("Leg")

    rig.param("Leg_Stretch", 1.7)
    assert leg.last_stretch_value == 1.0
    rig.param("Leg_Stretch", -0.5)
    assert leg.last_stretch_value == 0.0
    rig.param("Leg_Stretch", 0.25)
    rig.param("Leg_Stretch", True)
    rig.param("Leg_Stretch", "lots")
    assert leg.last_stretch_value == 0.25


def test_avatar_change_resets_groups_and_rebuilds_registries(caplog):
    snapshot = {
        SHOCKOSC_PARAMS + "Leg_IShock": False,
        SHOCKOSC_PARAMS + "Leg_Stretch": 0.0,
        SHOCKOSC_PARAMS + "Tail": False,
        SHOCKOSC_PARAMS + "_Config/_All/Paused": False,
        "/avatar/parameters/AFK": False,
    }
    rig = loopback_rig(make_config(), parameter_source=lambda: snapshot)
    rig.param("Leg_IsGrabbed", True)
    rig.param("Leg_Stretch", 0.7)
    rig.receive("/avatar/parameters/Old", 1)
    changes = []
    rig.state.registry.subscribe(changes.append)

    with caplog.at_level(logging.INFO, logger="software.shockosc.ingest"):
        rig.receive("/avatar/change", "avtr_1234")

    leg = rig.group("Leg")
    assert leg.is_grabbed is False
    assert leg.last_stretch_value == 0.0
    assert rig.state.avatar_id == "avtr_1234"
    registry = rig.state.registry
    assert "Old" not in registry.all_params
    assert registry.all_params["AFK"] is False
    assert set(registry.in_use) == {"Leg_IShock", "Leg_Stretch", "Tail"}
    assert changes == [ParamsChange.STRUCTURAL]
    assert "Unknown shocker on avatar Tail" in caplog.text
    assert "Loaded avatar config with 3 parameters" in caplog.text
    # the in-game menu is re-synced after the swap
    assert rig.transport.last_value(SHOCKOSC_PARAMS + "_Config/_All/Paused") is False


def test_avatar_change_without_snapshot_logs_error(caplog):
    rig = loopback_rig(make_config(), parameter_source=lambda: None)
    rig.param("Leg_Stretch", 0.4)

    with caplog.at_level(logging.ERROR, logger="software.shockosc.ingest"):
        rig.receive("/avatar/change", "avtr_broken")

    assert "Failed to receive avatar parameters for avtr_broken" in caplog.text
    assert rig.state.registry.in_use == {}


def test_handler_errors_are_contained(caplog):
    rig = loopback_rig(make_config())

    def explode(address, args):
        raise RuntimeError("boom")

    rig.session.ingest.handle = explode
    with caplog.at_level(logging.ERROR, logger="software.shockosc.session"):
        rig.param("Leg_IShock", True)
    assert "Error handling message" in caplog.text
