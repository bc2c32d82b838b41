import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scripts.check_stack import loopback_rig, make_config
from software.shockosc.transport import SHOCKOSC_PARAMS


def _rig():
    return loopback_rig(
        make_config(
            {
                "intensity_range": {"min": 20, "max": 60},
                "fixed_duration": 3000,
                "cooldown_time": 5000,
                "hold_time": 250,
            }
        )
    )


def test_paused_toggles_the_kill_switch():
    rig = _rig()
    underscore = rig.session.underscore_config

    rig.param("_Config/_All/Paused", True)
    assert underscore.kill_switch is True
    rig.param("_Config/_All/Paused", False)
    assert underscore.kill_switch is False


def test_sliders_scale_into_config_units():
    rig = _rig()
    behaviour = rig.session.config.behaviour

    rig.param("_Config/_All/Duration", 0.5)
    rig.param("_Config/_All/CooldownTime", 0.25)
    rig.param("_Config/_All/HoldTime", 1.0)

    assert behaviour.fixed_duration == 15000
    assert behaviour.cooldown_time == 25000
    assert behaviour.hold_time == 1000


def test_intensity_sliders_keep_min_below_max():
    rig = _rig()
    intensity_range = rig.session.config.behaviour.intensity_range

    rig.param("_Config/_All/MinIntensity", 0.8)
    assert (intensity_range.min, intensity_range.max) == (80, 80)

    rig.param("_Config/_All/MaxIntensity", 0.1)
    assert (intensity_range.min, intensity_range.max) == (10, 10)

    rig.param("_Config/_All/MaxIntensity", 2.0)
    assert intensity_range.max == 100


@pytest.mark.parametrize(
    "name, value",
    [
        ("_Config/Leg/MaxIntensity", 0.9),
        ("_Config/_All/MaxIntensity", True),
        ("_Config/_All/MaxIntensity", "high"),
        ("_Config/_All/Volume", 0.9),
        ("_Config/MaxIntensity", 0.9),
    ],
)
def test_unsupported_commands_change_nothing(name, value):
    rig = _rig()
    rig.param(name, value)
    behaviour = rig.session.config.behaviour
    assert (behaviour.intensity_range.min, behaviour.intensity_range.max) == (20, 60)
    assert rig.session.underscore_config.kill_switch is False


def test_config_commands_are_not_treated_as_groups():
    rig = _rig()
    rig.param("_Config/_All/Paused", True)
    assert "_Config/_All/Paused" not in rig.state.registry.in_use
    assert rig.control_client.commands() == []


def test_send_update_for_all_announces_current_values():
    rig = _rig()
    rig.param("_Config/_All/Paused", True)

    rig.session.underscore_config.send_update_for_all()

    root = SHOCKOSC_PARAMS + "_Config/_All/"
    assert rig.transport.last_value(root + "Paused") is True
    assert rig.transport.last_value(root + "MinIntensity") == pytest.approx(0.2)
    assert rig.transport.last_value(root + "MaxIntensity") == pytest.approx(0.6)
    assert rig.transport.last_value(root + "Duration") == pytest.approx(0.1)
    assert rig.transport.last_value(root + "CooldownTime") == pytest.approx(0.05)
    assert rig.transport.last_value(root + "HoldTime") == pytest.approx(0.25)
