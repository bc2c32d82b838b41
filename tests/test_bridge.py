import json
import socket
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from software.shockosc import bridge
from software.shockosc.config_validation import ShockOscConfig


class _Backend:
    def __init__(self, config):
        self.config = config

    def control(self, commands):
        pass


def make_backend(config):
    return _Backend(config)


def test_load_backend_calls_factory_with_config():
    config = ShockOscConfig()
    backend = bridge.load_backend(f"{__name__}:make_backend", config)
    assert isinstance(backend, _Backend)
    assert backend.config is config


@pytest.mark.parametrize("spec", ["no_colon", ":factory", "module:"])
def test_load_backend_rejects_malformed_spec(spec):
    with pytest.raises(ValueError):
        bridge.load_backend(spec, ShockOscConfig())


def test_parse_args_overrides():
    args = bridge.parse_args(["--profile", "gentle", "--send-port", "9100", "--dry-run", "--debug"])
    assert args.profile == "gentle"
    assert args.send_port == 9100
    assert args.dry_run and args.debug
    assert args.config == bridge.DEFAULT_CONFIG_PATH


def test_main_exits_on_invalid_config(tmp_path, monkeypatch):
    bad = tmp_path / "bad.yaml"
    bad.write_text("behaviour:\n  hold_time: -5\n")
    monkeypatch.setenv("SHOCKOSC_LOG_DIR", str(tmp_path / "logs"))

    assert bridge.main(["--config", str(bad), "--log-events"]) == 1

    events = [json.loads(line) for line in (tmp_path / "logs" / "ops_events.jsonl").read_text().splitlines()]
    assert events[-1]["action"] == "config_validation"
    assert "'bad.yaml.behaviour.hold_time' must be >= 0" in events[-1]["details"]["errors"]


def test_main_exits_on_missing_config(tmp_path):
    assert bridge.main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_main_exits_on_unloadable_backend():
    config = REPO_ROOT / "config" / "shockosc.yaml"
    assert bridge.main(["--config", str(config), "--backend", "no_such_module_here:factory"]) == 1


def test_main_exits_when_receive_port_is_taken(tmp_path, monkeypatch):
    monkeypatch.setenv("SHOCKOSC_LOG_DIR", str(tmp_path / "logs"))
    config = REPO_ROOT / "config" / "shockosc.yaml"
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
        taken.bind(("127.0.0.1", 0))
        port = taken.getsockname()[1]

        assert bridge.main(["--config", str(config), "--receive-port", str(port), "--log-events"]) == 1

    events = [json.loads(line) for line in (tmp_path / "logs" / "ops_events.jsonl").read_text().splitlines()]
    assert events[-1]["action"] == "session_start"
    assert events[-1]["status"] == "error"
