# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json

import pytest

from pairlink.capabilities import SimulatedCapabilityProvider
from pairlink.config import Config, DEFAULT_CONFIG, deep_update, load_config
from pairlink.main import create_transport
from pairlink.session import SessionOptions
from pairlink.transport import LoopbackTransport, WebSocketTransport


@pytest.fixture
def config():
    cfg = Config()
    yield cfg
    Config.load(None)


def test_defaults_match_protocol_timings():
    cfg = load_config()
    assert cfg["telemetry"]["frequency_ms"] == 5000
    assert cfg["permissions"]["negotiation_delay_ms"] == 1500
    assert cfg["transport"]["connect_delay_ms"] == 2000
    assert cfg["session"]["buffer_capacity"] == 10
    assert cfg is not load_config()


def test_deep_update_merges_nested_sections():
    cfg = {"telemetry": {"frequency_ms": 5000, "recent_photos": 5}}
    deep_update(cfg, {"telemetry": {"frequency_ms": 1000}})
    assert cfg == {"telemetry": {"frequency_ms": 1000, "recent_photos": 5}}


@pytest.mark.parametrize("name, body", [
    ("pairlink.yaml", "telemetry:\n  frequency_ms: 1000\nsimulation:\n  deny: [camera]\n"),
    ("pairlink.toml", "[telemetry]\nfrequency_ms = 1000\n[simulation]\ndeny = [\"camera\"]\n"),
    ("pairlink.json", json.dumps({"telemetry": {"frequency_ms": 1000}, "simulation": {"deny": ["camera"]}})),
])
def test_config_files_override_defaults(tmp_path, config, name, body):
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")

    config.load(str(path))

    assert config.get("telemetry.frequency_ms") == 1000
    assert config.get("telemetry.recent_photos") == DEFAULT_CONFIG["telemetry"]["recent_photos"]
    assert SimulatedCapabilityProvider.from_config(config).deny == {"camera"}


def test_missing_or_unknown_files_fall_back_to_defaults(tmp_path, config):
    config.load(str(tmp_path / "absent.yaml"))
    assert config.get("relay.port") == 8080

    odd = tmp_path / "pairlink.ini"
    odd.write_text("[telemetry]\nfrequency_ms=1\n", encoding="utf-8")
    config.load(str(odd))
    assert config.get("telemetry.frequency_ms") == 5000


def test_dotted_access(config):
    config["log.level"] = "debug"
    assert config["log.level"] == "debug"
    with pytest.raises(KeyError):
        config.get("telemetry.nope")


def test_session_options_from_config(config):
    config.update({"session": {"buffer_capacity": 3}, "telemetry": {"frequency_ms": 250}})
    options = SessionOptions.from_config(config)
    assert options.buffer_capacity == 3
    assert options.telemetry_frequency_ms == 250
    assert options.negotiation_delay_ms == 1500


@pytest.mark.parametrize("kwargs", [
    {"buffer_capacity": 0},
    {"telemetry_frequency_ms": 0},
    {"negotiation_delay_ms": -1},
    {"response_timeout_ms": 0},
])
def test_session_options_reject_bad_values(kwargs):
    with pytest.raises(ValueError):
        SessionOptions(**kwargs)


def test_create_transport_follows_config(config):
    config.set("transport.connect_delay_ms", 250)
    loopback = create_transport(config)
    assert isinstance(loopback, LoopbackTransport)
    assert loopback.connect_delay_s == 0.25

    relay = create_transport(config, kind="websocket")
    assert isinstance(relay, WebSocketTransport)
    assert relay.relay_url == "ws://127.0.0.1:8080/pair"
