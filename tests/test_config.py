#!/usr/bin/env python3
"""
Configuration Tests
"""

import pytest

from mysensors_gateway.cli import GatewayRunner, main
from mysensors_gateway.models import GatewayConfig


def test_defaults():
    config = GatewayConfig.from_dict(None)

    assert config.baudrate == 115200
    assert config.auto_assign_id is True
    assert config.message_log_size == 1000
    assert config.reboot_pacing_ms == 10
    assert config.api.enabled is False
    assert config.api.port == 8080


def test_from_yaml_with_missing_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "serial:\n"
        "  port: /dev/ttyACM0\n"
        "gateway:\n"
        "  auto_assign_id: false\n"
        "api:\n"
        "  enabled: true\n"
        "  port: 9000\n"
    )

    config = GatewayConfig.from_yaml(str(path))

    assert config.serial_port == "/dev/ttyACM0"
    assert config.auto_assign_id is False
    assert config.store_messages is True
    assert config.storage_enabled is True
    assert config.api.enabled is True
    assert config.api.port == 9000
    assert config.api.host == "0.0.0.0"
    assert config.log_level == "INFO"


def test_to_dict_round_trip():
    config = GatewayConfig(serial_port="socket://10.0.0.2:5003", reboot_pacing_ms=25)

    assert GatewayConfig.from_dict(config.to_dict()) == config


# =============================================================================
# CLI
# =============================================================================

def test_runner_over_loopback(tmp_path):
    config = GatewayConfig(
        serial_port="loop://",
        serial_timeout=0.05,
        db_path=str(tmp_path / "cli.db"),
    )
    runner = GatewayRunner(config)

    assert runner.initialize()
    assert runner.gateway.is_connected()
    assert runner.storage is not None

    runner.shutdown()
    assert not runner.gateway.is_connected()


def test_runner_without_port(tmp_path):
    runner = GatewayRunner(GatewayConfig(db_path=str(tmp_path / "cli.db")))

    assert runner.run() is False


def test_main_missing_config(monkeypatch, tmp_path):
    monkeypatch.setattr(
        "sys.argv",
        ["mysensors-gateway", "-c", str(tmp_path / "missing.yaml")],
    )

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
