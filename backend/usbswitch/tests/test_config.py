"""Tests for environment-driven controller settings."""
from __future__ import annotations

import pytest

from backend.usbswitch.config import DEFAULT_DEVICE, DEFAULT_LISTEN_PORT, Settings, load_settings


def test_defaults_without_environment() -> None:
    settings = load_settings()

    assert settings.listen_port == DEFAULT_LISTEN_PORT == 3001
    assert settings.device == DEFAULT_DEVICE == "/dev/ttyACM0"
    assert settings.baudrate == 9600
    assert settings.parity == "none"
    assert settings.data_bits == 8
    assert settings.timeout == 10.0
    assert settings.retry_delay == 2.0
    assert settings.teardown_delay == 2.0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USBSWITCH_PORT", "8080")
    monkeypatch.setenv("USBSWITCH_DEVICE", "/dev/ttyUSB1")
    monkeypatch.setenv("USBSWITCH_BAUDRATE", "115200")
    monkeypatch.setenv("USBSWITCH_PARITY", "Even")
    monkeypatch.setenv("USBSWITCH_DATA_BITS", "7")
    monkeypatch.setenv("USBSWITCH_TIMEOUT", "2.5")

    settings = load_settings()

    assert settings.listen_port == 8080
    assert settings.device == "/dev/ttyUSB1"
    assert settings.baudrate == 115200
    assert settings.parity == "even"
    assert settings.data_bits == 7
    assert settings.timeout == 2.5


@pytest.mark.parametrize("value", ["none", "off", "0", ""])
def test_port_can_disable_control_api(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("USBSWITCH_PORT", value)

    assert load_settings().listen_port is None


@pytest.mark.parametrize(
    ("name", "value", "field", "expected"),
    [
        ("USBSWITCH_PORT", "http", "listen_port", 3001),
        ("USBSWITCH_PORT", "70000", "listen_port", 3001),
        ("USBSWITCH_BAUDRATE", "-9600", "baudrate", 9600),
        ("USBSWITCH_PARITY", "sometimes", "parity", "none"),
        ("USBSWITCH_DATA_BITS", "9", "data_bits", 8),
        ("USBSWITCH_TIMEOUT", "soon", "timeout", 10.0),
    ],
)
def test_invalid_environment_falls_back_with_warning(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
    name: str,
    value: str,
    field: str,
    expected: object,
) -> None:
    monkeypatch.setenv(name, value)

    with caplog.at_level("WARNING"):
        settings = load_settings()

    assert getattr(settings, field) == expected
    assert f"Invalid {name}" in caplog.text


def test_explicit_overrides_win_and_none_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USBSWITCH_DEVICE", "/dev/ttyUSB0")

    settings = load_settings(device=None, baudrate=19200)

    assert settings.device == "/dev/ttyUSB0"
    assert settings.baudrate == 19200


def test_listen_false_disables_control_api(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USBSWITCH_PORT", "4000")

    assert load_settings(listen=False).listen_port is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"listen_port": 0},
        {"parity": "sometimes"},
        {"data_bits": 4},
        {"baudrate": 0},
        {"device": ""},
        {"retry_delay": -1.0},
    ],
)
def test_invalid_explicit_values_raise(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        Settings(**kwargs)


def test_describe_lists_every_field() -> None:
    described = Settings(listen_port=None).describe()

    assert described["listen_port"] is None
    assert described["device"] == "/dev/ttyACM0"
    assert set(described) >= {"timeout", "command_timeout", "silence_gap"}
