"""Tests for the command catalog wire format and decoders."""
from __future__ import annotations

import pytest

from backend.usbswitch import commands
from backend.usbswitch.commands import ResponseParseError


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        (commands.version(), "version"),
        (commands.status(), "status"),
        (commands.port(), "port"),
        (commands.set_port(7), "port 7"),
        (commands.set_default_port(2), "defaultport 2"),
        (commands.set_delay(5), "delay 5"),
        (commands.set_timeout(1.5), "timeout 1500"),
        (commands.set_superspeed(True), "superspeed 1"),
        (commands.set_superspeed(False), "superspeed 0"),
        (commands.put_byte(3, 200), "put 3 200"),
        (commands.byte(9), "get 9"),
        (commands.reset(), "reset"),
    ],
)
def test_instruction_text_is_exact(command: commands.Command, expected: str) -> None:
    assert command.instruction == expected


def test_encode_appends_delimiter() -> None:
    assert commands.set_port(7).encode() == b"port 7\n"


@pytest.mark.parametrize(
    "factory",
    [
        lambda: commands.put_byte(10, 1),
        lambda: commands.put_byte(-1, 1),
        lambda: commands.put_byte(0, 256),
        lambda: commands.byte(10),
        lambda: commands.set_port(-1),
        lambda: commands.set_default_port(-3),
        lambda: commands.set_timeout(-1),
        lambda: commands.set_delay(-1),
        lambda: commands.set_delay(1.5),
        lambda: commands.set_delay(True),
    ],
)
def test_invalid_arguments_are_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory()


def test_integer_decoder_reads_first_number() -> None:
    assert commands.port().parse(b"port: 3\r\n") == 3
    assert commands.byte(0).parse(b"42") == 42


def test_integer_decoder_rejects_text_without_number() -> None:
    with pytest.raises(ResponseParseError):
        commands.port().parse(b"unknown command\r\n")


def test_text_decoder_strips_whitespace() -> None:
    assert commands.version().parse(b"  Model 3141 v2.1\r\n") == "Model 3141 v2.1"


def test_unit_decoder_ignores_payload() -> None:
    assert commands.reset().parse(b"anything") is None


def test_source_port_mapping() -> None:
    assert commands.source_for_port(0) is None
    assert commands.source_for_port(2) == 2
    assert commands.port_for_source(None) == 0
    assert commands.port_for_source(4) == 4


def test_command_renders_as_its_instruction() -> None:
    assert str(commands.put_byte(3, 200)) == "put 3 200"
