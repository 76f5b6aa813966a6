"""Catalog of instructions understood by the USB switch CLI.

Every entry pairs the literal instruction text sent over the serial link with a
decoder for the raw reply burst. The instruction text is part of the wire
contract and must match byte-for-byte, e.g. ``set_port(7)`` is ``"port 7"``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

R = TypeVar("R")

DELIMITER = b"\n"
STORED_BYTE_SLOTS = 10

_INT_RE = re.compile(r"-?\d+")


class ResponseParseError(ValueError):
    """Raised when a reply burst cannot be decoded into the expected value."""


@dataclass(frozen=True)
class Command(Generic[R]):
    """Instruction text plus the decoder for its reply."""

    instruction: str
    decoder: Callable[[bytes], R]

    def encode(self) -> bytes:
        return self.instruction.encode("ascii") + DELIMITER

    def parse(self, data: bytes) -> R:
        return self.decoder(data)

    def __str__(self) -> str:
        return self.instruction


# ----------------------------------------------------------------------
# Decoders
# ----------------------------------------------------------------------
def decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="ignore").strip()


def decode_int(data: bytes) -> int:
    text = decode_text(data)
    match = _INT_RE.search(text)
    if match is None:
        raise ResponseParseError(f"expected an integer reply, got {text!r}")
    return int(match.group(0))


def decode_unit(data: bytes) -> None:
    return None


# ----------------------------------------------------------------------
# Validation helpers
# ----------------------------------------------------------------------
def _check_port(port: int) -> int:
    if isinstance(port, bool) or not isinstance(port, int) or port < 0:
        raise ValueError(f"port must be a non-negative integer, got {port!r}")
    return port


def _check_slot(index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < STORED_BYTE_SLOTS:
        raise ValueError(f"byte index must be in 0..{STORED_BYTE_SLOTS - 1}, got {index!r}")
    return index


def _check_duration(seconds: float, name: str) -> float:
    if seconds < 0:
        raise ValueError(f"{name} must not be negative, got {seconds!r}")
    return seconds


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------
def version() -> Command[str]:
    """Board and firmware version."""

    return Command("version", decode_text)


def status() -> Command[str]:
    """Human readable status report; used as the connection probe."""

    return Command("status", decode_text)


def port() -> Command[int]:
    """Currently connected port number (0 when nothing is routed)."""

    return Command("port", decode_int)


def set_port(number: int) -> Command[int]:
    """Connect the USB port with the given number."""

    return Command(f"port {_check_port(number)}", decode_int)


def set_default_port(number: int) -> Command[int]:
    """Port the switch selects on power up."""

    return Command(f"defaultport {_check_port(number)}", decode_int)


def set_delay(seconds: int) -> Command[None]:
    """Delay in whole seconds applied before the next port change."""

    if isinstance(seconds, bool) or not isinstance(seconds, int):
        raise ValueError(f"delay must be a whole number of seconds, got {seconds!r}")
    _check_duration(seconds, "delay")
    return Command(f"delay {seconds}", decode_unit)


def set_timeout(seconds: float) -> Command[None]:
    """Next port change disconnects after ``seconds``; sent in milliseconds."""

    _check_duration(seconds, "timeout")
    return Command(f"timeout {int(round(seconds * 1000))}", decode_unit)


def set_superspeed(flag: bool) -> Command[None]:
    return Command(f"superspeed {1 if flag else 0}", decode_unit)


def put_byte(index: int, value: int) -> Command[None]:
    """Store ``value`` in one of the ten scratch byte slots."""

    _check_slot(index)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFF:
        raise ValueError(f"byte value must be in 0..255, got {value!r}")
    return Command(f"put {index} {value}", decode_unit)


def byte(index: int) -> Command[int]:
    """Read back a scratch byte slot."""

    return Command(f"get {_check_slot(index)}", decode_int)


def reset() -> Command[None]:
    """Reset the microcontroller through its GPIO line."""

    return Command("reset", decode_unit)


def source_for_port(number: int) -> Optional[int]:
    """Map a reported port number onto a route source id (0 means none)."""

    return number if number > 0 else None


def port_for_source(source_id: Optional[int]) -> int:
    return 0 if source_id is None else source_id


__all__ = [
    "Command",
    "DELIMITER",
    "ResponseParseError",
    "byte",
    "decode_int",
    "decode_text",
    "decode_unit",
    "port",
    "port_for_source",
    "put_byte",
    "reset",
    "set_default_port",
    "set_delay",
    "set_port",
    "set_superspeed",
    "set_timeout",
    "source_for_port",
    "status",
    "version",
]
