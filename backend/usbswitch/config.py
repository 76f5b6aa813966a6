"""Runtime settings for the USB switch controller."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Optional

from .serial_link import DATA_BITS, DEFAULT_BAUDRATE, DEFAULT_SILENCE_GAP, PARITIES
from .pipeline import DEFAULT_COMMAND_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_PORT = 3001
DEFAULT_DEVICE = "/dev/ttyACM0"
_DISABLED_VALUES = {"", "none", "off", "disabled", "0"}


@dataclass(frozen=True)
class Settings:
    # HTTP port of the control API; ``None`` runs without a control surface.
    listen_port: Optional[int] = DEFAULT_LISTEN_PORT
    listen_host: str = "0.0.0.0"
    # Upper bound in seconds for a control request while the device is unreachable.
    timeout: float = 10.0
    device: str = DEFAULT_DEVICE
    baudrate: int = DEFAULT_BAUDRATE
    parity: str = "none"
    data_bits: int = 8
    retry_delay: float = 2.0
    teardown_delay: float = 2.0
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    silence_gap: float = DEFAULT_SILENCE_GAP

    def __post_init__(self) -> None:
        if self.listen_port is not None and not 0 < self.listen_port < 65536:
            raise ValueError(f"listen_port must be in 1..65535, got {self.listen_port}")
        if self.parity not in PARITIES:
            allowed = ", ".join(sorted(PARITIES))
            raise ValueError(f"parity must be one of {allowed}, got {self.parity!r}")
        if self.data_bits not in DATA_BITS:
            raise ValueError(f"data_bits must be one of 5..8, got {self.data_bits}")
        if self.baudrate <= 0:
            raise ValueError(f"baudrate must be positive, got {self.baudrate}")
        if not self.device:
            raise ValueError("device path must not be empty")
        for name in ("timeout", "retry_delay", "teardown_delay", "command_timeout", "silence_gap"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    def describe(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


def _env_value(name: str, parse: Callable[[str], Any], default: Any) -> Any:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return parse(raw.strip())
    except ValueError:
        logger.warning("Invalid %s=%s; using %s", name, raw, default)
        return default


def _parse_listen_port(raw: str) -> Optional[int]:
    if raw.lower() in _DISABLED_VALUES:
        return None
    value = int(raw)
    if not 0 < value < 65536:
        raise ValueError(raw)
    return value


def _parse_parity(raw: str) -> str:
    value = raw.lower()
    if value not in PARITIES:
        raise ValueError(raw)
    return value


def _parse_data_bits(raw: str) -> int:
    value = int(raw)
    if value not in DATA_BITS:
        raise ValueError(raw)
    return value


def _parse_positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError(raw)
    return value


def _parse_duration(raw: str) -> float:
    value = float(raw)
    if value < 0:
        raise ValueError(raw)
    return value


def _parse_text(raw: str) -> str:
    if not raw:
        raise ValueError(raw)
    return raw


def load_settings(**overrides: Any) -> Settings:
    """Build settings from ``USBSWITCH_*`` environment variables.

    Keyword overrides win over the environment and overrides set to ``None``
    are ignored. Pass ``listen=False`` to run without the control API.
    """

    defaults = Settings()
    settings = Settings(
        listen_port=_env_value("USBSWITCH_PORT", _parse_listen_port, defaults.listen_port),
        listen_host=_env_value("USBSWITCH_HOST", _parse_text, defaults.listen_host),
        timeout=_env_value("USBSWITCH_TIMEOUT", _parse_duration, defaults.timeout),
        device=_env_value("USBSWITCH_DEVICE", _parse_text, defaults.device),
        baudrate=_env_value("USBSWITCH_BAUDRATE", _parse_positive_int, defaults.baudrate),
        parity=_env_value("USBSWITCH_PARITY", _parse_parity, defaults.parity),
        data_bits=_env_value("USBSWITCH_DATA_BITS", _parse_data_bits, defaults.data_bits),
    )

    listen = overrides.pop("listen", True)
    explicit = {key: value for key, value in overrides.items() if value is not None}
    if not listen:
        explicit["listen_port"] = None
    return replace(settings, **explicit)


__all__ = ["DEFAULT_DEVICE", "DEFAULT_LISTEN_PORT", "Settings", "load_settings"]
