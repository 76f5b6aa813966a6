"""Tests for the pyserial link using the loopback URL handler."""
from __future__ import annotations

import asyncio
import threading
import time

import pytest

from backend.usbswitch import commands, serial_link
from backend.usbswitch.pipeline import CommandPipeline
from backend.usbswitch.serial_link import LinkError, SerialLink


@pytest.mark.asyncio
async def test_loopback_burst_reaches_pipeline() -> None:
    link = SerialLink("loop://", silence_gap=0.01)
    pipeline = CommandPipeline(link, timeout=1.0)
    await link.open_async()
    try:
        # loop:// echoes the instruction back as the reply burst.
        assert await pipeline.submit(commands.status()) == "status"
        assert await pipeline.submit(commands.set_port(3)) == 3
    finally:
        await pipeline.aclose()

    assert not link.is_open


@pytest.mark.asyncio
async def test_bytes_split_by_silence_form_separate_bursts() -> None:
    link = SerialLink("loop://", silence_gap=0.01)
    bursts: list[bytes] = []
    received = asyncio.Event()

    def on_data(data: bytes) -> None:
        bursts.append(data)
        if len(bursts) == 2:
            received.set()

    link.on_data(on_data)
    await link.open_async()
    try:
        link.write(b"first")
        await asyncio.sleep(0.1)
        link.write(b"second")
        await asyncio.wait_for(received.wait(), timeout=2.0)
    finally:
        await link.close_async()

    assert bursts == [b"first", b"second"]


@pytest.mark.asyncio
async def test_open_failure_raises_link_error() -> None:
    link = SerialLink("/dev/does-not-exist-usbswitch")
    with pytest.raises(LinkError):
        await link.open_async()
    assert not link.is_open


@pytest.mark.asyncio
async def test_write_on_closed_link_reports_error() -> None:
    link = SerialLink("loop://")
    errors: list[BaseException] = []
    link.on_error(errors.append)
    await link.open_async()
    await link.close_async()

    link.write(b"status\n")
    await asyncio.sleep(0)

    assert len(errors) == 1
    assert isinstance(errors[0], LinkError)


def test_invalid_link_options_are_rejected() -> None:
    with pytest.raises(ValueError):
        SerialLink("loop://", parity="sometimes")
    with pytest.raises(ValueError):
        SerialLink("loop://", data_bits=9)


def test_list_devices_returns_port_paths(monkeypatch: pytest.MonkeyPatch) -> None:
    class _Port:
        def __init__(self, device: str) -> None:
            self.device = device

    monkeypatch.setattr(
        serial_link.list_ports,
        "comports",
        lambda: [_Port("/dev/ttyACM0"), _Port("/dev/ttyUSB1")],
    )
    assert serial_link.list_devices() == ["/dev/ttyACM0", "/dev/ttyUSB1"]


@pytest.mark.asyncio
async def test_settings_refused_by_driver_raise_link_error() -> None:
    link = SerialLink("loop://", baudrate=2**32)

    with pytest.raises(LinkError, match="could not open"):
        await link.open_async()
    assert not link.is_open


@pytest.mark.asyncio
async def test_stalled_write_does_not_block_the_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    link = SerialLink("loop://", silence_gap=0.01)
    echoed = asyncio.Event()
    link.on_data(lambda data: echoed.set())
    await link.open_async()
    try:
        port = link._serial
        release = threading.Event()
        original_write = port.write

        def stalled_write(data: bytes) -> int:
            release.wait(timeout=2.0)
            return original_write(data)

        monkeypatch.setattr(port, "write", stalled_write)

        started = time.monotonic()
        link.write(b"status\n")
        assert time.monotonic() - started < 0.1

        await asyncio.sleep(0.05)
        assert not echoed.is_set()
        release.set()
        await asyncio.wait_for(echoed.wait(), timeout=2.0)
    finally:
        await link.close_async()
