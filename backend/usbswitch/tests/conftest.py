"""Pytest fixtures shared across the usbswitch tests."""
from __future__ import annotations

from typing import Any, Callable, List, Optional

import pytest


@pytest.fixture(autouse=True)
def usbswitch_env_sandbox(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "USBSWITCH_PORT",
        "USBSWITCH_HOST",
        "USBSWITCH_TIMEOUT",
        "USBSWITCH_DEVICE",
        "USBSWITCH_BAUDRATE",
        "USBSWITCH_PARITY",
        "USBSWITCH_DATA_BITS",
    ):
        monkeypatch.delenv(name, raising=False)


class FakeLink:
    """In-memory stand-in for ``SerialLink`` recording every write.

    Tests push reply bursts with :meth:`reply` and link errors with
    :meth:`fail`; both reach the observers synchronously.
    """

    def __init__(self, path: str = "/dev/ttyACM0", **options: Any) -> None:
        self.path = path
        self.options = options
        self.writes: List[bytes] = []
        self.closed = False
        self.opened = False
        self.open_error: Optional[BaseException] = None
        self.on_write: Optional[Callable[["FakeLink", bytes], None]] = None
        self._data_callbacks: List[Callable[[bytes], None]] = []
        self._error_callbacks: List[Callable[[BaseException], None]] = []

    def on_data(self, callback: Callable[[bytes], None]) -> None:
        self._data_callbacks.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_callbacks.append(callback)

    async def open_async(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def write(self, payload: bytes) -> None:
        self.writes.append(payload)
        if self.on_write is not None:
            self.on_write(self, payload)

    def close(self) -> None:
        self.closed = True

    def reply(self, data: bytes) -> None:
        for callback in list(self._data_callbacks):
            callback(data)

    def fail(self, exc: BaseException) -> None:
        for callback in list(self._error_callbacks):
            callback(exc)

    @property
    def instructions(self) -> List[str]:
        return [payload.decode("ascii").rstrip("\n") for payload in self.writes]


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


class LinkFactory:
    """Drop-in replacement for the ``SerialLink`` class recording created links."""

    def __init__(self) -> None:
        self.created: List[FakeLink] = []
        self.configure: Optional[Callable[[FakeLink], None]] = None

    def __call__(self, path: str, **options: Any) -> FakeLink:
        link = FakeLink(path, **options)
        if self.configure is not None:
            self.configure(link)
        self.created.append(link)
        return link


@pytest.fixture
def link_factory() -> LinkFactory:
    return LinkFactory()
