"""pyserial-backed link to the USB switch.

The switch speaks an unframed byte protocol: replies carry neither a length nor
a terminator, so a reply ends once the line has been quiet for ``silence_gap``
seconds. A daemon reader thread collects bytes into bursts and hands every
burst, and every link error, to the asyncio loop that opened the link. Writes
go through a writer thread so a stalled port never blocks the loop.
"""
from __future__ import annotations

import asyncio
import logging
import queue
import threading
from typing import Any, Callable, List, Optional

import serial  # type: ignore
from serial.tools import list_ports  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
DEFAULT_SILENCE_GAP = 0.02  # seconds without data before a burst is complete

PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
DATA_BITS = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[BaseException], None]


class LinkError(RuntimeError):
    """Raised or reported when the serial link fails."""


def _close_quietly(ser: Any) -> None:
    try:
        ser.close()
    except (serial.SerialException, OSError) as exc:
        logger.debug("Error while closing %s: %s", getattr(ser, "port", ser), exc)


def list_devices() -> List[str]:
    """Return the paths of every serial port currently enumerated."""

    return [port.device for port in list_ports.comports()]


class SerialLink:
    """Serial connection with silence-delimited reads and error observers."""

    def __init__(
        self,
        path: str,
        *,
        baudrate: int = DEFAULT_BAUDRATE,
        parity: str = "none",
        data_bits: int = 8,
        silence_gap: float = DEFAULT_SILENCE_GAP,
    ) -> None:
        if parity not in PARITIES:
            raise ValueError(f"unsupported parity {parity!r}")
        if data_bits not in DATA_BITS:
            raise ValueError(f"unsupported data bit count {data_bits!r}")
        self._path = path
        self._baudrate = baudrate
        self._parity = parity
        self._data_bits = data_bits
        self._silence_gap = silence_gap
        self._serial: Optional[Any] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reader: Optional[threading.Thread] = None
        self._writer: Optional[threading.Thread] = None
        self._writes: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._stop = threading.Event()
        self._lock = threading.RLock()
        self._data_callbacks: List[DataCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------
    def open(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Open the port and start the reader and writer threads.

        ``loop`` is the event loop that receives bursts and errors; it must be
        passed explicitly when opening from a worker thread.
        """

        with self._lock:
            if self.is_open:
                return
            self._loop = loop or asyncio.get_running_loop()
            open_serial = getattr(serial, "serial_for_url", serial.Serial)
            ser = None
            try:
                ser = open_serial(
                    self._path,
                    baudrate=self._baudrate,
                    parity=PARITIES[self._parity],
                    bytesize=DATA_BITS[self._data_bits],
                    timeout=self._silence_gap,
                    write_timeout=1.0,
                )
                ser.reset_input_buffer()
            except (serial.SerialException, OSError, ValueError) as exc:
                # ValueError: settings the driver refuses, e.g. an unsupported baud rate
                if ser is not None:
                    _close_quietly(ser)
                raise LinkError(f"could not open port {self._path}: {exc}") from exc
            self._serial = ser
            self._writes = queue.Queue()
            self._stop.clear()
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(ser,),
                name=f"serial-reader:{self._path}",
                daemon=True,
            )
            self._writer = threading.Thread(
                target=self._write_loop,
                args=(ser, self._writes),
                name=f"serial-writer:{self._path}",
                daemon=True,
            )
            self._reader.start()
            self._writer.start()
        logger.info("Opened %s at %s baud", self._path, self._baudrate)

    async def open_async(self) -> None:
        await asyncio.to_thread(self.open, asyncio.get_running_loop())

    def close(self) -> None:
        """Stop the worker threads and close the port. Blocks up to a second."""

        with self._lock:
            self._stop.set()
            self._writes.put(None)
            threads = [self._reader, self._writer]
            self._reader = self._writer = None
            ser, self._serial = self._serial, None
        for thread in threads:
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=max(1.0, self._silence_gap * 5))
        if ser is not None and ser.is_open:
            _close_quietly(ser)

    async def close_async(self) -> None:
        await asyncio.to_thread(self.close)

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------
    def write(self, payload: bytes) -> None:
        """Queue ``payload`` for the writer thread; never blocks.

        Failures are reported to the error observers.
        """

        if self._serial is None:
            self._report_error(LinkError(f"port {self._path} is not open"))
            return
        self._writes.put(payload)

    def _write_loop(self, ser: Any, writes: "queue.Queue[Optional[bytes]]") -> None:
        while True:
            payload = writes.get()
            if payload is None or self._stop.is_set():
                return
            try:
                ser.write(payload)
                ser.flush()
            except (serial.SerialException, OSError) as exc:
                if not self._stop.is_set():
                    self._report_error(LinkError(f"write to {self._path} failed: {exc}"))
                return

    def _read_loop(self, ser: Any) -> None:
        burst = bytearray()
        while not self._stop.is_set():
            try:
                chunk = ser.read(max(1, ser.in_waiting))
            except (serial.SerialException, OSError, TypeError) as exc:
                # TypeError: pyserial reading from a descriptor closed underneath it
                if not self._stop.is_set():
                    self._report_error(LinkError(f"read from {self._path} failed: {exc}"))
                return
            if chunk:
                burst.extend(chunk)
                continue
            if burst:
                self._dispatch(self._data_callbacks, bytes(burst))
                burst.clear()

    def _report_error(self, exc: BaseException) -> None:
        logger.warning("Serial link error on %s: %s", self._path, exc)
        self._dispatch(self._error_callbacks, exc)

    def _dispatch(self, callbacks: List[Callable[[Any], None]], value: Any) -> None:
        # Always deferred to the loop, also when called from the loop thread,
        # so observers never run inside a pipeline write.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        for callback in list(callbacks):
            loop.call_soon_threadsafe(callback, value)


__all__ = [
    "DATA_BITS",
    "DEFAULT_BAUDRATE",
    "DEFAULT_SILENCE_GAP",
    "LinkError",
    "PARITIES",
    "SerialLink",
    "list_devices",
]
