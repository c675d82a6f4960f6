"""
Serial transport layer for the VU1 gauge hub.

Owns the physical serial connection: open/close, raw writes, and
deadline-bounded single-byte reads.  Knows nothing about frames or what
commands mean; that is :mod:`protocol`.

Typical usage (via :class:`~vu1_hub.coordinator.TransactionCoordinator`)::

    transport = SerialTransport("/dev/ttyUSB0")
    transport.open()
    transport.write_raw(b">0C010000\\r\\n")
    byte = transport.read_byte(time.monotonic() + 1.0)
    transport.close()
"""

from __future__ import annotations

import logging
import time

import serial

from .constants import DEFAULT_BAUD, DEFAULT_POLL_INTERVAL
from .exceptions import TransportError

logger = logging.getLogger(__name__)


class SerialTransport:
    """Manages the serial connection to a VU1 hub.

    Args:
        port: Serial port path (e.g. ``/dev/ttyUSB0`` or ``COM3``).
        baudrate: Baud rate (default 115200).
        poll_interval: OS-level read timeout in seconds.  A single
            :meth:`read_byte` call never overshoots its deadline by more
            than this.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUD,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.poll_interval = poll_interval
        self._ser: serial.Serial | None = None

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> SerialTransport:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -- Lifecycle ----------------------------------------------------------

    def open(self) -> None:
        """Open the serial port and assert the DTR/RTS handshake lines.

        Raises:
            TransportError: If the port is absent or held by another process.
        """
        logger.info("Opening serial port %s at %d baud", self.port, self.baudrate)
        try:
            self._ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                xonxoff=False,
                timeout=self.poll_interval,
                write_timeout=self.poll_interval * 40,
            )
            # USB-serial adapters on some hubs stay silent until both are set
            self._ser.dtr = True
            self._ser.rts = True
        except (serial.SerialException, OSError, ValueError) as exc:
            self._ser = None
            raise TransportError(f"Cannot open {self.port}: {exc}") from exc

    def close(self) -> None:
        """Close the serial port (safe to call multiple times)."""
        if self._ser and self._ser.is_open:
            self._ser.close()
            logger.info("Serial port %s closed", self.port)
        self._ser = None

    @property
    def is_open(self) -> bool:
        """Return ``True`` if the serial port is currently open."""
        return self._ser is not None and self._ser.is_open

    # -- I/O ----------------------------------------------------------------

    def write_raw(self, data: bytes) -> None:
        """Write *data* and flush it out of the OS buffer.

        Raises:
            TransportError: If the port is closed or the write fails.
        """
        ser = self._require_open()
        try:
            ser.write(data)
            ser.flush()
        except (serial.SerialException, OSError) as exc:
            self._lost(exc)

    def read_byte(self, deadline: float) -> int | None:
        """Return the next byte, or ``None`` once *deadline* has passed.

        Args:
            deadline: Absolute :func:`time.monotonic` instant.

        Raises:
            TransportError: If the port is closed or the read fails.
        """
        ser = self._require_open()
        while time.monotonic() < deadline:
            try:
                data = ser.read(1)
            except (serial.SerialException, OSError) as exc:
                self._lost(exc)
            if data:
                return data[0]
        return None

    def discard_input(self) -> None:
        """Drop any unread bytes left over from an earlier exchange."""
        ser = self._require_open()
        try:
            ser.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            self._lost(exc)

    # -- Internal -----------------------------------------------------------

    def _require_open(self) -> serial.Serial:
        """Return the open serial port or raise."""
        if not self.is_open:
            raise TransportError(f"Serial port {self.port} not open — call open() first.")
        assert self._ser is not None  # for type-checker
        return self._ser

    def _lost(self, exc: Exception) -> None:
        logger.error("Serial port %s failed: %s", self.port, exc)
        self.close()
        raise TransportError(f"I/O error on {self.port}: {exc}") from exc
