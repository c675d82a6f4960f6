"""Shared pytest fixtures for VU1 hub tests."""

from __future__ import annotations

import threading
import time
from unittest.mock import patch

import pytest
import serial

from vu1_hub import VU1Hub
from vu1_hub.coordinator import TransactionCoordinator
from vu1_hub.protocol import Command, DataType, GaugeStatus, OpCode, parse_command
from vu1_hub.registry import DeviceRegistry
from vu1_hub.transport import SerialTransport

FAST_TIMEOUT = 0.3  # seconds; keeps timeout tests quick

CPU_UID = "3A0037001951383432323631"
MEM_UID = "2C0048001951383432323631"


def frame(op: int, data_type: DataType, payload: bytes = b"") -> bytes:
    """Build a ``<CCDDLLLL[payload]`` response frame."""
    return f"<{op:02X}{int(data_type):02X}{len(payload):04X}{payload.hex().upper()}".encode("ascii")


def status_frame(op: int, code: int = GaugeStatus.OK) -> bytes:
    return frame(op, DataType.STATUS_CODE, int(code).to_bytes(2, "big"))


class FakeDial:
    """State the fake hub keeps for one attached dial."""

    def __init__(
        self,
        uid: str,
        firmware: str = "v4.2",
        hardware: str = "rev3",
        easing: tuple[int, int, int, int] = (2, 50, 5, 100),
    ) -> None:
        self.uid = uid
        self.firmware = firmware
        self.hardware = hardware
        self.easing = easing
        self.percent = 0
        self.backlight = (0, 0, 0, 0)
        self.image = bytearray()


class FakeHub:
    """Scripted hub firmware behind :class:`FakeSerial`.

    Answers the commands the package sends with plausible frames.  Tests
    steer it with:

    * :meth:`fail` — answer *op* with a non-zero status,
    * :meth:`silence` — never answer *op* (optionally for one bus index),
    * :meth:`override` — answer *op* with fixed raw bytes.

    Every parsed request is appended to :attr:`commands`.
    """

    def __init__(self) -> None:
        self.dials: dict[int, FakeDial] = {}
        self.commands: list[Command] = []
        self._failures: dict[int, int] = {}
        self._silent: set[tuple[int, int | None]] = set()
        self._overrides: dict[int, bytes] = {}

    # -- Steering -----------------------------------------------------------

    def attach(self, index: int, uid: str, **kwargs) -> FakeDial:
        self.dials[index] = FakeDial(uid, **kwargs)
        return self.dials[index]

    def fail(self, op: int, code: int = GaugeStatus.FAIL) -> None:
        self._failures[op] = code

    def silence(self, op: int, index: int | None = None) -> None:
        self._silent.add((op, index))

    def override(self, op: int, raw: bytes) -> None:
        self._overrides[op] = raw

    def reset_steering(self) -> None:
        self._failures.clear()
        self._silent.clear()
        self._overrides.clear()

    # -- Firmware -----------------------------------------------------------

    def respond(self, cmd: Command) -> bytes | None:
        self.commands.append(cmd)
        op = cmd.op
        index = cmd.payload[0] if cmd.payload else None

        if (op, None) in self._silent or (op, index) in self._silent:
            return None
        if op in self._overrides:
            return self._overrides[op]
        if op in self._failures:
            return status_frame(op, self._failures[op])

        if op == OpCode.GET_DEVICES_MAP:
            flags = bytes(1 if i in self.dials else 0 for i in range(100))
            return frame(op, DataType.MULTIPLE_VALUE, flags)

        dial = self.dials.get(index) if index is not None else None
        if op in (
            OpCode.GET_DEVICE_UID,
            OpCode.GET_FW_INFO,
            OpCode.GET_HW_INFO,
            OpCode.GET_EASING_CONFIG,
        ):
            if dial is None:
                return status_frame(op, GaugeStatus.DEVICE_OFFLINE)
            if op == OpCode.GET_DEVICE_UID:
                payload = bytes.fromhex(dial.uid)
            elif op == OpCode.GET_FW_INFO:
                payload = dial.firmware.encode("ascii")
            elif op == OpCode.GET_HW_INFO:
                payload = dial.hardware.encode("ascii")
            else:
                payload = b"".join(v.to_bytes(4, "big") for v in dial.easing)
            return frame(op, DataType.SINGLE_VALUE, payload)

        if dial is not None:
            if op == OpCode.SET_DIAL_PERC_SINGLE:
                dial.percent = cmd.payload[1]
            elif op == OpCode.SET_RGB_BACKLIGHT:
                dial.backlight = tuple(cmd.payload[1:5])
            elif op == OpCode.DISPLAY_CLEAR:
                dial.image = bytearray()
            elif op == OpCode.DISPLAY_IMG_DATA:
                dial.image += cmd.payload[1:]
        if op == OpCode.SET_DIAL_PERC_MULTIPLE:
            pairs = cmd.payload
            for i in range(0, len(pairs), 2):
                if pairs[i] in self.dials:
                    self.dials[pairs[i]].percent = pairs[i + 1]
        return status_frame(op)


class FakeSerial:
    """Lightweight stand-in for ``serial.Serial``.

    Implements the subset of the pyserial API used by
    :class:`~vu1_hub.transport.SerialTransport`: ``write``, ``read``,
    ``flush``, ``reset_input_buffer``, ``close``, ``is_open`` and the
    ``dtr``/``rts`` lines.

    Each :meth:`write` is parsed as one request frame and handed to
    :attr:`hub`; its reply is queued for byte-wise :meth:`read`.  An empty
    queue makes :meth:`read` return ``b""`` after a short pause, like a
    real port whose read timeout expired.

    :attr:`overlaps` counts writes that arrived while an earlier reply was
    still being read, i.e. interleaved exchanges.
    """

    def __init__(self, hub: FakeHub | None = None) -> None:
        self.hub = hub or FakeHub()
        self.is_open: bool = True
        self.dtr = False
        self.rts = False
        self.written: list[bytes] = []
        self.read_delay = 0.0
        self.overlaps = 0
        self.fail_writes = False
        self._rx = bytearray()
        self._pending = False  # a reply is queued and not yet fully read
        self._lock = threading.Lock()

    # -- Helpers for tests --------------------------------------------------

    def inject(self, data: bytes) -> None:
        """Queue unsolicited bytes, e.g. leftovers of an aborted frame."""
        with self._lock:
            self._rx += data

    @property
    def requests(self) -> list[str]:
        """Written frames as text, terminator stripped."""
        return [w.decode("ascii").rstrip("\r\n") for w in self.written]

    # -- pyserial interface -------------------------------------------------

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise serial.SerialException("device disconnected")
        with self._lock:
            if self._pending:
                self.overlaps += 1
            self.written.append(bytes(data))
        reply = self.hub.respond(parse_command(data))
        if reply is not None:
            with self._lock:
                self._rx += reply
                self._pending = True
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if self.read_delay:
            time.sleep(self.read_delay)
        with self._lock:
            data = bytes(self._rx[:size])
            del self._rx[:size]
            if not self._rx:
                self._pending = False
        if not data:
            time.sleep(0.001)
        return data

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        with self._lock:
            self._rx.clear()

    def close(self) -> None:
        self.is_open = False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_hub() -> FakeHub:
    """Return a fake hub with two dials at bus indices 0 and 1."""
    hub = FakeHub()
    hub.attach(0, CPU_UID)
    hub.attach(1, MEM_UID, firmware="v4.3", hardware="rev4", easing=(1, 20, 10, 200))
    return hub


@pytest.fixture()
def fake_serial(fake_hub: FakeHub) -> FakeSerial:
    """Return a fresh ``FakeSerial`` instance wired to *fake_hub*."""
    return FakeSerial(fake_hub)


@pytest.fixture()
def transport(fake_serial: FakeSerial) -> SerialTransport:
    """Return an open ``SerialTransport`` wired to a fake serial port."""
    with patch("vu1_hub.transport.serial.Serial", return_value=fake_serial):
        tx = SerialTransport("/dev/fake")
        tx.open()
        return tx


@pytest.fixture()
def coordinator(transport: SerialTransport) -> TransactionCoordinator:
    """Return a coordinator with a short default timeout."""
    return TransactionCoordinator(transport, default_timeout=FAST_TIMEOUT)


@pytest.fixture()
def registry(coordinator: TransactionCoordinator) -> DeviceRegistry:
    """Return an empty registry with short discovery timeouts."""
    return DeviceRegistry(coordinator, rescan_timeout=FAST_TIMEOUT, query_timeout=FAST_TIMEOUT)


@pytest.fixture()
def hub(fake_serial: FakeSerial) -> VU1Hub:
    """Return a connected (not yet discovered) ``VU1Hub`` on a fake port."""
    with patch("vu1_hub.transport.serial.Serial", return_value=fake_serial):
        dev = VU1Hub("/dev/fake", timeout=FAST_TIMEOUT)
        assert dev.connect()
    dev.image_pacing = 0
    return dev


@pytest.fixture()
def ready_hub(hub: VU1Hub, fake_serial: FakeSerial) -> VU1Hub:
    """Return a connected hub whose registry holds both fake dials."""
    assert hub.discover_devices()
    fake_serial.written.clear()
    fake_serial.hub.commands.clear()
    return hub
