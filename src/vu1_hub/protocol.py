"""
VU1 hub serial protocol: command building, frame encoding/decoding, and
payload parsing.

This module sits between the transport (raw serial I/O) and the
coordinator.  It knows how to:

* validate parameters before they become commands,
* build :class:`Command` objects with the data-shape tag fixed per opcode,
* encode a command into a ``>CCDDLLLL[payload]`` request frame,
* read a ``<CCDDLLLL[payload]`` response frame from a byte source using
  only the header's declared length (no terminator needed),
* decode a frame into a :class:`Message` and parse typed payloads.

Everything inside the package works on raw ``bytes``; hex text exists only
at the :func:`encode_frame` / :func:`decode_frame` / :func:`read_frame`
boundary.

It does **not** own the serial port; see
:class:`~vu1_hub.transport.SerialTransport`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterable, Optional

from .constants import (
    BYTES_PER_IMAGE,
    MAX_DIALS,
    MAX_IMAGE_CHUNK,
    MAX_PAYLOAD_BYTES,
    MAX_PERCENT,
    MAX_RAW_VALUE,
    MAX_UINT32,
)
from .exceptions import MalformedFrameError, TimeoutError, ValidationError

logger = logging.getLogger(__name__)

REQUEST_MARKER = ">"
RESPONSE_MARKER = "<"
HEADER_CHARS = 9  # marker + CC + DD + LLLL
REQUEST_TERMINATOR = b"\r\n"

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DataType(IntEnum):
    """Data-shape tag: the semantic structure of a frame's payload."""

    NONE = 0x01
    SINGLE_VALUE = 0x02
    MULTIPLE_VALUE = 0x03
    KEY_VALUE_PAIR = 0x04
    STATUS_CODE = 0x05


class OpCode(IntEnum):
    """Hub command codes."""

    SET_DIAL_RAW_SINGLE = 0x01
    SET_DIAL_PERC_SINGLE = 0x03
    SET_DIAL_PERC_MULTIPLE = 0x04
    SET_DIAL_CALIBRATE_MAX = 0x05
    SET_DIAL_CALIBRATE_HALF = 0x06
    GET_DEVICES_MAP = 0x07
    PROVISION_DEVICE = 0x08
    RESET_ALL_DEVICES = 0x09
    DIAL_POWER = 0x0A
    GET_DEVICE_UID = 0x0B
    RESCAN_BUS = 0x0C
    DISPLAY_CLEAR = 0x0D
    DISPLAY_GOTO_XY = 0x0E
    DISPLAY_IMG_DATA = 0x0F
    DISPLAY_SHOW_IMG = 0x10
    RX_BUFFER_SIZE = 0x11
    SET_RGB_BACKLIGHT = 0x13
    SET_DIAL_EASING_STEP = 0x14
    SET_DIAL_EASING_PERIOD = 0x15
    SET_BACKLIGHT_EASING_STEP = 0x16
    SET_BACKLIGHT_EASING_PERIOD = 0x17
    GET_EASING_CONFIG = 0x18
    GET_BUILD_INFO = 0x19
    GET_FW_INFO = 0x20
    GET_HW_INFO = 0x21
    GET_PROTOCOL_INFO = 0x22


class GaugeStatus(IntEnum):
    """Named status codes carried in ``STATUS_CODE`` replies."""

    OK = 0x0000
    FAIL = 0x0001
    BUSY = 0x0002
    TIMEOUT = 0x0003
    BAD_DATA = 0x0004
    PROTOCOL_ERROR = 0x0005
    NO_MEMORY = 0x0006
    INVALID_ARGUMENT = 0x0007
    BAD_ADDRESS = 0x0008
    FORBIDDEN = 0x0009
    ALREADY_EXISTS = 0x000B
    UNSUPPORTED = 0x000C
    NOT_IMPLEMENTED = 0x000D
    MALFORMED_PACKAGE = 0x000E
    RECURSIVE_CALL = 0x0010
    DATA_MISMATCH = 0x0011
    DEVICE_OFFLINE = 0x0012
    MODULE_NOT_INIT = 0x0013
    I2C_ERROR = 0x0014
    USART_ERROR = 0x0015
    SPI_ERROR = 0x0016
    BTL_NO_DEVICE = 0xE001
    BTL_INVALID_STATE = 0xE002
    BTL_INVALID_REQUEST = 0xE003


def status_name(code: int) -> str:
    """Return the symbolic name of *code*, or ``UNKNOWN(0x....)``."""
    try:
        return GaugeStatus(code).name
    except ValueError:
        return f"UNKNOWN(0x{code:04X})"


# The data-shape tag is fixed per opcode.  Which tag the firmware expects
# for the set commands has to be checked against a real hub; this table is
# the single place to change it.
OP_DATA_TYPES: dict[OpCode, DataType] = {
    OpCode.SET_DIAL_RAW_SINGLE: DataType.KEY_VALUE_PAIR,
    OpCode.SET_DIAL_PERC_SINGLE: DataType.KEY_VALUE_PAIR,
    OpCode.SET_DIAL_PERC_MULTIPLE: DataType.MULTIPLE_VALUE,
    OpCode.SET_DIAL_CALIBRATE_MAX: DataType.SINGLE_VALUE,
    OpCode.SET_DIAL_CALIBRATE_HALF: DataType.SINGLE_VALUE,
    OpCode.GET_DEVICES_MAP: DataType.NONE,
    OpCode.PROVISION_DEVICE: DataType.NONE,
    OpCode.RESET_ALL_DEVICES: DataType.NONE,
    OpCode.DIAL_POWER: DataType.SINGLE_VALUE,
    OpCode.GET_DEVICE_UID: DataType.SINGLE_VALUE,
    OpCode.RESCAN_BUS: DataType.NONE,
    OpCode.DISPLAY_CLEAR: DataType.SINGLE_VALUE,
    OpCode.DISPLAY_GOTO_XY: DataType.SINGLE_VALUE,
    OpCode.DISPLAY_IMG_DATA: DataType.SINGLE_VALUE,
    OpCode.DISPLAY_SHOW_IMG: DataType.SINGLE_VALUE,
    OpCode.RX_BUFFER_SIZE: DataType.SINGLE_VALUE,
    OpCode.SET_RGB_BACKLIGHT: DataType.MULTIPLE_VALUE,
    OpCode.SET_DIAL_EASING_STEP: DataType.SINGLE_VALUE,
    OpCode.SET_DIAL_EASING_PERIOD: DataType.SINGLE_VALUE,
    OpCode.SET_BACKLIGHT_EASING_STEP: DataType.SINGLE_VALUE,
    OpCode.SET_BACKLIGHT_EASING_PERIOD: DataType.SINGLE_VALUE,
    OpCode.GET_EASING_CONFIG: DataType.SINGLE_VALUE,
    OpCode.GET_BUILD_INFO: DataType.SINGLE_VALUE,
    OpCode.GET_FW_INFO: DataType.SINGLE_VALUE,
    OpCode.GET_HW_INFO: DataType.SINGLE_VALUE,
    OpCode.GET_PROTOCOL_INFO: DataType.SINGLE_VALUE,
}

# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Command:
    """An outbound request: opcode, data-shape tag and payload bytes."""

    op: int
    data_type: DataType
    payload: bytes = b""

    @classmethod
    def for_op(cls, op: OpCode, payload: bytes = b"") -> Command:
        """Build a command using the tag registered for *op*."""
        return cls(op, OP_DATA_TYPES[op], bytes(payload))

    def __str__(self) -> str:
        return encode_frame(self)


@dataclass(frozen=True)
class Message:
    """A decoded response frame."""

    op: int
    data_type: DataType
    length: int
    payload: bytes = b""
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        """``True`` unless this is a status reply carrying a non-zero code."""
        return self.status is None or self.status == GaugeStatus.OK

    @property
    def status_name(self) -> str:
        return status_name(self.status) if self.status is not None else ""

    def __str__(self) -> str:
        text = f"op=0x{self.op:02X} type={self.data_type.name} len={self.length}"
        if self.status is not None:
            text += f" status={self.status_name}"
        return text


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_index(index: int) -> None:
    if not (0 <= index < MAX_DIALS):
        raise ValidationError(f"Bus index must be 0-{MAX_DIALS - 1}, got {index}")


def validate_percent(value: int, label: str = "percent") -> None:
    if not (0 <= value <= MAX_PERCENT):
        raise ValidationError(f"{label} must be 0-{MAX_PERCENT}, got {value}")


def validate_uint32(value: int, label: str) -> None:
    if not (0 <= value <= MAX_UINT32):
        raise ValidationError(f"{label} must be 0-{MAX_UINT32}, got {value}")


def _validate_uint16(value: int, label: str) -> None:
    if not (0 <= value <= MAX_RAW_VALUE):
        raise ValidationError(f"{label} must be 0-{MAX_RAW_VALUE}, got {value}")


# ---------------------------------------------------------------------------
# Encoding / decoding
# ---------------------------------------------------------------------------


def encode_frame(command: Command) -> str:
    """Return the ASCII request frame for *command*.

    Example::

        >>> encode_frame(set_dial_percent(0, 50))
        '>030400020032'
    """
    if not (0 <= command.op <= 0xFF):
        raise ValidationError(f"Opcode must be 0x00-0xFF, got {command.op}")
    if len(command.payload) > MAX_PAYLOAD_BYTES:
        raise ValidationError(
            f"Payload must be at most {MAX_PAYLOAD_BYTES} bytes, got {len(command.payload)}"
        )
    return (
        f"{REQUEST_MARKER}{command.op:02X}{int(command.data_type):02X}"
        f"{len(command.payload):04X}{command.payload.hex().upper()}"
    )


def _parse_hex(text: str, label: str, frame: str) -> int:
    if not text or not set(text) <= _HEX_DIGITS:
        raise MalformedFrameError(f"Non-hex {label} {text!r} in frame {frame!r}")
    return int(text, 16)


def decode_frame(frame: str | bytes, marker: str = RESPONSE_MARKER) -> Message:
    """Parse a response frame into a :class:`Message`.

    Trailing CR/LF is ignored, as are characters beyond the declared
    payload length.  A ``STATUS_CODE`` reply with an empty payload takes
    its status from the four hex characters after the header when they
    are present, and decodes to status ``0`` otherwise.  Pass ``marker=">"`` to parse a request frame.

    Raises:
        MalformedFrameError: If *frame* is not a valid frame.
    """
    if isinstance(frame, (bytes, bytearray)):
        frame = bytes(frame).decode("ascii", errors="replace")
    text = frame.rstrip("\r\n")

    if len(text) < HEADER_CHARS:
        raise MalformedFrameError(f"Frame too short ({len(text)} chars): {text!r}")
    if text[0] != marker:
        raise MalformedFrameError(f"Frame does not start with {marker!r}: {text!r}")

    op = _parse_hex(text[1:3], "opcode", text)
    tag = _parse_hex(text[3:5], "data type", text)
    length = _parse_hex(text[5:9], "length", text)
    try:
        data_type = DataType(tag)
    except ValueError as exc:
        raise MalformedFrameError(f"Unknown data type 0x{tag:02X} in frame {text!r}") from exc

    end = HEADER_CHARS + 2 * length
    if len(text) < end:
        raise MalformedFrameError(
            f"Frame declares {length} payload bytes but carries {(len(text) - HEADER_CHARS) // 2}"
        )
    if len(text) > end:
        logger.debug("Ignoring %d trailing chars after frame %r", len(text) - end, text[:end])

    hex_payload = text[HEADER_CHARS:end]
    if hex_payload and not set(hex_payload) <= _HEX_DIGITS:
        raise MalformedFrameError(f"Non-hex payload in frame {text!r}")
    payload = bytes.fromhex(hex_payload)

    status = None
    if data_type is DataType.STATUS_CODE:
        if payload:
            status = int.from_bytes(payload[:2], "big")
        else:
            # Zero-length acks may still carry the code after the header
            trailer = text[HEADER_CHARS:HEADER_CHARS + 4]
            if len(trailer) == 4 and set(trailer) <= _HEX_DIGITS:
                status = int(trailer, 16)
            else:
                status = GaugeStatus.OK

    return Message(op, data_type, length, payload, None if status is None else int(status))


def parse_command(frame: str | bytes) -> Command:
    """Parse a ``>`` request frame back into a :class:`Command`."""
    message = decode_frame(frame, marker=REQUEST_MARKER)
    return Command(message.op, message.data_type, message.payload)


def read_frame(read_byte: Callable[[float], Optional[int]], deadline: float) -> str:
    """Read one complete response frame using its own header length.

    Bytes before the ``<`` marker are discarded as leftovers of an earlier
    aborted frame.  Once the 9-character header is in, the total length is
    ``9 + 2 * declared_length`` and the frame is returned the moment that
    many characters have arrived.  No terminator is waited for.  A
    ``<`` inside the payload is treated as payload.

    Args:
        read_byte: Callable returning the next byte or ``None`` once the
            deadline has passed (see
            :meth:`~vu1_hub.transport.SerialTransport.read_byte`).
        deadline: Absolute :func:`time.monotonic` instant.

    Raises:
        TimeoutError: If the frame is not complete by *deadline*.
        MalformedFrameError: If the header is not valid hex.
    """
    started = time.monotonic()
    buf = bytearray()
    expected: int | None = None

    while expected is None or len(buf) < expected:
        byte = read_byte(deadline)
        if byte is None:
            elapsed = time.monotonic() - started
            partial = buf.decode("ascii", errors="replace")
            raise TimeoutError(
                f"No complete frame after {elapsed:.3f}s (got {partial!r})",
                elapsed=elapsed,
                timeout=max(deadline - started, 0.0),
            )
        if not buf and byte != ord(RESPONSE_MARKER):
            continue
        buf.append(byte)
        if len(buf) == HEADER_CHARS:
            header = buf.decode("ascii", errors="replace")
            expected = HEADER_CHARS + 2 * _parse_hex(header[5:9], "length", header)

    return buf.decode("ascii", errors="replace")


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------


def _index_u32(op: OpCode, index: int, value: int, label: str) -> Command:
    _validate_index(index)
    validate_uint32(value, label)
    return Command.for_op(op, bytes([index]) + value.to_bytes(4, "big"))


def _index_only(op: OpCode, index: int) -> Command:
    _validate_index(index)
    return Command.for_op(op, bytes([index]))


def rescan_bus() -> Command:
    """Re-enumerate dials on the internal bus."""
    return Command.for_op(OpCode.RESCAN_BUS)


def get_devices_map() -> Command:
    return Command.for_op(OpCode.GET_DEVICES_MAP)


def provision_device() -> Command:
    """Assign bus addresses to dials still sitting at the default address."""
    return Command.for_op(OpCode.PROVISION_DEVICE)


def reset_all_devices() -> Command:
    return Command.for_op(OpCode.RESET_ALL_DEVICES)


def dial_power(on: bool) -> Command:
    return Command.for_op(OpCode.DIAL_POWER, bytes([1 if on else 0]))


def get_device_uid(index: int) -> Command:
    return _index_only(OpCode.GET_DEVICE_UID, index)


def set_dial_percent(index: int, percent: int) -> Command:
    """Move the needle of dial *index* to *percent* of full scale."""
    _validate_index(index)
    validate_percent(percent)
    return Command.for_op(OpCode.SET_DIAL_PERC_SINGLE, bytes([index, percent]))


def set_dial_raw(index: int, value: int) -> Command:
    """Move the needle using a raw 16-bit position."""
    _validate_index(index)
    _validate_uint16(value, "raw value")
    return Command.for_op(OpCode.SET_DIAL_RAW_SINGLE, bytes([index]) + value.to_bytes(2, "big"))


def set_dial_percent_multiple(values: Iterable[tuple[int, int]]) -> Command:
    """Set several dials in one frame from ``(index, percent)`` pairs."""
    payload = bytearray()
    for index, percent in values:
        _validate_index(index)
        validate_percent(percent)
        payload += bytes([index, percent])
    if not payload:
        raise ValidationError("At least one (index, percent) pair is required")
    return Command.for_op(OpCode.SET_DIAL_PERC_MULTIPLE, bytes(payload))


def set_rgb_backlight(index: int, red: int, green: int, blue: int, white: int = 0) -> Command:
    """Set the four backlight channels (0-100 each) of dial *index*."""
    _validate_index(index)
    for label, value in (("red", red), ("green", green), ("blue", blue), ("white", white)):
        validate_percent(value, label)
    return Command.for_op(OpCode.SET_RGB_BACKLIGHT, bytes([index, red, green, blue, white]))


def set_dial_easing_step(index: int, step: int) -> Command:
    return _index_u32(OpCode.SET_DIAL_EASING_STEP, index, step, "needle step")


def set_dial_easing_period(index: int, period_ms: int) -> Command:
    return _index_u32(OpCode.SET_DIAL_EASING_PERIOD, index, period_ms, "needle period")


def set_backlight_easing_step(index: int, step: int) -> Command:
    return _index_u32(OpCode.SET_BACKLIGHT_EASING_STEP, index, step, "backlight step")


def set_backlight_easing_period(index: int, period_ms: int) -> Command:
    return _index_u32(OpCode.SET_BACKLIGHT_EASING_PERIOD, index, period_ms, "backlight period")


def set_dial_calibrate_max(index: int, value: int) -> Command:
    return _index_u32(OpCode.SET_DIAL_CALIBRATE_MAX, index, value, "calibration value")


def set_dial_calibrate_half(index: int, value: int) -> Command:
    return _index_u32(OpCode.SET_DIAL_CALIBRATE_HALF, index, value, "calibration value")


def get_easing_config(index: int) -> Command:
    return _index_only(OpCode.GET_EASING_CONFIG, index)


def get_firmware_info(index: int) -> Command:
    return _index_only(OpCode.GET_FW_INFO, index)


def get_hardware_info(index: int) -> Command:
    return _index_only(OpCode.GET_HW_INFO, index)


def get_build_info(index: int) -> Command:
    return _index_only(OpCode.GET_BUILD_INFO, index)


def get_protocol_info(index: int) -> Command:
    return _index_only(OpCode.GET_PROTOCOL_INFO, index)


def get_rx_buffer_size(index: int) -> Command:
    return _index_only(OpCode.RX_BUFFER_SIZE, index)


def display_clear(index: int, black: bool = False) -> Command:
    _validate_index(index)
    return Command.for_op(OpCode.DISPLAY_CLEAR, bytes([index, 1 if black else 0]))


def display_goto_xy(index: int, x: int, y: int) -> Command:
    _validate_index(index)
    _validate_uint16(x, "x")
    _validate_uint16(y, "y")
    return Command.for_op(
        OpCode.DISPLAY_GOTO_XY, bytes([index]) + x.to_bytes(2, "big") + y.to_bytes(2, "big")
    )


def display_image_data(index: int, chunk: bytes) -> Command:
    """Append one chunk (at most 1000 bytes) to the display buffer."""
    _validate_index(index)
    if not chunk:
        raise ValidationError("Image chunk cannot be empty")
    if len(chunk) > MAX_IMAGE_CHUNK:
        raise ValidationError(f"Image chunk must be <= {MAX_IMAGE_CHUNK} bytes, got {len(chunk)}")
    return Command.for_op(OpCode.DISPLAY_IMG_DATA, bytes([index]) + bytes(chunk))


def display_show_image(index: int) -> Command:
    return _index_only(OpCode.DISPLAY_SHOW_IMG, index)


# ---------------------------------------------------------------------------
# Payload parsers
# ---------------------------------------------------------------------------


def parse_device_map(payload: bytes) -> list[int]:
    """Return the online bus indices from a ``GET_DEVICES_MAP`` payload.

    The map holds one byte per index; ``0x01`` marks an online dial.
    """
    return [i for i, flag in enumerate(payload[:MAX_DIALS]) if flag == 0x01]


def parse_identifier(payload: bytes) -> str:
    """Render a UID payload as the stable upper-case hex identifier."""
    if not payload:
        raise MalformedFrameError("Empty device UID payload")
    return payload.hex().upper()


def parse_easing(payload: bytes) -> tuple[int, int, int, int]:
    """Decode four big-endian uint32 values: needle step/period, backlight step/period."""
    if len(payload) < 16:
        raise MalformedFrameError(f"Easing payload needs 16 bytes, got {len(payload)}")
    return tuple(int.from_bytes(payload[i : i + 4], "big") for i in range(0, 16, 4))  # type: ignore[return-value]


def decode_ascii(payload: bytes) -> str:
    """Decode a version-string payload; falls back to hex for non-ASCII data."""
    try:
        return payload.decode("ascii").rstrip("\x00").strip()
    except UnicodeDecodeError:
        logger.warning("Non-ASCII version payload %s", payload.hex())
        return payload.hex().upper()


def chunk_image_data(image: bytes) -> list[bytes]:
    """Split a packed 200x144 1-bit image into display-sized chunks."""
    if len(image) != BYTES_PER_IMAGE:
        raise ValidationError(f"Image data must be exactly {BYTES_PER_IMAGE} bytes, got {len(image)}")
    return [bytes(image[i : i + MAX_IMAGE_CHUNK]) for i in range(0, len(image), MAX_IMAGE_CHUNK)]
