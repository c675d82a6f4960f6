"""
VU1 Gauge Hub Interface

Clean Python API for driving VU1 analog dials through their USB hub.

Protocol details:
    - Baud: 115200, 8N1, DTR/RTS asserted
    - Request:  ``>CCDDLLLL[payload]`` + CR LF (all hex ASCII)
    - Response: ``<CCDDLLLL[payload]`` (length-delimited, no terminator)
    - Status replies: 16-bit big-endian code, ``0000`` = OK

Dials are addressed by their stable identifier; the transient bus index is
looked up in the registry right before each exchange.  Setters return
``True``/``False`` and only touch the cached device record on success.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional

from . import protocol
from .constants import (
    COLORS,
    DEFAULT_BAUD,
    DEFAULT_TIMEOUT,
    DISPLAY_CHUNK_PACING,
    DISPLAY_CHUNK_TIMEOUT,
    DISPLAY_CLEAR_TIMEOUT,
    DISPLAY_SHOW_TIMEOUT,
    RESCAN_TIMEOUT,
    SET_TIMEOUT,
)
from .coordinator import Reply, TransactionCoordinator
from .exceptions import DeviceNotFoundError, TransportError, ValidationError
from .locator import PortLocator
from .protocol import Command, Message
from .registry import Backlight, Device, DeviceRegistry, DiscoveryState, Easing
from .transport import SerialTransport

logger = logging.getLogger(__name__)


class VU1Hub:
    """Interface for a VU1 gauge hub and its dials.

    Use as a context manager for automatic connection handling::

        with VU1Hub() as hub:          # locates the port
            hub.discover_devices()
            for dial in hub.list_devices():
                hub.set_position(dial.identifier, 50)

    Args:
        port: Serial port, or ``None`` to locate the hub on connect.
        baudrate: Serial baud rate.
        timeout: Default per-command timeout in seconds.
        provision: Send ``PROVISION_DEVICE`` during discovery.  Off by
            default, so freshly attached dials still at the default
            address are not found until this is enabled (or
            :meth:`provision_devices` is called before discovering).
        locator: Port locator used when *port* is ``None``.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: int = DEFAULT_BAUD,
        timeout: float = DEFAULT_TIMEOUT,
        provision: bool = False,
        locator: Optional[PortLocator] = None,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.provision = provision
        self.locator = locator or PortLocator(baudrate=baudrate)
        self.image_pacing = DISPLAY_CHUNK_PACING
        self.used_fallback = False
        self.last_reply: Optional[Reply] = None
        self._tx: Optional[SerialTransport] = None
        self._coord: Optional[TransactionCoordinator] = None
        self._registry: Optional[DeviceRegistry] = None

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> VU1Hub:
        ok = self.connect(self.port) if self.port else self.locate_and_connect()
        if not ok:
            raise TransportError(f"Cannot connect to hub on {self.port or 'any port'}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # -- Connection ---------------------------------------------------------

    def locate_and_connect(self) -> bool:
        """Find the hub's port and open it."""
        port = self.locator.locate()
        if port is None:
            logger.warning("No hub port found")
            return False
        self.used_fallback = self.locator.used_fallback
        return self.connect(port)

    def connect(self, port: Optional[str] = None) -> bool:
        """Open *port* (or the configured port).  Drops any previous connection."""
        port = port or self.port
        if port is None:
            return self.locate_and_connect()
        if self._tx is not None:
            self.disconnect()

        transport = SerialTransport(port, baudrate=self.baudrate)
        try:
            transport.open()
        except TransportError as exc:
            logger.error("Connection to %s failed: %s", port, exc)
            return False

        self.port = port
        self._tx = transport
        self._coord = TransactionCoordinator(transport, default_timeout=self.timeout)
        self._registry = DeviceRegistry(self._coord, provision=self.provision)
        logger.info("Connected to hub on %s", port)
        return True

    def disconnect(self) -> None:
        """Close the connection and forget discovered dials (safe to call twice)."""
        if self._tx is not None:
            self._tx.close()
        self._tx = None
        self._coord = None
        self._registry = None

    @property
    def is_connected(self) -> bool:
        """Return True while the port is open and no transport failure has occurred."""
        return self._coord is not None and self._coord.usable

    @property
    def coordinator(self) -> Optional[TransactionCoordinator]:
        return self._coord

    @property
    def discovery_state(self) -> DiscoveryState:
        return self._registry.state if self._registry is not None else DiscoveryState.IDLE

    # -- Discovery ----------------------------------------------------------

    def discover_devices(self) -> bool:
        """Rescan the bus and rebuild the dial registry."""
        if self._registry is None or not self.is_connected:
            logger.warning("Discovery requested while not connected")
            return False
        return self._registry.discover()

    def rescan(self) -> bool:
        """Re-run discovery; the previous registry survives a failure."""
        return self.discover_devices()

    def list_devices(self) -> list[Device]:
        """Return all discovered dials ordered by bus index."""
        return self._registry.devices() if self._registry is not None else []

    def get_device(self, identifier: str) -> Optional[Device]:
        return self._registry.get(identifier) if self._registry is not None else None

    # -- Dial control -------------------------------------------------------

    def set_position(self, identifier: str, percent: int) -> bool:
        """Move dial *identifier*'s needle to *percent* (0-100)."""
        protocol.validate_percent(percent)
        return self._dial_command(
            identifier,
            lambda index: protocol.set_dial_percent(index, percent),
            position=percent,
        )

    def set_positions(self, values: Mapping[str, int]) -> bool:
        """Set several dials in a single frame from ``{identifier: percent}``."""
        for percent in values.values():
            protocol.validate_percent(percent)
        if self._registry is None:
            return False
        try:
            pairs = [(self._registry.resolve(uid), pct) for uid, pct in values.items()]
        except DeviceNotFoundError as exc:
            logger.warning("%s", exc)
            return False
        if not self._send(protocol.set_dial_percent_multiple(pairs), SET_TIMEOUT):
            return False
        for uid, pct in values.items():
            self._record(uid, position=pct)
        return True

    def set_backlight(
        self, identifier: str, red: int, green: int, blue: int, white: int = 0
    ) -> bool:
        """Set the RGBW backlight of dial *identifier* (each channel 0-100)."""
        for label, value in (("red", red), ("green", green), ("blue", blue), ("white", white)):
            protocol.validate_percent(value, label)
        return self._dial_command(
            identifier,
            lambda index: protocol.set_rgb_backlight(index, red, green, blue, white),
            backlight=Backlight(red, green, blue, white),
        )

    def set_backlight_color(self, identifier: str, name: str) -> bool:
        """Set the backlight to a named colour (see :data:`~vu1_hub.constants.COLORS`)."""
        try:
            rgbw = COLORS[name.lower()]
        except KeyError as exc:
            raise ValidationError(f"Unknown colour {name!r}; expected one of {sorted(COLORS)}") from exc
        return self.set_backlight(identifier, *rgbw)

    def set_easing(
        self,
        identifier: str,
        needle_step: int,
        needle_period: int,
        backlight_step: int,
        backlight_period: int,
    ) -> bool:
        """Configure needle and backlight transition smoothing.

        Issues four commands; stops at the first failure and only updates
        the cached record when all four succeed.
        """
        easing = Easing(needle_step, needle_period, backlight_step, backlight_period)
        for label, value in (
            ("needle_step", needle_step),
            ("needle_period", needle_period),
            ("backlight_step", backlight_step),
            ("backlight_period", backlight_period),
        ):
            protocol.validate_uint32(value, label)

        builders: list[Callable[[int], Command]] = [
            lambda index: protocol.set_dial_easing_step(index, needle_step),
            lambda index: protocol.set_dial_easing_period(index, needle_period),
            lambda index: protocol.set_backlight_easing_step(index, backlight_step),
            lambda index: protocol.set_backlight_easing_period(index, backlight_period),
        ]
        for build in builders:
            if not self._dial_command(identifier, build):
                return False
        self._record(identifier, easing=easing)
        return True

    def set_display_image(self, identifier: str, image: bytes) -> bool:
        """Upload a packed 200x144 1-bit image (3600 bytes) to the dial's e-paper.

        Sequence: clear, cursor to (0, 0), 1000-byte data chunks, show.
        """
        chunks = protocol.chunk_image_data(image)
        steps: list[tuple[Callable[[int], Command], float]] = [
            (lambda index: protocol.display_clear(index, black=False), DISPLAY_CLEAR_TIMEOUT),
            (lambda index: protocol.display_goto_xy(index, 0, 0), DISPLAY_CLEAR_TIMEOUT),
        ]
        for chunk in chunks:
            steps.append(
                (lambda index, chunk=chunk: protocol.display_image_data(index, chunk), DISPLAY_CHUNK_TIMEOUT)
            )

        for n, (build, timeout) in enumerate(steps):
            if not self._dial_command(identifier, build, timeout=timeout):
                logger.warning("Image upload to %s failed at step %d", identifier, n + 1)
                return False
            if n >= 2 and self.image_pacing:
                time.sleep(self.image_pacing)
        return self._dial_command(identifier, protocol.display_show_image, timeout=DISPLAY_SHOW_TIMEOUT)

    # -- Bus-level ----------------------------------------------------------

    def dial_power(self, on: bool) -> bool:
        """Switch power to all dials on or off."""
        return self._send(protocol.dial_power(on), SET_TIMEOUT)

    def provision_devices(self) -> bool:
        """Assign bus addresses to newly attached dials (run :meth:`rescan` after)."""
        return self._send(protocol.provision_device(), RESCAN_TIMEOUT)

    def send_raw(self, command: Command, timeout: Optional[float] = None) -> Message:
        """Send an arbitrary command and return the raw reply.

        Raises:
            TransportError: If not connected or the port fails.
            TimeoutError: If the hub does not answer in time.
            MalformedFrameError: If the reply does not parse.
        """
        if self._coord is None:
            raise TransportError("Not connected — call connect() first.")
        return self._coord.execute(command, timeout)

    # -- Internal -----------------------------------------------------------

    def _send(self, command: Command, timeout: Optional[float] = None) -> bool:
        if self._coord is None:
            logger.warning("Command %s dropped: not connected", command)
            return False
        reply = self._coord.request(command, timeout)
        self.last_reply = reply
        if not reply.ok:
            logger.warning("Command %s failed: %s", command, reply)
        return reply.ok

    def _dial_command(
        self,
        identifier: str,
        build: Callable[[int], Command],
        timeout: float = SET_TIMEOUT,
        **changes,
    ) -> bool:
        if self._registry is None:
            logger.warning("Command for %s dropped: not connected", identifier)
            return False
        try:
            index = self._registry.resolve(identifier)
        except DeviceNotFoundError as exc:
            logger.warning("%s", exc)
            return False
        if not self._send(build(index), timeout):
            return False
        self._record(identifier, **changes)
        return True

    def _record(self, identifier: str, **changes) -> None:
        if self._registry is None:
            return
        try:
            self._registry.update(identifier, **changes)
        except DeviceNotFoundError:
            logger.debug("Dial %s vanished before its record could be updated", identifier)


# ---------------------------------------------------------------------------
# Convenience factory
# ---------------------------------------------------------------------------


def get_hub(port: Optional[str] = None) -> VU1Hub:
    """Return a hub instance (use as a context manager).

    Example::

        with get_hub() as hub:
            hub.discover_devices()
    """
    return VU1Hub(port)
