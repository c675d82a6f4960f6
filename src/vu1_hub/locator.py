"""
Port locator: find which serial port hosts the VU1 hub.

Every candidate port is opened and sent one ``RESCAN_BUS`` request.  Any
well-formed response frame counts as a hit; the opcode echo is not
checked.  When nothing answers, the first enumerated candidate is
returned instead of ``None`` and :attr:`PortLocator.used_fallback` is set.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

import serial.tools.list_ports

from .constants import DEFAULT_BAUD, HUB_USB_IDS, PROBE_TIMEOUT
from .exceptions import VU1Error
from .protocol import HEADER_CHARS, REQUEST_TERMINATOR, RESPONSE_MARKER, encode_frame, read_frame, rescan_bus
from .transport import SerialTransport

logger = logging.getLogger(__name__)


def list_candidate_ports() -> List[str]:
    """Enumerate serial ports, hub USB bridges (VID/PID match) first.

    Ports without a VID/PID match keep their enumeration order.
    """
    ports = serial.tools.list_ports.comports()
    logger.debug("Found %d serial port(s)", len(ports))

    preferred = []
    others = []
    for port in ports:
        vid = getattr(port, "vid", None)
        pid = getattr(port, "pid", None)
        if vid is not None and pid is not None and (vid, pid) in HUB_USB_IDS:
            logger.info(
                "USB VID/PID match: %s - %s (VID:0x%04x, PID:0x%04x)",
                port.device,
                port.description,
                vid,
                pid,
            )
            preferred.append(port.device)
        else:
            others.append(port.device)
    return preferred + others


class PortLocator:
    """Probes candidate ports for a hub.

    Args:
        transport_factory: Called with a port name to build a transport.
        lister: Returns candidate port names in preference order.
        probe_timeout: How long to wait for a probe reply on each port.
        baudrate: Baud rate used while probing.
    """

    def __init__(
        self,
        transport_factory: Callable[..., SerialTransport] = SerialTransport,
        lister: Callable[[], List[str]] = list_candidate_ports,
        probe_timeout: float = PROBE_TIMEOUT,
        baudrate: int = DEFAULT_BAUD,
    ) -> None:
        self._factory = transport_factory
        self._lister = lister
        self.probe_timeout = probe_timeout
        self.baudrate = baudrate
        self.used_fallback = False
        self.last_port: Optional[str] = None

    def locate(self) -> Optional[str]:
        """Return the hub's port name, the fallback candidate, or ``None``."""
        candidates = list(self._lister())
        self.used_fallback = False
        self.last_port = None

        if not candidates:
            logger.warning("No serial ports found")
            return None

        for port in candidates:
            if self.probe(port):
                logger.info("Hub validated on %s", port)
                self.last_port = port
                return port

        self.used_fallback = True
        self.last_port = candidates[0]
        logger.warning(
            "No port answered the probe; falling back to first candidate %s (of %s)",
            candidates[0],
            candidates,
        )
        return candidates[0]

    def probe(self, port: str) -> bool:
        """Return ``True`` if *port* answers a rescan with a plausible frame."""
        transport = self._factory(port, baudrate=self.baudrate)
        try:
            transport.open()
        except VU1Error as exc:
            logger.debug("Cannot probe %s: %s", port, exc)
            return False

        try:
            transport.discard_input()
            transport.write_raw(encode_frame(rescan_bus()).encode("ascii") + REQUEST_TERMINATOR)
            frame = read_frame(transport.read_byte, time.monotonic() + self.probe_timeout)
        except VU1Error as exc:
            logger.debug("Probe of %s failed: %s", port, exc)
            return False
        finally:
            transport.close()

        logger.debug("Probe reply on %s: %s", port, frame)
        return frame.startswith(RESPONSE_MARKER) and len(frame) >= HEADER_CHARS
