"""
Device registry and discovery state machine.

The registry maps each dial's stable identifier (its hub-assigned UID) to a
:class:`Device` record, and projects the transient bus index back to the
identifier.  Both maps live in one immutable snapshot that is replaced
wholesale.  Readers always see a consistent view and a failed discovery
never leaves a half-built registry behind.

Discovery runs::

    IDLE -> SCANNING -> [PROVISIONING] -> MAPPING_DEVICES
         -> QUERYING_EACH_DEVICE -> READY

with ``FAILED`` reachable from any step.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from . import protocol
from .constants import (
    DEFAULT_BACKLIGHT_PERIOD,
    DEFAULT_BACKLIGHT_STEP,
    DEFAULT_NEEDLE_PERIOD,
    DEFAULT_NEEDLE_STEP,
    QUERY_TIMEOUT,
    RESCAN_TIMEOUT,
)
from .coordinator import TransactionCoordinator
from .exceptions import DeviceNotFoundError, StatusError, VU1Error
from .protocol import Command, Message

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Backlight:
    """RGBW backlight intensities, 0-100 each."""

    red: int = 0
    green: int = 0
    blue: int = 0
    white: int = 0

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.red, self.green, self.blue, self.white)


@dataclass(frozen=True)
class Easing:
    """Firmware-side smoothing of needle and backlight transitions."""

    needle_step: int = DEFAULT_NEEDLE_STEP
    needle_period: int = DEFAULT_NEEDLE_PERIOD
    backlight_step: int = DEFAULT_BACKLIGHT_STEP
    backlight_period: int = DEFAULT_BACKLIGHT_PERIOD

    def __str__(self) -> str:
        return (
            f"needle {self.needle_step}%/{self.needle_period}ms, "
            f"backlight {self.backlight_step}%/{self.backlight_period}ms"
        )


@dataclass(frozen=True)
class Device:
    """One addressable dial, as last seen by the registry."""

    identifier: str
    bus_index: int
    position: int = 0
    backlight: Backlight = field(default_factory=Backlight)
    firmware_version: str = "?"
    hardware_version: str = "?"
    easing: Easing = field(default_factory=Easing)
    last_communication: datetime = field(default_factory=_utcnow)

    @property
    def short_id(self) -> str:
        return self.identifier[:8]

    def __str__(self) -> str:
        return (
            f"Dial {self.short_id} @{self.bus_index}: {self.position}% "
            f"FW {self.firmware_version} HW {self.hardware_version}"
        )


class DiscoveryState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROVISIONING = "provisioning"
    MAPPING_DEVICES = "mapping_devices"
    QUERYING_EACH_DEVICE = "querying_each_device"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class _Snapshot:
    by_id: Mapping[str, Device]
    by_index: Mapping[int, str]


_EMPTY = _Snapshot(MappingProxyType({}), MappingProxyType({}))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class DeviceRegistry:
    """Holds discovered dials and runs discovery through a coordinator.

    Args:
        coordinator: The :class:`~vu1_hub.coordinator.TransactionCoordinator`
            every discovery exchange goes through.
        provision: Issue ``PROVISION_DEVICE`` after the bus rescan.
        rescan_timeout: Timeout for the bus-level commands.
        query_timeout: Timeout for each per-dial query.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        provision: bool = False,
        rescan_timeout: float = RESCAN_TIMEOUT,
        query_timeout: float = QUERY_TIMEOUT,
    ) -> None:
        self._coord = coordinator
        self.provision = provision
        self.rescan_timeout = rescan_timeout
        self.query_timeout = query_timeout
        self._snapshot = _EMPTY
        self._publish_lock = threading.Lock()
        self._discovery_lock = threading.Lock()
        self.state = DiscoveryState.IDLE
        self.last_error: Optional[VU1Error] = None

    # -- Readers ------------------------------------------------------------

    def devices(self) -> list[Device]:
        """Return all registered dials ordered by bus index."""
        snap = self._snapshot
        return [snap.by_id[uid] for _, uid in sorted(snap.by_index.items())]

    def get(self, identifier: str) -> Optional[Device]:
        return self._snapshot.by_id.get(identifier)

    def by_index(self, bus_index: int) -> Optional[Device]:
        snap = self._snapshot
        uid = snap.by_index.get(bus_index)
        return snap.by_id.get(uid) if uid is not None else None

    def resolve(self, identifier: str) -> int:
        """Return the current bus index of *identifier*.

        Raises:
            DeviceNotFoundError: If the identifier is not registered.
        """
        device = self._snapshot.by_id.get(identifier)
        if device is None:
            raise DeviceNotFoundError(f"No dial with identifier {identifier!r}")
        return device.bus_index

    def __len__(self) -> int:
        return len(self._snapshot.by_id)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._snapshot.by_id

    # -- Writers ------------------------------------------------------------

    def update(self, identifier: str, **changes) -> Device:
        """Publish a new snapshot with *identifier*'s record replaced.

        ``last_communication`` is stamped unless given explicitly.

        Raises:
            DeviceNotFoundError: If the identifier vanished (e.g. by a rescan).
        """
        changes.setdefault("last_communication", _utcnow())
        with self._publish_lock:
            snap = self._snapshot
            current = snap.by_id.get(identifier)
            if current is None:
                raise DeviceNotFoundError(f"No dial with identifier {identifier!r}")
            updated = replace(current, **changes)
            by_id = dict(snap.by_id)
            by_id[identifier] = updated
            self._snapshot = _Snapshot(MappingProxyType(by_id), snap.by_index)
        return updated

    def clear(self) -> None:
        with self._publish_lock:
            self._snapshot = _EMPTY
        self.state = DiscoveryState.IDLE

    # -- Discovery ----------------------------------------------------------

    def discover(self) -> bool:
        """Run the full discovery sequence and atomically publish the result.

        Returns:
            ``True`` on success.  On any failure the previous registry is
            left untouched, :attr:`state` is ``FAILED`` and
            :attr:`last_error` holds the cause.
        """
        with self._discovery_lock:
            try:
                found = self._run_discovery()
            except VU1Error as exc:
                logger.warning("Discovery failed in state %s: %s", self.state.value, exc)
                self.last_error = exc
                self.state = DiscoveryState.FAILED
                return False

            with self._publish_lock:
                previous = self._snapshot.by_id
                by_id: dict[str, Device] = {}
                for device in found:
                    old = previous.get(device.identifier)
                    if old is not None:
                        device = replace(device, position=old.position, backlight=old.backlight)
                    by_id[device.identifier] = device
                by_index = {d.bus_index: d.identifier for d in found}
                self._snapshot = _Snapshot(MappingProxyType(by_id), MappingProxyType(by_index))

            dropped = set(previous) - set(by_id)
            if dropped:
                logger.info("Dropped %d dial(s) no longer on the bus: %s", len(dropped), sorted(dropped))
            self.last_error = None
            self.state = DiscoveryState.READY
            logger.info("Discovery complete: %d dial(s)", len(by_id))
            return True

    rescan = discover

    def _run_discovery(self) -> list[Device]:
        self.state = DiscoveryState.SCANNING
        self._require_ok(protocol.rescan_bus(), self.rescan_timeout)

        if self.provision:
            self.state = DiscoveryState.PROVISIONING
            message = self._coord.execute(protocol.provision_device(), self.rescan_timeout)
            if not message.ok:
                # Already-provisioned dials answer with a failure status
                logger.info("Provisioning reported %s", message.status_name)

        self.state = DiscoveryState.MAPPING_DEVICES
        message = self._require_ok(protocol.get_devices_map(), self.rescan_timeout)
        indices = protocol.parse_device_map(message.payload)
        logger.debug("Online bus indices: %s", indices)

        self.state = DiscoveryState.QUERYING_EACH_DEVICE
        found: list[Device] = []
        seen: set[str] = set()
        for index in indices:
            device = self._query_device(index)
            if device.identifier in seen:
                raise VU1Error(f"Identifier {device.identifier} reported at more than one bus index")
            seen.add(device.identifier)
            found.append(device)
        return found

    def _query_device(self, index: int) -> Device:
        uid = protocol.parse_identifier(
            self._require_ok(protocol.get_device_uid(index), self.query_timeout).payload
        )
        firmware = protocol.decode_ascii(
            self._require_ok(protocol.get_firmware_info(index), self.query_timeout).payload
        )
        hardware = protocol.decode_ascii(
            self._require_ok(protocol.get_hardware_info(index), self.query_timeout).payload
        )
        easing = Easing(
            *protocol.parse_easing(
                self._require_ok(protocol.get_easing_config(index), self.query_timeout).payload
            )
        )
        logger.debug("Dial @%d: uid=%s fw=%s hw=%s easing=(%s)", index, uid, firmware, hardware, easing)
        return Device(
            identifier=uid,
            bus_index=index,
            firmware_version=firmware,
            hardware_version=hardware,
            easing=easing,
        )

    def _require_ok(self, command: Command, timeout: float) -> Message:
        message = self._coord.execute(command, timeout)
        if not message.ok:
            raise StatusError(
                f"{protocol.OpCode(command.op).name} failed: {message.status_name}",
                code=message.status or 0,
                status_name=message.status_name,
            )
        return message
