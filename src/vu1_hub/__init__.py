"""VU1 Gauge Hub Python Interface"""

from .constants import COLORS, DEFAULT_BAUD
from .controller import VU1Hub, get_hub
from .coordinator import Reply, ReplyKind, TransactionCoordinator
from .exceptions import (
    DeviceNotFoundError,
    MalformedFrameError,
    StatusError,
    TimeoutError,
    TransportError,
    ValidationError,
    VU1Error,
)
from .locator import PortLocator
from .protocol import Command, DataType, GaugeStatus, Message, OpCode
from .registry import Backlight, Device, DiscoveryState, Easing
from .updater import UpdateWorker

__all__ = [
    "Backlight",
    "COLORS",
    "Command",
    "DEFAULT_BAUD",
    "DataType",
    "Device",
    "DeviceNotFoundError",
    "DiscoveryState",
    "Easing",
    "GaugeStatus",
    "MalformedFrameError",
    "Message",
    "OpCode",
    "PortLocator",
    "Reply",
    "ReplyKind",
    "StatusError",
    "TimeoutError",
    "TransactionCoordinator",
    "TransportError",
    "UpdateWorker",
    "ValidationError",
    "VU1Error",
    "VU1Hub",
    "get_hub",
]
__version__ = "0.1.0"
