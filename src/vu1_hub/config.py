"""
Hub configuration — load dial settings from a YAML file and apply them.

Both the console scripts and embedding applications can import this
directly::

    from vu1_hub.config import load_config, apply_config

    config = load_config("config/dials.yaml")
    with config.make_hub() as hub:
        hub.discover_devices()
        report = apply_config(hub, config)
        print(report.summary)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .constants import COLORS, DEFAULT_BAUD, DEFAULT_TIMEOUT, MAX_PERCENT, MAX_UINT32
from .controller import VU1Hub
from .exceptions import ValidationError, VU1Error
from .registry import Backlight, Easing

logger = logging.getLogger(__name__)

AUTO_PORT = "auto"

_EASING_KEYS = ("needle_step", "needle_period", "backlight_step", "backlight_period")

# ---------------------------------------------------------------------------
# Configuration data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DialConfig:
    """Validated settings for a single dial, keyed by its identifier."""

    identifier: str
    name: str = ""
    backlight: Optional[Backlight] = None
    position: Optional[int] = None
    easing: Optional[Easing] = None

    @property
    def label(self) -> str:
        """Human-readable label, e.g. ``CPU (3A003700)``."""
        short = self.identifier[:8]
        return f"{self.name} ({short})" if self.name else short


@dataclass(frozen=True)
class HubConfig:
    """Top-level configuration loaded from a YAML file."""

    port: Optional[str] = None  # None = locate automatically
    baudrate: int = DEFAULT_BAUD
    timeout: float = DEFAULT_TIMEOUT
    provision: bool = False
    dials: list[DialConfig] = field(default_factory=list)

    def make_hub(self) -> VU1Hub:
        """Build an unconnected hub using these connection settings."""
        return VU1Hub(
            self.port,
            baudrate=self.baudrate,
            timeout=self.timeout,
            provision=self.provision,
        )

    def dial(self, identifier: str) -> Optional[DialConfig]:
        for dial in self.dials:
            if dial.identifier == identifier:
                return dial
        return None


# ---------------------------------------------------------------------------
# Config loading & validation
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> HubConfig:
    """Load and validate a hub configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        A validated :class:`HubConfig`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValidationError: If the config is malformed or contains invalid values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    # -- Connection ---------------------------------------------------------
    port = raw.get("port", AUTO_PORT)
    if port is not None and (not isinstance(port, str) or not port):
        raise ValidationError("'port' must be a non-empty string (or 'auto')")
    if port is None or port.lower() == AUTO_PORT:
        port = None

    baudrate = raw.get("baudrate", DEFAULT_BAUD)
    if not isinstance(baudrate, int) or isinstance(baudrate, bool) or baudrate <= 0:
        raise ValidationError(f"'baudrate' must be a positive integer, got {baudrate!r}")

    timeout = raw.get("timeout", DEFAULT_TIMEOUT)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ValidationError(f"'timeout' must be a positive number, got {timeout!r}")

    discovery = raw.get("discovery") or {}
    if not isinstance(discovery, dict):
        raise ValidationError("'discovery' must be a mapping")
    provision = discovery.get("provision", False)
    if not isinstance(provision, bool):
        raise ValidationError(f"'discovery.provision' must be a boolean, got {provision!r}")

    # -- Dials --------------------------------------------------------------
    raw_dials = raw.get("dials") or {}
    if not isinstance(raw_dials, dict):
        raise ValidationError("'dials' must be a mapping of identifier -> settings")

    dials = [_parse_dial(key, data) for key, data in raw_dials.items()]

    return HubConfig(
        port=port,
        baudrate=baudrate,
        timeout=float(timeout),
        provision=provision,
        dials=dials,
    )


def _parse_dial(key: object, data: object) -> DialConfig:
    """Parse and validate a single dial entry from the config."""
    if not isinstance(key, str) or not key:
        raise ValidationError(f"Dial key must be an identifier string, got {key!r}")
    identifier = key.upper()

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Dial {identifier}: settings must be a mapping")

    name = data.get("name", "")
    if not isinstance(name, str):
        raise ValidationError(f"Dial {identifier}: 'name' must be a string")

    if "color" in data and "backlight" in data:
        raise ValidationError(f"Dial {identifier}: give either 'color' or 'backlight', not both")

    backlight = None
    if "color" in data:
        color = data["color"]
        if not isinstance(color, str) or color.lower() not in COLORS:
            raise ValidationError(
                f"Dial {identifier}: 'color' must be one of {sorted(COLORS)}, got {color!r}"
            )
        backlight = Backlight(*COLORS[color.lower()])
    elif "backlight" in data:
        channels = data["backlight"]
        if not isinstance(channels, list) or len(channels) not in (3, 4):
            raise ValidationError(f"Dial {identifier}: 'backlight' must be a list of 3 or 4 values")
        for value in channels:
            _check_range(value, MAX_PERCENT, f"Dial {identifier}: backlight channel")
        backlight = Backlight(*channels)

    position = data.get("position")
    if position is not None:
        _check_range(position, MAX_PERCENT, f"Dial {identifier}: 'position'")

    easing = None
    if "easing" in data:
        raw_easing = data["easing"]
        if not isinstance(raw_easing, dict):
            raise ValidationError(f"Dial {identifier}: 'easing' must be a mapping")
        unknown = set(raw_easing) - set(_EASING_KEYS)
        if unknown:
            raise ValidationError(f"Dial {identifier}: unknown easing keys {sorted(unknown)}")
        defaults = Easing()
        values = {}
        for key_name in _EASING_KEYS:
            value = raw_easing.get(key_name, getattr(defaults, key_name))
            _check_range(value, MAX_UINT32, f"Dial {identifier}: easing '{key_name}'")
            values[key_name] = value
        easing = Easing(**values)

    return DialConfig(
        identifier=identifier,
        name=name,
        backlight=backlight,
        position=position,
        easing=easing,
    )


def _check_range(value: object, maximum: int, label: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not (0 <= value <= maximum):
        raise ValidationError(f"{label} must be an integer 0-{maximum}, got {value!r}")


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


@dataclass
class DialResult:
    """Outcome of applying settings to a single dial."""

    dial_config: DialConfig
    success: bool
    message: str


@dataclass
class ApplyReport:
    """Aggregate outcome of :func:`apply_config`."""

    results: list[DialResult] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def summary(self) -> str:
        passed = sum(1 for r in self.results if r.success)
        total = len(self.results)
        return f"{passed}/{total} dials {'OK' if self.all_ok else 'FAILED'}"


def apply_dial(hub: VU1Hub, dial: DialConfig) -> DialResult:
    """Apply one dial's easing, backlight and position, in that order.

    Args:
        hub: A connected hub with discovery already run.
        dial: Settings to apply.

    Returns:
        A :class:`DialResult` indicating success or failure.
    """
    if hub.get_device(dial.identifier) is None:
        msg = f"{dial.label} → not found on the bus"
        logger.warning(msg)
        return DialResult(dial, success=False, message=msg)

    failed: list[str] = []
    try:
        if dial.easing is not None:
            e = dial.easing
            if not hub.set_easing(
                dial.identifier, e.needle_step, e.needle_period, e.backlight_step, e.backlight_period
            ):
                failed.append("easing")
        if dial.backlight is not None and not hub.set_backlight(
            dial.identifier, *dial.backlight.as_tuple()
        ):
            failed.append("backlight")
        if dial.position is not None and not hub.set_position(dial.identifier, dial.position):
            failed.append("position")
    except VU1Error as exc:
        failed.append(str(exc))

    if failed:
        msg = f"{dial.label} → FAILED: {', '.join(failed)}"
        logger.error("Applying settings failed: %s", msg)
        return DialResult(dial, success=False, message=msg)

    msg = f"{dial.label} → applied"
    logger.info(msg)
    return DialResult(dial, success=True, message=msg)


def apply_config(hub: VU1Hub, config: HubConfig) -> ApplyReport:
    """Apply every configured dial.

    Args:
        hub: A connected hub with discovery already run.
        config: Full hub configuration.

    Returns:
        An :class:`ApplyReport` with per-dial results.
    """
    report = ApplyReport()
    for dial in config.dials:
        report.results.append(apply_dial(hub, dial))
    return report
