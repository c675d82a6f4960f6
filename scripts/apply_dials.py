#!/usr/bin/env python3
"""
Apply Dials — Push dial settings from a YAML config to a VU1 hub.

Connects (locating the hub unless the config or --port names one), runs
discovery, then applies each configured dial's easing, backlight and
position.

Usage:
    python scripts/apply_dials.py                            # default config
    python scripts/apply_dials.py --config path/to/dials.yaml
    python scripts/apply_dials.py --port /dev/ttyUSB0 --verbose
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from vu1_hub import VU1Error
from vu1_hub.config import ApplyReport, HubConfig, apply_config, load_config

# ---------------------------------------------------------------------------
# Default config location (relative to this script)
# ---------------------------------------------------------------------------

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "dials.yaml"

# ---------------------------------------------------------------------------
# Terminal helpers
# ---------------------------------------------------------------------------


class C:
    """ANSI color codes (no-op on non-TTY)."""

    if sys.stdout.isatty():
        BOLD = "\033[1m"
        DIM = "\033[2m"
        GREEN = "\033[32m"
        YELLOW = "\033[33m"
        RED = "\033[31m"
        RESET = "\033[0m"
    else:
        BOLD = DIM = GREEN = YELLOW = RED = RESET = ""


def ok(text: str) -> None:
    print(f"  {C.GREEN}✓{C.RESET} {text}")


def fail(text: str) -> None:
    print(f"  {C.RED}✗{C.RESET} {text}")


def warn(text: str) -> None:
    print(f"  {C.YELLOW}⚠{C.RESET} {text}")


def info(text: str) -> None:
    print(f"  {C.DIM}{text}{C.RESET}")


def banner(text: str) -> None:
    print(f"\n{C.BOLD}{'═' * 60}")
    print(f"  {text}")
    print(f"{'═' * 60}{C.RESET}")


# ---------------------------------------------------------------------------
# Report display
# ---------------------------------------------------------------------------


def print_report(report: ApplyReport) -> None:
    """Print a formatted report of per-dial results."""
    banner("Results")
    for r in report.results:
        if r.success:
            ok(r.message)
        else:
            fail(r.message)
    print()
    status = f"{C.GREEN}ALL OK{C.RESET}" if report.all_ok else f"{C.RED}FAILURES DETECTED{C.RESET}"
    print(f"  {report.summary}  —  {status}")


def print_config_summary(config: HubConfig) -> None:
    """Print a summary of the loaded config."""
    print(f"  Port:      {config.port or 'auto'}")
    print(f"  Provision: {'yes' if config.provision else 'no'}")
    print("  Dials:")
    for dial in config.dials:
        parts = []
        if dial.position is not None:
            parts.append(f"{dial.position}%")
        if dial.backlight is not None:
            parts.append(f"RGBW {dial.backlight.as_tuple()}")
        if dial.easing is not None:
            parts.append(f"easing {dial.easing}")
        print(f"    {dial.label:28s} {', '.join(parts) or '(nothing to apply)'}")


# ---------------------------------------------------------------------------
# One-shot run
# ---------------------------------------------------------------------------


def run(config: HubConfig) -> int:
    """Connect, discover and apply. Returns exit code."""
    banner("VU1 Dial Configuration")
    print_config_summary(config)

    print()
    hub = config.make_hub()
    if not hub.connect():
        fail(f"Cannot connect to {config.port or 'any serial port'}")
        return 1
    ok(f"Connected to {hub.port}")
    if hub.used_fallback:
        warn("No port answered the probe; using the first candidate.")

    try:
        if not hub.discover_devices():
            fail(f"Discovery failed ({hub.discovery_state.value}).")
            return 1
        info(f"Discovered {len(hub.list_devices())} dial(s)")

        known = {d.identifier for d in hub.list_devices()}
        for dial in hub.list_devices():
            if config.dial(dial.identifier) is None:
                info(f"{dial.identifier} has no entry in the config; left as is")

        report = apply_config(hub, config)
        print_report(report)
        missing = [d.label for d in config.dials if d.identifier not in known]
        if missing:
            warn(f"Not on the bus: {', '.join(missing)}")
        return 0 if report.all_ok else 1
    finally:
        hub.disconnect()
        info("Disconnected.")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply VU1 dial settings (position, backlight, easing) from a YAML config.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to YAML config file (default: {DEFAULT_CONFIG.name})",
    )
    parser.add_argument(
        "--port",
        default=None,
        help="Serial port; overrides the config's 'port'",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)-7s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except (FileNotFoundError, VU1Error) as exc:
        print(f"{C.RED}✗{C.RESET} Config error: {exc}", file=sys.stderr)
        return 1

    if args.port:
        config = dataclasses.replace(config, port=args.port)

    return run(config)


if __name__ == "__main__":
    sys.exit(main())
