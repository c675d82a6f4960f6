#!/usr/bin/env python3
"""
VU1 Console — Interactive command shell for a VU1 gauge hub.

Commands:
    connect [PORT]            open PORT, or locate the hub automatically
    init                      discover dials on the bus
    status                    connection and discovery state
    dials                     list discovered dials
    dial N                    details of dial N (number from `dials`)
    set N PERCENT             move dial N's needle
    color N NAME|R G B [W]    set dial N's backlight
    colors                    list named colours
    easing N NS NP BS BP      needle step/period, backlight step/period
    rescan                    re-run discovery
    help                      this list
    exit                      disconnect and quit

Usage:
    python scripts/vu1_console.py
    python scripts/vu1_console.py --port /dev/ttyUSB0 --verbose
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from vu1_hub import COLORS, Device, VU1Error, VU1Hub

# ═══════════════════════════════════════
#  Terminal helpers
# ═══════════════════════════════════════


class C:
    """ANSI color codes (no-op on non-TTY)."""

    if sys.stdout.isatty():
        BOLD = "\033[1m"
        DIM = "\033[2m"
        GREEN = "\033[32m"
        YELLOW = "\033[33m"
        RED = "\033[31m"
        CYAN = "\033[36m"
        RESET = "\033[0m"
    else:
        BOLD = DIM = GREEN = YELLOW = RED = CYAN = RESET = ""


def banner(text: str) -> None:
    print(f"\n{C.BOLD}{'═' * 60}")
    print(f"  {text}")
    print(f"{'═' * 60}{C.RESET}")


def ok(text: str) -> None:
    print(f"  {C.GREEN}✓{C.RESET} {text}")


def warn(text: str) -> None:
    print(f"  {C.YELLOW}⚠{C.RESET} {text}")


def error(text: str) -> None:
    print(f"  {C.RED}✗{C.RESET} {text}")


def prompt(text: str, default: str = "") -> str:
    try:
        val = input(f"{C.CYAN}{text}{C.RESET} ").strip()
    except EOFError:
        return default
    return val if val else default


def parse_ints(args: list[str], count: int) -> list[int] | None:
    """Parse exactly *count* integer arguments, reporting the first bad one."""
    if len(args) != count:
        error(f"Expected {count} value(s), got {len(args)}")
        return None
    try:
        return [int(a) for a in args]
    except ValueError as exc:
        error(f"Invalid number: {exc}")
        return None


# ═══════════════════════════════════════
#  Console
# ═══════════════════════════════════════


class Console:
    """Command dispatcher around one :class:`VU1Hub`."""

    def __init__(self, hub: VU1Hub) -> None:
        self.hub = hub
        self.running = True

    # -- Helpers ------------------------------------------------------------

    def require_connection(self) -> bool:
        if not self.hub.is_connected:
            error("Not connected. Use 'connect' first.")
            return False
        return True

    def pick_dial(self, arg: str) -> Device | None:
        """Resolve a dial by list number (1-based) or identifier prefix."""
        dials = self.hub.list_devices()
        if not dials:
            error("No dials discovered. Use 'init' first.")
            return None
        if arg.isdigit() and 1 <= int(arg) <= len(dials):
            return dials[int(arg) - 1]
        matches = [d for d in dials if d.identifier.startswith(arg.upper())]
        if len(matches) == 1:
            return matches[0]
        error(f"No single dial matches {arg!r} (1-{len(dials)} or an identifier prefix)")
        return None

    # -- Commands -----------------------------------------------------------

    def do_connect(self, args: list[str]) -> None:
        port = args[0] if args else None
        if port is None:
            print(f"  {C.DIM}Probing serial ports...{C.RESET}")
        connected = self.hub.connect(port) if port else self.hub.locate_and_connect()
        if not connected:
            error("Could not connect to a hub.")
            return
        ok(f"Connected to {self.hub.port}")
        if self.hub.used_fallback:
            warn("No port answered the probe; using the first candidate.")

    def do_init(self, args: list[str]) -> None:
        if not self.require_connection():
            return
        if self.hub.discover_devices():
            ok(f"Found {len(self.hub.list_devices())} dial(s)")
            self.do_dials([])
        else:
            error(f"Discovery failed ({self.hub.discovery_state.value}). See log for details.")

    def do_rescan(self, args: list[str]) -> None:
        if not self.require_connection():
            return
        before = {d.identifier for d in self.hub.list_devices()}
        if not self.hub.rescan():
            error("Rescan failed; keeping the previous dial list.")
            return
        after = {d.identifier for d in self.hub.list_devices()}
        ok(f"{len(after)} dial(s): {len(after - before)} new, {len(before - after)} gone")

    def do_status(self, args: list[str]) -> None:
        banner("Hub Status")
        state = f"{C.GREEN}connected{C.RESET}" if self.hub.is_connected else f"{C.DIM}disconnected{C.RESET}"
        print(f"  Port:      {self.hub.port or '-'} ({state})")
        print(f"  Discovery: {self.hub.discovery_state.value}")
        print(f"  Dials:     {len(self.hub.list_devices())}")
        if self.hub.last_reply is not None:
            print(f"  Last:      {self.hub.last_reply}")

    def do_dials(self, args: list[str]) -> None:
        dials = self.hub.list_devices()
        if not dials:
            warn("No dials discovered.")
            return
        for n, dial in enumerate(dials, start=1):
            r, g, b, w = dial.backlight.as_tuple()
            print(
                f"    {C.CYAN}{n:2d}{C.RESET}) {dial.identifier}  @{dial.bus_index:<3d}"
                f" {dial.position:3d}%   RGBW {r:3d} {g:3d} {b:3d} {w:3d}"
            )

    def do_dial(self, args: list[str]) -> None:
        if len(args) != 1:
            error("Usage: dial N")
            return
        dial = self.pick_dial(args[0])
        if dial is None:
            return
        banner(f"Dial {dial.short_id}")
        print(f"  Identifier: {dial.identifier}")
        print(f"  Bus index:  {dial.bus_index}")
        print(f"  Position:   {dial.position}%")
        print(f"  Backlight:  {dial.backlight.as_tuple()}")
        print(f"  Firmware:   {dial.firmware_version}")
        print(f"  Hardware:   {dial.hardware_version}")
        print(f"  Easing:     {dial.easing}")
        print(f"  Last seen:  {dial.last_communication:%Y-%m-%d %H:%M:%S} UTC")

    def do_set(self, args: list[str]) -> None:
        if not self.require_connection():
            return
        if len(args) != 2:
            error("Usage: set N PERCENT")
            return
        dial = self.pick_dial(args[0])
        values = parse_ints(args[1:], 1)
        if dial is None or values is None:
            return
        if self.hub.set_position(dial.identifier, values[0]):
            ok(f"{dial.short_id} → {values[0]}%")
        else:
            error(f"Set failed: {self.hub.last_reply}")

    def do_color(self, args: list[str]) -> None:
        if not self.require_connection():
            return
        if len(args) < 2:
            error("Usage: color N NAME  |  color N R G B [W]")
            return
        dial = self.pick_dial(args[0])
        if dial is None:
            return
        if len(args) == 2:
            done = self.hub.set_backlight_color(dial.identifier, args[1])
        else:
            values = parse_ints(args[1:], len(args) - 1)
            if values is None or len(values) not in (3, 4):
                error("Give 3 or 4 channel values (0-100)")
                return
            done = self.hub.set_backlight(dial.identifier, *values)
        if done:
            ok(f"{dial.short_id} backlight {self.hub.get_device(dial.identifier).backlight.as_tuple()}")
        else:
            error(f"Backlight failed: {self.hub.last_reply}")

    def do_colors(self, args: list[str]) -> None:
        for name, rgbw in COLORS.items():
            print(f"    {name:8s} {rgbw}")

    def do_easing(self, args: list[str]) -> None:
        if not self.require_connection():
            return
        if len(args) != 5:
            error("Usage: easing N NEEDLE_STEP NEEDLE_PERIOD BACKLIGHT_STEP BACKLIGHT_PERIOD")
            return
        dial = self.pick_dial(args[0])
        values = parse_ints(args[1:], 4)
        if dial is None or values is None:
            return
        if self.hub.set_easing(dial.identifier, *values):
            ok(f"{dial.short_id} easing: {self.hub.get_device(dial.identifier).easing}")
        else:
            error(f"Easing failed: {self.hub.last_reply}")

    def do_help(self, args: list[str]) -> None:
        print(__doc__.split("Usage:")[0].rstrip())

    def do_exit(self, args: list[str]) -> None:
        self.running = False

    # -- Dispatch -----------------------------------------------------------

    def run_command(self, line: str) -> None:
        try:
            words = shlex.split(line)
        except ValueError as exc:
            error(f"Cannot parse command: {exc}")
            return
        if not words:
            return
        name, args = words[0].lower(), words[1:]
        if name == "quit":
            name = "exit"
        handler = getattr(self, f"do_{name}", None)
        if handler is None:
            error(f"Unknown command: {name} (try 'help')")
            return
        try:
            handler(args)
        except VU1Error as exc:
            error(f"{type(exc).__name__}: {exc}")


# ═══════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Interactive console for a VU1 gauge hub")
    parser.add_argument(
        "--port",
        default=None,
        help="Serial port (default: locate the hub automatically)",
    )
    parser.add_argument(
        "--no-connect",
        action="store_true",
        help="Start without connecting (use 'connect' later)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    banner("VU1 Hub Console")
    console = Console(VU1Hub(args.port))
    if not args.no_connect:
        console.do_connect([args.port] if args.port else [])
        if console.hub.is_connected:
            console.do_init([])
    print(f"  {C.DIM}Type 'help' for commands.{C.RESET}")

    try:
        while console.running:
            console.run_command(prompt("vu1>", "exit"))
    except KeyboardInterrupt:
        print(f"\n\n  {C.YELLOW}Interrupted!{C.RESET}")
    finally:
        console.hub.disconnect()
        print(f"  {C.DIM}Disconnected.{C.RESET}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
