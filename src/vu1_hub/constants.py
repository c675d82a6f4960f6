"""Shared runtime constants for the VU1 gauge hub.

This is the canonical source of truth for protocol limits, per-command
timeouts and controller defaults.  Other modules should import from here
rather than defining their own copies.
"""

# ---------------------------------------------------------------------------
# Serial link
# ---------------------------------------------------------------------------

DEFAULT_BAUD = 115200
DEFAULT_POLL_INTERVAL = 0.05  # seconds; upper bound on one blocking byte read
HUB_USB_IDS = [
    (0x0403, 0x6015),  # FTDI FT231X bridge on the hub board
]

# ---------------------------------------------------------------------------
# Protocol / validation limits
# ---------------------------------------------------------------------------

MAX_DIALS = 100
MAX_PERCENT = 100
MAX_RAW_VALUE = 0xFFFF
MAX_UINT32 = 0xFFFFFFFF
MAX_PAYLOAD_BYTES = 0xFFFF

DISPLAY_WIDTH = 200
DISPLAY_HEIGHT = 144
BYTES_PER_IMAGE = DISPLAY_WIDTH * DISPLAY_HEIGHT // 8  # 3600, 1 bit per pixel
MAX_IMAGE_CHUNK = 1000

# ---------------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT = 2.0
RESCAN_TIMEOUT = 3.0
QUERY_TIMEOUT = 1.0
SET_TIMEOUT = 5.0
PROBE_TIMEOUT = 2.0
DISPLAY_CLEAR_TIMEOUT = 1.5
DISPLAY_CHUNK_TIMEOUT = 2.5
DISPLAY_SHOW_TIMEOUT = 4.0
DISPLAY_CHUNK_PACING = 0.2

# ---------------------------------------------------------------------------
# Dial defaults
# ---------------------------------------------------------------------------

DEFAULT_NEEDLE_STEP = 2  # % per period
DEFAULT_NEEDLE_PERIOD = 50  # ms
DEFAULT_BACKLIGHT_STEP = 5  # % per period
DEFAULT_BACKLIGHT_PERIOD = 100  # ms

# Named backlight colours as (red, green, blue, white), 0-100 each
COLORS = {
    "off": (0, 0, 0, 0),
    "red": (100, 0, 0, 0),
    "green": (0, 100, 0, 0),
    "blue": (0, 0, 100, 0),
    "white": (100, 100, 100, 0),
    "yellow": (100, 100, 0, 0),
    "cyan": (0, 100, 100, 0),
    "magenta": (100, 0, 100, 0),
    "orange": (100, 50, 0, 0),
    "purple": (100, 0, 100, 0),
    "pink": (100, 25, 50, 0),
}
