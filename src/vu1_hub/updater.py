"""
Background flusher for queued dial updates.

Monitoring loops call :meth:`UpdateWorker.queue_position` and friends as
often as they like; only the newest request per dial is kept.  A worker
thread flushes pending work through the hub (and therefore through the
transaction coordinator's lock), then sleeps on its stop event: 500 ms
after a busy cycle, backing off by 300 ms per idle cycle up to 2 s.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Tuple

from . import protocol
from .constants import BYTES_PER_IMAGE
from .controller import VU1Hub
from .exceptions import ValidationError, VU1Error

logger = logging.getLogger(__name__)

BUSY_DELAY = 0.5
IDLE_STEP = 0.3
MAX_IDLE_DELAY = 2.0
ERROR_DELAY = 1.0


class UpdateWorker:
    """Coalesces and flushes dial updates on a background thread.

    Args:
        hub: A connected :class:`~vu1_hub.controller.VU1Hub`.
        stop_event: Optional externally owned cancellation signal.
    """

    def __init__(self, hub: VU1Hub, stop_event: Optional[threading.Event] = None) -> None:
        self._hub = hub
        self._stop = stop_event or threading.Event()
        self._lock = threading.Lock()
        self._positions: Dict[str, int] = {}
        self._backlights: Dict[str, Tuple[int, int, int, int]] = {}
        self._images: Dict[str, bytes] = {}
        self._thread: Optional[threading.Thread] = None
        self._idle_cycles = 0

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> UpdateWorker:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # -- Queueing -----------------------------------------------------------

    def queue_position(self, identifier: str, percent: int) -> None:
        protocol.validate_percent(percent)
        with self._lock:
            self._positions[identifier] = percent

    def queue_backlight(
        self, identifier: str, red: int, green: int, blue: int, white: int = 0
    ) -> None:
        for value in (red, green, blue, white):
            protocol.validate_percent(value, "backlight")
        with self._lock:
            self._backlights[identifier] = (red, green, blue, white)

    def queue_image(self, identifier: str, image: bytes) -> None:
        if len(image) != BYTES_PER_IMAGE:
            raise ValidationError(f"Image data must be exactly {BYTES_PER_IMAGE} bytes, got {len(image)}")
        with self._lock:
            self._images[identifier] = bytes(image)

    @property
    def pending(self) -> int:
        """Number of dial updates waiting to be flushed."""
        with self._lock:
            return len(self._positions) + len(self._backlights) + len(self._images)

    # -- Lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the flush thread (no-op if already running)."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="vu1-updates", daemon=True)
        self._thread.start()
        logger.info("Update worker started")

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread to stop and wait up to *timeout* seconds."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Update worker did not stop within %.1fs", timeout)
            else:
                logger.info("Update worker stopped")
        self._thread = None

    # -- Work ---------------------------------------------------------------

    def flush(self) -> int:
        """Send every pending update once; return how many were attempted.

        Failed updates are logged and dropped.
        """
        with self._lock:
            positions, self._positions = self._positions, {}
            backlights, self._backlights = self._backlights, {}
            images, self._images = self._images, {}

        for uid, percent in positions.items():
            if not self._hub.set_position(uid, percent):
                logger.warning("Queued position %d%% for %s not applied", percent, uid)
        for uid, rgbw in backlights.items():
            if not self._hub.set_backlight(uid, *rgbw):
                logger.warning("Queued backlight %s for %s not applied", rgbw, uid)
        for uid, image in images.items():
            if not self._hub.set_display_image(uid, image):
                logger.warning("Queued image for %s not applied", uid)
        return len(positions) + len(backlights) + len(images)

    def _next_delay(self, did_work: bool) -> float:
        if did_work:
            self._idle_cycles = 0
            return BUSY_DELAY
        self._idle_cycles += 1
        return min(BUSY_DELAY + self._idle_cycles * IDLE_STEP, MAX_IDLE_DELAY)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                delay = self._next_delay(self.flush() > 0)
            except VU1Error as exc:
                logger.error("Update cycle failed: %s", exc)
                delay = ERROR_DELAY
            self._stop.wait(delay)
