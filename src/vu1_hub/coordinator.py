"""
Transaction coordinator: the single choke point for hub exchanges.

The hub's bus is half-duplex, so every request/response pair runs inside
one mutually-exclusive critical section.  Concurrent callers (GUI thread,
background updater, console) block on the lock; they never interleave on
the wire.  Each exchange:

1. discards stale unread bytes,
2. writes the encoded request frame,
3. reads one response frame bounded by the caller's timeout,
4. decodes it.

Nothing is retried here; callers own retry policy.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .constants import DEFAULT_TIMEOUT
from .exceptions import MalformedFrameError, TimeoutError, TransportError, VU1Error
from .protocol import REQUEST_TERMINATOR, Command, Message, decode_frame, encode_frame, read_frame
from .transport import SerialTransport

logger = logging.getLogger(__name__)


class ReplyKind(Enum):
    """Outcome category of one exchange."""

    OK = "ok"
    STATUS_FAILURE = "status_failure"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    TRANSPORT = "transport"


@dataclass(frozen=True)
class Reply:
    """Result of :meth:`TransactionCoordinator.request`.

    ``kind`` separates "the hub did not answer" (``TIMEOUT``/``MALFORMED``)
    from "the hub answered with a failure" (``STATUS_FAILURE``) without
    relying on exception types.
    """

    kind: ReplyKind
    command: Command
    message: Optional[Message] = None
    error: Optional[VU1Error] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.kind is ReplyKind.OK

    @property
    def status(self) -> Optional[int]:
        return self.message.status if self.message is not None else None

    def __str__(self) -> str:
        if self.message is not None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.kind.value}: {self.error}"


class TransactionCoordinator:
    """Serialises all command/response exchanges over one transport.

    Args:
        transport: An open :class:`~vu1_hub.transport.SerialTransport`.
        default_timeout: Timeout used when a call passes ``None``.
    """

    def __init__(self, transport: SerialTransport, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self._tx = transport
        self.default_timeout = default_timeout
        self._lock = threading.Lock()
        self._broken: Optional[TransportError] = None

    @property
    def usable(self) -> bool:
        """``False`` once a transport failure has been seen, until :meth:`reset`."""
        return self._broken is None and self._tx.is_open

    def reset(self) -> None:
        """Clear the unusable mark after the transport has been re-opened."""
        with self._lock:
            self._broken = None

    # -- Exchanges ----------------------------------------------------------

    def execute(self, command: Command, timeout: Optional[float] = None) -> Message:
        """Send *command* and return the decoded response.

        Status failures are returned, not raised: check :attr:`Message.ok`.

        Raises:
            TransportError: If the port is closed or fails mid-exchange.
            TimeoutError: If no complete frame arrives within *timeout*.
            MalformedFrameError: If the response does not parse.
        """
        timeout = self.default_timeout if timeout is None else timeout
        frame = encode_frame(command)

        with self._lock:
            if self._broken is not None:
                raise TransportError(f"Connection unusable after earlier failure: {self._broken}")
            if not self._tx.is_open:
                raise TransportError("Serial port not open — connect first.")

            started = time.monotonic()
            try:
                self._tx.discard_input()
                logger.debug("TX: %s", frame)
                self._tx.write_raw(frame.encode("ascii") + REQUEST_TERMINATOR)
                raw = read_frame(self._tx.read_byte, started + timeout)
            except TransportError as exc:
                self._broken = exc
                logger.error("Transport failure during %s: %s", frame, exc)
                raise
            except TimeoutError as exc:
                logger.warning("Timeout after %.3fs waiting for reply to %s", exc.elapsed, frame)
                raise
            except MalformedFrameError as exc:
                logger.warning("Malformed header in reply to %s: %s", frame, exc)
                raise

        logger.debug("RX: %s", raw)
        try:
            return decode_frame(raw)
        except MalformedFrameError as exc:
            logger.warning("Malformed reply to %s: %s", frame, exc)
            raise

    def request(self, command: Command, timeout: Optional[float] = None) -> Reply:
        """Run :meth:`execute` and fold the outcome into a :class:`Reply`.

        Never raises for transport, timeout, malformed-frame, or status
        failures; argument errors (``ValidationError``) still propagate.
        """
        started = time.monotonic()
        try:
            message = self.execute(command, timeout)
        except TimeoutError as exc:
            return Reply(ReplyKind.TIMEOUT, command, error=exc, elapsed=exc.elapsed)
        except MalformedFrameError as exc:
            return Reply(ReplyKind.MALFORMED, command, error=exc, elapsed=time.monotonic() - started)
        except TransportError as exc:
            return Reply(ReplyKind.TRANSPORT, command, error=exc, elapsed=time.monotonic() - started)

        elapsed = time.monotonic() - started
        if not message.ok:
            logger.warning("Hub reported %s for %s", message.status_name, encode_frame(command))
            return Reply(ReplyKind.STATUS_FAILURE, command, message=message, elapsed=elapsed)
        return Reply(ReplyKind.OK, command, message=message, elapsed=elapsed)
