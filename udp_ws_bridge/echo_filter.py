"""
Echo Filter - suppresses our own datagrams looping back.

Handles:
- Tracking payloads sent with echo suppression requested
- Existence check used by every client's forwarder
- Periodic sweep that expires tracked payloads after the echo window

Broadcast and loopback sends come back to the bridge socket with a source
address/port that differs from the destination we sent to, so entries are
keyed on the payload bytes only.
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ECHO_WINDOW_MS = 100
SWEEP_INTERVAL_MS = 50


class EchoFilter:
    """
    Store of recently self-sent payloads.

    One instance is shared by every client connection so all of them make
    the same suppression decision for the lifetime of an entry. Entries are
    only ever removed by sweep(), never when checked.
    """

    def __init__(
        self,
        window_ms: int = ECHO_WINDOW_MS,
        sweep_interval_ms: int = SWEEP_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize echo filter.

        Args:
            window_ms: How long a registered payload stays suppressed
            sweep_interval_ms: Period of the background sweep task
            clock: Monotonic time source in seconds
        """
        self.window_ms = window_ms
        self.sweep_interval_ms = sweep_interval_ms
        self._clock = clock

        # payload -> registration time, oldest first
        self._tracked: "OrderedDict[bytes, float]" = OrderedDict()
        self._lock = threading.Lock()

        self._sweep_task: Optional[asyncio.Task] = None

        # Statistics
        self._registered = 0
        # counted once per subscriber check, so one echo seen by N clients counts N
        self._suppress_hits = 0
        self._expired = 0

    def register(self, payload: bytes) -> None:
        """Track a payload that is about to be sent."""
        key = bytes(payload)
        with self._lock:
            self._tracked[key] = self._clock()
            # refreshed entries move to the back so sweep order stays by age
            self._tracked.move_to_end(key)
            self._registered += 1

    def should_suppress(self, payload: bytes) -> bool:
        """Return True if the payload was registered and not yet swept."""
        with self._lock:
            if bytes(payload) in self._tracked:
                self._suppress_hits += 1
                return True
            return False

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Drop every entry that is at least window_ms old.

        Args:
            now: Current clock reading, defaults to the filter's clock

        Returns:
            Number of entries removed
        """
        if now is None:
            now = self._clock()
        window = self.window_ms / 1000.0
        removed = 0

        with self._lock:
            while self._tracked:
                key, registered_at = next(iter(self._tracked.items()))
                if now - registered_at < window:
                    break
                del self._tracked[key]
                removed += 1
            self._expired += removed

        if removed:
            logger.debug(f"Expired {removed} tracked payload(s)")
        return removed

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Echo filter started (window={self.window_ms}ms, "
            f"sweep={self.sweep_interval_ms}ms)"
        )

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        logger.info("Echo filter stopped")

    async def _sweep_loop(self) -> None:
        """Sweep loop running on the event loop."""
        interval = self.sweep_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracked)

    def get_stats(self) -> dict:
        """Get filter statistics."""
        with self._lock:
            return {
                "tracked": len(self._tracked),
                "registered": self._registered,
                "suppress_hits": self._suppress_hits,
                "expired": self._expired,
                "window_ms": self.window_ms,
            }
