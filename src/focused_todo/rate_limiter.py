"""Per-client fixed-window rate limiter with a background sweep thread."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger


@dataclass
class _ClientWindow:
    count: int
    window_start: float
    last_seen: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        sweep_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_seconds = sweep_seconds
        self._clock = clock
        self._clients: dict[str, _ClientWindow] = {}
        self._lock = threading.Lock()
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def allow(self, client_id: str) -> bool:
        """Count one request for the client; False once the window is exhausted."""
        now = self._clock()
        with self._lock:
            window = self._clients.get(client_id)
            if window is None or now - window.window_start >= self.window_seconds:
                self._clients[client_id] = _ClientWindow(count=1, window_start=now, last_seen=now)
                return True
            window.last_seen = now
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def sweep(self) -> int:
        """Forget clients idle for more than two windows; return how many were dropped."""
        cutoff = self._clock() - 2 * self.window_seconds
        with self._lock:
            stale = [key for key, window in self._clients.items() if window.last_seen < cutoff]
            for key in stale:
                del self._clients[key]
        if stale:
            logger.debug("Rate limiter swept idle clients", extra={"dropped": len(stale)})
        return len(stale)

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._clients)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._runner, name="rate-limit-sweep", daemon=True)
        self._thread.start()
        logger.info("Rate limiter sweep started", extra={"interval": self.sweep_seconds})

    def stop(self) -> None:
        self._shutdown.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None

    def _runner(self) -> None:
        while not self._shutdown.wait(self.sweep_seconds):
            try:
                self.sweep()
            except Exception as exc:  # pragma: no cover - keep the sweeper alive
                logger.warning("Rate limiter sweep failed", extra={"error": str(exc)})
