from typing import Callable, Dict
import time

from ticketa.bookings.ticket_service import normalize_ticket_code

class ScanDebouncer:
    """
    Suppress repeat decodes of the same code from a continuous camera feed.

    A scanner device decodes the QR code in front of it on every frame, so the
    same ticket arrives many times per second. Each device keeps one debouncer
    and only forwards a code when it has not been seen within ``window_seconds``.
    This only saves round trips; duplicate scans are still rejected by the
    ticket state machine.
    """

    def __init__(self, window_seconds: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_seen: Dict[str, float] = {}

    def should_process(self, code: str) -> bool:
        """Record an attempt for ``code`` and say whether it should be validated"""
        normalized = normalize_ticket_code(code)
        if not normalized:
            return False

        now = self._clock()
        self._prune(now)

        last = self._last_seen.get(normalized)
        if last is not None and now - last < self.window_seconds:
            return False

        self._last_seen[normalized] = now
        return True

    def reset(self):
        self._last_seen.clear()

    def _prune(self, now: float):
        expired = [code for code, seen in self._last_seen.items() if now - seen >= self.window_seconds]
        for code in expired:
            del self._last_seen[code]
