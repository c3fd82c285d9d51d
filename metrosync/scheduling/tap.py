"""Tap tempo."""

from __future__ import annotations

from metrosync.config import settings


class TapTempo:
    """Tempo from the mean interval between recent taps.

    Taps older than ``window`` seconds are forgotten, so a pause longer than
    the window starts a fresh measurement.
    """

    def __init__(self, window: float | None = None) -> None:
        self.window = settings.tap_window_seconds if window is None else window
        self._taps: list[float] = []

    def tap(self, now: float) -> int | None:
        """Register a tap at time *now* (s); return the BPM once two taps exist."""
        self._taps = [t for t in self._taps if now - t < self.window]
        self._taps.append(now)
        if len(self._taps) < 2:
            return None

        intervals = [b - a for a, b in zip(self._taps, self._taps[1:])]
        mean = sum(intervals) / len(intervals)
        if mean <= 0:
            return None
        return round(60.0 / mean)

    def reset(self) -> None:
        self._taps.clear()
