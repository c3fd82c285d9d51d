"""Bar-by-bar chord progression detection."""

from __future__ import annotations

import bisect
import logging
from collections import deque
from types import MappingProxyType

import numpy as np

from metrosync.analysis.chroma import chroma_of
from metrosync.analysis.correlation import pearson
from metrosync.analysis.models import NO_CHORD, PITCH_CLASSES, ChordEvent, SampleBuffer
from metrosync.config import settings

logger = logging.getLogger(__name__)


def _mask(*intervals: int) -> tuple[int, ...]:
    return tuple(1 if i in intervals else 0 for i in range(12))


# Chord type -> (symbol suffix, pitch-class mask rooted at C)
CHORD_TYPES = MappingProxyType({
    "major": ("", _mask(0, 4, 7)),
    "major7": ("maj7", _mask(0, 4, 7, 11)),
    "dominant7": ("7", _mask(0, 4, 7, 10)),
    "sus4": ("sus4", _mask(0, 5, 7)),
    "add9": ("add9", _mask(0, 2, 4, 7)),
    "minor": ("m", _mask(0, 3, 7)),
    "minor7": ("m7", _mask(0, 3, 7, 10)),
    "diminished": ("dim", _mask(0, 3, 6)),
})


def _build_templates() -> tuple[tuple[str, np.ndarray], ...]:
    templates = []
    for root in range(12):
        for suffix, mask in CHORD_TYPES.values():
            template = np.roll(np.array(mask, dtype=np.float64), root)
            template.flags.writeable = False
            templates.append((PITCH_CLASSES[root] + suffix, template))
    return tuple(templates)


CHORD_TEMPLATES = _build_templates()


def match_chord(chroma: np.ndarray | None, min_correlation: float | None = None) -> tuple[str, float]:
    """Best chord symbol for a chroma vector, or N.C. below the cutoff."""
    if min_correlation is None:
        min_correlation = settings.chord_min_correlation
    if chroma is None or not np.any(chroma > 0):
        return NO_CHORD, 0.0

    best_name, best_score = NO_CHORD, -1.0
    for name, template in CHORD_TEMPLATES:
        score = pearson(chroma, template)
        if score > best_score:
            best_name, best_score = name, score

    if best_score < min_correlation:
        return NO_CHORD, best_score
    return best_name, best_score


def detect_chords(
    buffer: SampleBuffer,
    bpm: float | None,
    beats_per_bar: int = 4,
    offset: float = 0.0,
    smoothing_bars: int | None = None,
    min_correlation: float | None = None,
) -> list[ChordEvent]:
    """Detect one chord per bar, reporting only the changes.

    Bars start at *offset* seconds and last ``60 / bpm * beats_per_bar``.
    Each bar's chroma is averaged with the previous bars (up to
    ``smoothing_bars`` in total) before matching.
    """
    if not bpm or bpm <= 0 or beats_per_bar < 1 or len(buffer) == 0:
        return []
    if smoothing_bars is None:
        smoothing_bars = settings.chord_smoothing_bars

    sr = buffer.sample_rate
    bar_seconds = 60.0 / bpm * beats_per_bar
    bar_samples = int(round(bar_seconds * sr))
    start_sample = max(0, int(round(offset * sr)))
    if bar_samples <= 0:
        return []

    history: deque[np.ndarray] = deque(maxlen=max(1, smoothing_bars))
    events: list[ChordEvent] = []
    previous: str | None = None

    bar = 0
    for start in range(start_sample, len(buffer), bar_samples):
        segment = buffer.samples[start:start + bar_samples]
        chroma = chroma_of(segment, sr, pad_short=True)
        history.append(np.zeros(12) if chroma is None else chroma)

        smoothed = np.mean(np.stack(history), axis=0)
        chord, score = match_chord(smoothed, min_correlation)
        if chord != previous:
            events.append(ChordEvent(bar=bar, beat=0, chord=chord, time=start / sr))
            logger.debug("Bar %d: %s (r=%.2f)", bar, chord, score)
            previous = chord
        bar += 1

    logger.info(f"Chord progression: {bar} bars, {len(events)} changes")
    return events


def chord_at(events: list[ChordEvent], bar: int, beat: int = 0) -> str | None:
    """Chord sounding at (bar, beat), expanding run-length compressed events."""
    keys = [(e.bar, e.beat) for e in events]
    idx = bisect.bisect_right(keys, (bar, beat)) - 1
    if idx < 0:
        return None
    return events[idx].chord


def chord_at_time(events: list[ChordEvent], t: float) -> str | None:
    """Chord sounding at time *t* seconds."""
    times = [e.time for e in events]
    idx = bisect.bisect_right(times, t) - 1
    if idx < 0:
        return None
    return events[idx].chord
