"""Key detection (Krumhansl-Schmuckler)."""

import logging

import numpy as np

from metrosync.analysis.chroma import chroma_of
from metrosync.analysis.correlation import pearson
from metrosync.analysis.models import PITCH_CLASSES, KeyResult, SampleBuffer

logger = logging.getLogger(__name__)

# Krumhansl & Kessler probe-tone ratings, tonic first.
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])


def match_key(chroma: np.ndarray) -> KeyResult | None:
    """Best tonic/mode for a 12-bin chroma vector.

    Each profile is rotated to every tonic and compared by Pearson
    correlation. Ties resolve to the lower tonic, major before minor.
    """
    chroma = np.asarray(chroma, dtype=np.float64)
    if chroma.shape != (12,):
        return None

    best: KeyResult | None = None
    for tonic in range(12):
        for mode, profile in (("Major", MAJOR_PROFILE), ("Minor", MINOR_PROFILE)):
            r = pearson(chroma, np.roll(profile, tonic))
            if best is None or r > best.correlation:
                best = KeyResult(tonic=PITCH_CLASSES[tonic], mode=mode, correlation=r)
    return best


def detect_key(buffer: SampleBuffer, frame_size: int | None = None) -> KeyResult | None:
    """Detect the key of a whole track, or None if no frame has energy."""
    chroma = chroma_of(buffer.samples, buffer.sample_rate, frame_size=frame_size)
    if chroma is None:
        logger.warning("Key detection skipped: no voiced chroma frames")
        return None
    result = match_key(chroma)
    if result is not None:
        logger.info("Detected key: %s (r=%.3f)", result.label, result.correlation)
    return result
