"""First audible onset detection."""

import numpy as np

from metrosync.analysis.models import SampleBuffer
from metrosync.config import settings


def detect_first_onset(buffer: SampleBuffer, threshold_ratio: float | None = None) -> float:
    """Return the time (s) of the first sample above a fraction of the peak.

    The noise floor is ``threshold_ratio`` (default 5%) of the global peak
    absolute amplitude. Silent or empty buffers return 0.
    """
    if threshold_ratio is None:
        threshold_ratio = settings.onset_threshold_ratio
    if len(buffer) == 0 or buffer.sample_rate <= 0:
        return 0.0

    magnitude = np.abs(buffer.samples)
    peak = float(magnitude.max())
    if peak == 0.0:
        return 0.0

    above = np.flatnonzero(magnitude > peak * threshold_ratio)
    if above.size == 0:
        return 0.0
    return float(above[0]) / buffer.sample_rate
