"""Complex-sinusoid correlation shared by tempo and chroma analysis.

For a sequence ``x`` sampled at rate ``R`` and a frequency ``f``::

    real = sum(x[i] * cos(2*pi*f*i/R))
    imag = sum(x[i] * sin(2*pi*f*i/R))
    magnitude = sqrt(real**2 + imag**2)

which is the magnitude of a single DFT coefficient evaluated at an arbitrary
(non-bin-aligned) frequency.
"""

from __future__ import annotations

import numpy as np

# Upper bound on the number of (frequency, sample) phase terms held in memory
# at once by correlation_spectrum.
_MAX_PHASE_TERMS = 4_000_000


def correlation_magnitude(values: np.ndarray, rate: float, frequency: float) -> float:
    """Correlation magnitude of *values* against one complex sinusoid."""
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0:
        return 0.0
    phase = 2.0 * np.pi * frequency * np.arange(x.size) / rate
    real = float(np.dot(x, np.cos(phase)))
    imag = float(np.dot(x, np.sin(phase)))
    return float(np.sqrt(real * real + imag * imag))


def correlation_spectrum(
    values: np.ndarray,
    rate: float,
    frequencies: np.ndarray,
) -> np.ndarray:
    """Correlation magnitudes for many candidate frequencies at once.

    Parameters
    ----------
    values:
        1-D sequence, or 2-D array of equally long sequences (one per row).
    rate:
        Sample rate of *values* (samples per unit time).
    frequencies:
        Candidate frequencies in cycles per unit time.

    Returns
    -------
    np.ndarray
        Shape ``(len(frequencies),)`` for 1-D input, or
        ``(n_rows, len(frequencies))`` for 2-D input.
    """
    x = np.asarray(values, dtype=np.float64)
    freqs = np.asarray(frequencies, dtype=np.float64).ravel()
    single = x.ndim == 1
    if single:
        x = x[np.newaxis, :]

    n = x.shape[-1]
    out = np.zeros((x.shape[0], freqs.size), dtype=np.float64)
    if n == 0 or freqs.size == 0:
        return out[0] if single else out

    idx = np.arange(n, dtype=np.float64)
    chunk = max(1, _MAX_PHASE_TERMS // n)
    for start in range(0, freqs.size, chunk):
        f = freqs[start:start + chunk]
        phase = (2.0 * np.pi / rate) * np.outer(f, idx)
        real = x @ np.cos(phase).T
        imag = x @ np.sin(phase).T
        out[:, start:start + chunk] = np.sqrt(real * real + imag * imag)

    return out[0] if single else out


def pearson(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation; 0.0 when either vector is constant."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    da = a - a.mean()
    db = b - b.mean()
    denom = float(np.sqrt(np.dot(da, da) * np.dot(db, db)))
    if denom == 0.0:
        return 0.0
    return float(np.dot(da, db) / denom)
