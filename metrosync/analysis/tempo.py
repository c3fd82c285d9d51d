"""BPM detection by correlating the amplitude envelope with complex sinusoids.

The envelope is correlated against a sinusoid at every candidate tempo; the
strongest tempo wins. A coarse 0.1 BPM sweep narrows the search, a 0.01 BPM
sweep refines the strongest regions, and a final step resolves the common
half-tempo (octave) error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from metrosync.analysis.correlation import correlation_spectrum
from metrosync.analysis.models import CorrelationCandidate, SampleBuffer
from metrosync.config import Settings, settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TempoSearchParams:
    """Tunable constants of the BPM search.

    The octave-correction thresholds are empirical; they are kept as
    parameters rather than derived.
    """
    min_bpm: float = 60.0
    max_bpm: float = 240.0
    analysis_seconds: float = 100.0
    window_seconds: float = 0.05
    hop_seconds: float = 0.01
    coarse_step: float = 0.1
    fine_step: float = 0.01
    fine_span: float = 3.0
    coarse_peaks: int = 10
    octave_split_bpm: float = 100.0
    octave_search_window: float = 5.0
    octave_weight_window: float = 0.3
    fallback_range: tuple[float, float] = (90.0, 100.0)
    fallback_top_n: int = 20

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> TempoSearchParams:
        s = s or settings
        return cls(
            min_bpm=s.min_bpm,
            max_bpm=s.max_bpm,
            analysis_seconds=s.bpm_analysis_seconds,
            window_seconds=s.envelope_window_seconds,
            hop_seconds=s.envelope_hop_seconds,
            coarse_step=s.coarse_bpm_step,
            fine_step=s.fine_bpm_step,
            fine_span=s.fine_bpm_span,
            coarse_peaks=s.coarse_peak_count,
            octave_split_bpm=s.octave_split_bpm,
            octave_search_window=s.octave_search_window,
            octave_weight_window=s.octave_weight_window,
            fallback_range=tuple(s.octave_fallback_range),
            fallback_top_n=s.octave_fallback_top_n,
        )


def amplitude_envelope(
    samples: np.ndarray,
    sr: int,
    window_seconds: float = 0.05,
    hop_seconds: float = 0.01,
    max_seconds: float | None = 100.0,
) -> tuple[np.ndarray, float]:
    """Mean absolute amplitude over sliding windows.

    Returns (envelope, envelope_rate) where envelope_rate is in frames per
    second (``sr / hop``).
    """
    window = int(sr * window_seconds)
    hop = int(sr * hop_seconds)
    if window <= 0 or hop <= 0:
        return np.zeros(0), 0.0

    n = len(samples)
    if max_seconds is not None:
        n = min(n, int(sr * max_seconds))
    env_rate = sr / hop
    if n - window <= 0:
        return np.zeros(0), env_rate

    starts = np.arange(0, n - window, hop)
    csum = np.concatenate(([0.0], np.cumsum(np.abs(np.asarray(samples[:n], dtype=np.float64)))))
    envelope = (csum[starts + window] - csum[starts]) / window
    return envelope, env_rate


def _bpm_grid(lo: float, hi: float, step: float) -> np.ndarray:
    n_steps = int(round((hi - lo) / step))
    return np.round(lo + np.arange(n_steps + 1) * step, 6)


def _score(envelope: np.ndarray, env_rate: float, bpms: np.ndarray) -> np.ndarray:
    return correlation_spectrum(envelope, env_rate, bpms / 60.0)


def _sorted_candidates(bpms: np.ndarray, magnitudes: np.ndarray) -> list[CorrelationCandidate]:
    order = np.argsort(-magnitudes, kind="stable")
    return [CorrelationCandidate(bpm=float(bpms[i]), magnitude=float(magnitudes[i])) for i in order]


def coarse_search(envelope: np.ndarray, env_rate: float, params: TempoSearchParams) -> list[CorrelationCandidate]:
    """Score every BPM in the search range at the coarse step, strongest first."""
    bpms = _bpm_grid(params.min_bpm, params.max_bpm, params.coarse_step)
    return _sorted_candidates(bpms, _score(envelope, env_rate, bpms))


def refinement_centers(coarse: list[CorrelationCandidate], params: TempoSearchParams) -> list[float]:
    """Top coarse peaks plus their doubled tempo (octave companion) when in range."""
    centers: dict[float, None] = {}
    for cand in coarse[:params.coarse_peaks]:
        centers[round(cand.bpm, 6)] = None
        doubled = round(cand.bpm * 2, 6)
        if doubled <= params.max_bpm:
            centers[doubled] = None
    return list(centers)


def fine_search(
    envelope: np.ndarray,
    env_rate: float,
    centers: list[float],
    params: TempoSearchParams,
) -> list[CorrelationCandidate]:
    """Score a fine grid around each center, de-duplicated to 0.001 BPM.

    Overlapping grids produce the same BPM more than once; only one entry per
    0.001 BPM bucket survives (identical BPMs have identical magnitudes, so
    the highest is kept by construction).
    """
    grids = []
    for center in centers:
        lo = max(params.min_bpm, center - params.fine_span)
        hi = min(params.max_bpm, center + params.fine_span)
        if hi < lo:
            continue
        grids.append(_bpm_grid(lo, hi, params.fine_step))
    if not grids:
        return []

    keys = np.unique(np.round(np.concatenate(grids) * 1000).astype(np.int64))
    bpms = keys / 1000.0
    return _sorted_candidates(bpms, _score(envelope, env_rate, bpms))


def _weighted_bpm(candidates: list[CorrelationCandidate], factor: float = 1.0) -> float | None:
    total = sum(c.magnitude for c in candidates)
    if total <= 0:
        return None
    return sum(c.bpm * factor * c.magnitude for c in candidates) / total


def resolve_octave(candidates: list[CorrelationCandidate], params: TempoSearchParams | None = None) -> float | None:
    """Pick the final BPM from fine candidates sorted by magnitude.

    Tempos below the split are usually half the perceived tempo, so the
    doubled region is inspected first.
    """
    if not candidates:
        return None
    params = params or TempoSearchParams()
    top = candidates[0]

    if top.bpm >= params.octave_split_bpm:
        return round(top.bpm, 1)

    expected = top.bpm * 2
    lo = expected - params.octave_search_window
    hi = expected + params.octave_search_window
    high_range = [c for c in candidates if lo <= c.bpm <= hi]

    if high_range:
        local_peak = max(high_range, key=lambda c: c.magnitude)
        near = [c for c in high_range if abs(c.bpm - local_peak.bpm) <= params.octave_weight_window]
        weighted = _weighted_bpm(near)
        if weighted is None:
            weighted = local_peak.bpm
        logger.debug(
            "Octave peak near %.2f: %d candidates, weighted %.3f",
            local_peak.bpm, len(near), weighted,
        )
        return round(weighted, 2)

    f_lo, f_hi = params.fallback_range
    in_range = [c for c in candidates[:params.fallback_top_n] if f_lo <= c.bpm <= f_hi]
    weighted = _weighted_bpm(in_range, factor=2.0)
    if weighted is not None:
        logger.debug("Octave fallback: doubled %d candidates -> %.3f", len(in_range), weighted)
        return round(weighted, 2)
    return round(top.bpm, 2)


def detect_bpm(buffer: SampleBuffer, params: TempoSearchParams | None = None) -> float | None:
    """Estimate the tempo of a track.

    Returns None only when the buffer is too short for a single envelope
    frame or carries no energy at all.
    """
    params = params or TempoSearchParams.from_settings()
    envelope, env_rate = amplitude_envelope(
        buffer.samples,
        buffer.sample_rate,
        window_seconds=params.window_seconds,
        hop_seconds=params.hop_seconds,
        max_seconds=params.analysis_seconds,
    )
    logger.info(f"Envelope: {len(envelope)} frames at {env_rate:.2f} Hz")
    if envelope.size == 0 or not np.any(envelope > 0):
        logger.warning("BPM detection skipped: no usable envelope")
        return None

    coarse = coarse_search(envelope, env_rate, params)
    centers = refinement_centers(coarse, params)
    logger.debug("Refinement centers: %s", ", ".join(f"{c:.1f}" for c in centers[:5]))

    fine = fine_search(envelope, env_rate, centers, params)
    logger.debug(
        "Top candidates: %s",
        ", ".join(f"{c.bpm:.2f} ({c.magnitude:.2f})" for c in fine[:10]),
    )

    bpm = resolve_octave(fine, params)
    logger.info(f"Detected BPM: {bpm}")
    return bpm
