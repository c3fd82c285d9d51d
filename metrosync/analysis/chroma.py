"""Pitch-class (chroma) extraction from single-bin DFT magnitudes."""

from __future__ import annotations

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from metrosync.analysis.correlation import correlation_spectrum
from metrosync.config import settings


def midi_to_hz(midi: np.ndarray | int) -> np.ndarray:
    return 440.0 * 2.0 ** ((np.asarray(midi, dtype=np.float64) - 69) / 12.0)


def _pitch_bins(sr: int, frame_size: int, min_midi: int, max_midi: int) -> tuple[np.ndarray, np.ndarray]:
    """Return (bin frequencies in Hz, pitch class) for every MIDI pitch in range."""
    midi = np.arange(min_midi, max_midi + 1)
    bins = np.round(midi_to_hz(midi) * frame_size / sr)
    return bins * sr / frame_size, midi % 12


def analysis_frames(samples: np.ndarray, frame_size: int, hop: int, pad_short: bool = False) -> np.ndarray:
    """Slice *samples* into overlapping frames, one per row.

    With ``pad_short`` a signal shorter than one frame becomes a single
    zero-padded frame instead of no frame at all.
    """
    samples = np.asarray(samples, dtype=np.float64)
    if len(samples) < frame_size:
        if not pad_short or len(samples) == 0:
            return np.zeros((0, frame_size))
        padded = np.zeros(frame_size)
        padded[:len(samples)] = samples
        return padded[np.newaxis, :]
    return sliding_window_view(samples, frame_size)[::hop]


def frame_chroma(
    frames: np.ndarray,
    sr: int,
    frame_size: int | None = None,
    subsample: int | None = None,
    min_midi: int | None = None,
    max_midi: int | None = None,
) -> np.ndarray:
    """12-bin chroma vector for each frame.

    Each MIDI pitch contributes the DFT magnitude at its nearest bin, computed
    on every ``subsample``-th sample of the frame, to its pitch class.
    Returns an array of shape ``(n_frames, 12)``.
    """
    frame_size = frame_size or settings.chroma_frame_size
    subsample = subsample or settings.chroma_subsample
    min_midi = settings.chroma_min_midi if min_midi is None else min_midi
    max_midi = settings.chroma_max_midi if max_midi is None else max_midi

    frames = np.asarray(frames, dtype=np.float64)
    if frames.shape[0] == 0:
        return np.zeros((0, 12))

    freqs, pitch_class = _pitch_bins(sr, frame_size, min_midi, max_midi)
    decimated = frames[:, ::subsample]
    magnitudes = correlation_spectrum(decimated, sr / subsample, freqs)

    fold = np.zeros((len(pitch_class), 12))
    fold[np.arange(len(pitch_class)), pitch_class] = 1.0
    return magnitudes @ fold


def average_chroma(chromas: np.ndarray) -> np.ndarray | None:
    """Mean of the frames that carry any energy; None if there are none."""
    chromas = np.asarray(chromas, dtype=np.float64).reshape(-1, 12)
    voiced = chromas[chromas.sum(axis=1) > 0]
    if len(voiced) == 0:
        return None
    return voiced.mean(axis=0)


def chroma_of(samples: np.ndarray, sr: int, frame_size: int | None = None, pad_short: bool = False) -> np.ndarray | None:
    """Averaged chroma over 50%-overlapping frames of *samples*."""
    frame_size = frame_size or settings.chroma_frame_size
    frames = analysis_frames(samples, frame_size, frame_size // 2, pad_short=pad_short)
    return average_chroma(frame_chroma(frames, sr, frame_size=frame_size))
