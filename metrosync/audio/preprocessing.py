"""Audio preprocessing utilities."""

from __future__ import annotations

import numpy as np


def to_mono(audio: np.ndarray) -> np.ndarray:
    """Reduce multi-channel audio to mono by averaging channels.

    Accepts ``(n_samples,)``, ``(n_samples, n_channels)`` (soundfile layout)
    or ``(n_channels, n_samples)`` (librosa layout); the shorter axis is
    taken to be the channel axis.
    """
    audio = np.asarray(audio, dtype=np.float64)
    if audio.ndim <= 1:
        return audio.ravel()
    if audio.ndim != 2:
        raise ValueError(f"Expected 1-D or 2-D audio, got shape {audio.shape}")
    channel_axis = 0 if audio.shape[0] < audio.shape[1] else 1
    return audio.mean(axis=channel_axis)
