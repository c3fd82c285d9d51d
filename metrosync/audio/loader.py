"""Audio file loading utilities."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import librosa

from metrosync.analysis.models import SampleBuffer
from metrosync.audio.preprocessing import to_mono


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int | None = 22050,
) -> SampleBuffer:
    """Load an audio file or buffer as a mono SampleBuffer.

    Parameters
    ----------
    file_path_or_buffer:
        Path to an audio file or a BytesIO buffer containing audio data.
    sr:
        Target sample rate. Defaults to 22050 Hz; ``None`` keeps the native
        rate.

    Raises whatever librosa raises for unreadable input; callers decide how
    to degrade.
    """
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    return SampleBuffer(samples=to_mono(audio), sample_rate=int(sample_rate))
