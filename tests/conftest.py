"""Shared test fixtures for metrosync tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from metrosync.main import app
from metrosync.scheduling.clock import ManualClock, ManualTimers

SR = 22050
FRAME = 8192


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def generate_click_track(
    bpm: float,
    beats_per_bar: int = 4,
    duration_seconds: float = 10.0,
    sr: int = SR,
    accent_ratio: float = 2.0,
    start_seconds: float = 0.0,
) -> np.ndarray:
    """Generate a synthetic click track with accented downbeats.

    The first click sounds at *start_seconds*; everything before is silence.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm
    click_samples = int(0.02 * sr)  # 20ms click

    # Short sine burst with exponential decay
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    beat = 0
    time = start_seconds
    while time < duration_seconds:
        sample_pos = int(time * sr)
        amplitude = accent_ratio if beat % beats_per_bar == 0 else 1.0

        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude

        time += beat_interval
        beat += 1

    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak
    return audio


def bin_aligned_hz(midi: int, sr: int = SR, frame_size: int = FRAME) -> float:
    """Frequency of the analysis bin a MIDI pitch maps to.

    Tones at these frequencies are orthogonal to every other pitch bin, so
    synthetic chroma comes out exact.
    """
    hz = 440.0 * 2 ** ((midi - 69) / 12)
    return round(hz * frame_size / sr) * sr / frame_size


def generate_tones(
    midi_amplitudes: dict[int, float],
    duration_seconds: float,
    sr: int = SR,
) -> np.ndarray:
    """Sum of bin-aligned sine tones."""
    t = np.arange(int(duration_seconds * sr)) / sr
    audio = np.zeros_like(t)
    for midi, amp in midi_amplitudes.items():
        audio += amp * np.sin(2 * np.pi * bin_aligned_hz(midi, sr) * t)
    return audio


# Triads in octave 4 (C4 = MIDI 60)
TRIADS = {
    "C": (60, 64, 67),
    "Am": (69, 72, 76),
    "G": (67, 71, 74),
    "F": (65, 69, 72),
}


def generate_progression(chords: list[str], bpm: float = 120.0, beats_per_bar: int = 4, sr: int = SR) -> np.ndarray:
    """One triad per bar, switching exactly at bar boundaries."""
    bar_samples = int(round(60.0 / bpm * beats_per_bar * sr))
    bars = []
    for name in chords:
        tones = generate_tones({m: 0.3 for m in TRIADS[name]}, bar_samples / sr, sr)
        bars.append(tones[:bar_samples])
    return np.concatenate(bars)


class RecordingRenderer:
    """Renderer that keeps every event it is asked to play."""

    def __init__(self):
        self.events = []

    def render(self, event):
        self.events.append(event)

    @property
    def main_beats(self):
        return [e for e in self.events if not e.subdivision]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def timers(clock):
    return ManualTimers(clock)


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def click_120():
    """Click track in 4/4 at 120 BPM."""
    return generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=20)


@pytest.fixture
def click_96():
    """Click track in 4/4 at 96 BPM."""
    return generate_click_track(bpm=96, beats_per_bar=4, duration_seconds=20)
