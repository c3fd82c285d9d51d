"""Core data models for track analysis."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

PITCH_CLASSES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

NO_CHORD = "N.C."


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """Immutable mono audio of one loaded track."""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        samples = np.array(self.samples, dtype=np.float64).ravel()
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class CorrelationCandidate:
    """Correlation strength of one BPM hypothesis."""
    bpm: float
    magnitude: float


@dataclass(frozen=True)
class KeyResult:
    """Best-matching key for a chroma vector."""
    tonic: str  # e.g. "C#"
    mode: str  # "Major" | "Minor"
    correlation: float

    @property
    def label(self) -> str:
        return f"{self.tonic} {self.mode}"


@dataclass(frozen=True)
class ChordEvent:
    """A chord change at the start of a bar."""
    bar: int  # 0-based bar index from the analysis origin
    beat: int  # beat within the bar where the chord starts
    chord: str  # e.g. "Am7", "N.C."
    time: float  # seconds


@dataclass(frozen=True)
class TrackAnalysis:
    """Complete analysis of one track."""
    duration: float
    bpm: float | None = None
    first_onset: float = 0.0
    key: KeyResult | None = None
    chords: tuple[ChordEvent, ...] = field(default_factory=tuple)
    beats_per_bar: int = 4

    def to_dict(self) -> dict:
        return {
            "duration": self.duration,
            "bpm": self.bpm,
            "first_onset": self.first_onset,
            "key": None if self.key is None else {
                "tonic": self.key.tonic,
                "mode": self.key.mode,
                "correlation": self.key.correlation,
            },
            "chords": [
                {"bar": c.bar, "beat": c.beat, "chord": c.chord, "time": c.time}
                for c in self.chords
            ],
            "beats_per_bar": self.beats_per_bar,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TrackAnalysis:
        key = data.get("key")
        return cls(
            duration=data["duration"],
            bpm=data.get("bpm"),
            first_onset=data.get("first_onset", 0.0),
            key=KeyResult(**key) if key else None,
            chords=tuple(ChordEvent(**c) for c in data.get("chords", [])),
            beats_per_bar=data.get("beats_per_bar", 4),
        )
