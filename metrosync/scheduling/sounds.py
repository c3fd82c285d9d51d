"""Metronome timbres and rhythm patterns."""

from dataclasses import dataclass
from enum import Enum


class SoundType(str, Enum):
    CLICK = "click"
    BEEP = "beep"
    WOOD = "wood"
    COWBELL = "cowbell"


class RhythmPattern(str, Enum):
    SIMPLE = "simple"
    EIGHTH = "eighth"
    TRIPLET = "triplet"
    SIXTEENTH = "sixteenth"
    SEXTUPLET = "sextuplet"

    @property
    def divisions(self) -> int:
        """Evenly spaced clicks per beat, the main beat included."""
        return _DIVISIONS[self]


_DIVISIONS = {
    RhythmPattern.SIMPLE: 1,
    RhythmPattern.EIGHTH: 2,
    RhythmPattern.TRIPLET: 3,
    RhythmPattern.SIXTEENTH: 4,
    RhythmPattern.SEXTUPLET: 6,
}


@dataclass(frozen=True)
class ToneSpec:
    """What the renderer should synthesize for one event."""
    frequency: float  # Hz
    waveform: str  # "sine" | "square" | "triangle"
    gain: float  # multiplier applied to the event volume
    release: float = 0.05  # s, exponential decay to silence


# (accent, normal, subdivision) per sound type
TONES: dict[SoundType, tuple[ToneSpec, ToneSpec, ToneSpec]] = {
    SoundType.CLICK: (
        ToneSpec(1000.0, "sine", 1.5),
        ToneSpec(800.0, "sine", 1.0),
        ToneSpec(600.0, "sine", 1.0, release=0.03),
    ),
    SoundType.BEEP: (
        ToneSpec(880.0, "square", 1.0),
        ToneSpec(440.0, "square", 1.0),
        ToneSpec(660.0, "square", 1.0, release=0.03),
    ),
    SoundType.WOOD: (
        ToneSpec(220.0, "triangle", 0.8),
        ToneSpec(180.0, "triangle", 0.8),
        ToneSpec(300.0, "triangle", 0.8, release=0.03),
    ),
    SoundType.COWBELL: (
        ToneSpec(540.0, "square", 0.9),
        ToneSpec(400.0, "square", 0.9),
        ToneSpec(320.0, "square", 0.9, release=0.03),
    ),
}


def tone_for(sound_type: SoundType, accent: bool = False, subdivision: bool = False) -> ToneSpec:
    accent_tone, normal_tone, sub_tone = TONES[SoundType(sound_type)]
    if subdivision:
        return sub_tone
    return accent_tone if accent else normal_tone
