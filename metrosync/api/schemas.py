"""Pydantic response models for API."""

from pydantic import BaseModel


class KeyResponse(BaseModel):
    tonic: str
    mode: str
    label: str
    correlation: float


class ChordEventResponse(BaseModel):
    bar: int
    beat: int
    chord: str
    time: float


class AnalysisResponse(BaseModel):
    bpm: float | None = None
    first_onset: float = 0.0
    key: KeyResponse | None = None
    chords: list[ChordEventResponse] = []
    duration: float = 0.0
    beats_per_bar: int = 4


class ToneResponse(BaseModel):
    frequency: float
    waveform: str
    gain: float
    release: float


# WebSocket message types

class BeatMessage(BaseModel):
    type: str = "beat"
    time: float
    delay: float  # seconds from "now" on the server clock
    beat_in_bar: int
    total_beats: int
    accent: bool
    subdivision: bool
    sub_index: int
    sound_type: str
    volume: float
    tone: ToneResponse


class SnapshotMessage(BaseModel):
    type: str = "snapshot"
    current_beat_in_bar: int
    total_beats: int
    detected_bpm: float | None = None
    detected_key: str | None = None
    chord_events: list[ChordEventResponse] = []
    scheduler_running: bool
    is_playing: bool
    position: float
    current_chord: str | None = None
    tempo: float
    beats_per_bar: int


class ConfigMessage(BaseModel):
    type: str = "config"
    changed: dict


class TransportMessage(BaseModel):
    type: str = "transport"
    event: str  # "loop" | "ended"
    position: float  # where the client player should continue
