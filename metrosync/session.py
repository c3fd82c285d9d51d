"""Practice session - one loaded track, its analysis, and the metronome."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from pydantic import BaseModel, Field, model_validator

from metrosync.analysis.chords import chord_at_time
from metrosync.analysis.engine import AnalysisEngine
from metrosync.analysis.models import ChordEvent, SampleBuffer, TrackAnalysis
from metrosync.audio.loader import load_audio
from metrosync.audio.preprocessing import to_mono
from metrosync.config import settings
from metrosync.scheduling.clock import AudioClock, MonotonicClock, TimerHandle, TimerService
from metrosync.scheduling.scheduler import BeatScheduler, SoundRenderer
from metrosync.scheduling.sounds import RhythmPattern, SoundType
from metrosync.scheduling.tap import TapTempo
from metrosync.scheduling.transport import ClockTransport, TransportSyncController

logger = logging.getLogger(__name__)


class MetronomeConfig(BaseModel):
    """User-facing settings of one session."""
    tempo: float = Field(120.0, ge=1, le=300)
    beats_per_bar: int = Field(4, ge=1, le=16)
    sound_type: SoundType = SoundType.CLICK
    rhythm_pattern: RhythmPattern = RhythmPattern.SIMPLE
    volume: float = Field(0.7, ge=0, le=1)
    subdivision_volume: float = Field(0.5, ge=0, le=1)
    sync_enabled: bool = True
    count_in_enabled: bool = False
    playback_rate: float = Field(1.0, gt=0, le=4)
    loop_start: float | None = Field(None, ge=0)
    loop_end: float | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_loop(self):
        if (self.loop_start is None) != (self.loop_end is None):
            raise ValueError("loop_start and loop_end must be set together")
        if self.loop_start is not None and self.loop_end <= self.loop_start:
            raise ValueError("loop_end must be greater than loop_start")
        return self


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view for display."""
    current_beat_in_bar: int
    total_beats: int
    detected_bpm: float | None
    detected_key: str | None
    chord_events: tuple[ChordEvent, ...]
    scheduler_running: bool
    is_playing: bool
    position: float
    current_chord: str | None
    tempo: float
    beats_per_bar: int


class PracticeSession:
    """Owns everything belonging to one practice session.

    There is no module-level state: each session builds its own scheduler,
    transport and controller around the clock, timer service and renderer
    it is given.
    """

    def __init__(
        self,
        clock: AudioClock | None = None,
        timers: TimerService | None = None,
        renderer: SoundRenderer | None = None,
        engine: AnalysisEngine | None = None,
        config: MetronomeConfig | None = None,
    ) -> None:
        self.clock = clock or MonotonicClock()
        self.timers = timers
        self.engine = engine or AnalysisEngine()
        self.config = config or MetronomeConfig()

        self.scheduler = BeatScheduler(self.clock, renderer=renderer, timers=timers)
        self.transport = ClockTransport(self.clock)
        self.controller = TransportSyncController(self.scheduler, self.transport, self.clock)
        self.tap_tempo = TapTempo()

        self.buffer: SampleBuffer | None = None
        self.analysis: TrackAnalysis | None = None
        self.track_name: str | None = None
        self._subscribers: list[Callable[[dict[str, Any]], None]] = []
        self._transport_listeners: list[Callable[[str, float], None]] = []
        self._playhead_timer: TimerHandle | None = None

        self._apply(self.config.model_dump())

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Receive a dict of changed settings after every update."""
        self._subscribers.append(callback)

    def on_transport(self, callback: Callable[[str, float], None]) -> None:
        """Receive ``(event, position)`` when playback loops or ends.

        The external player must follow these: on "loop" seek to *position*,
        on "ended" stop.
        """
        self._transport_listeners.append(callback)

    def update_config(self, **changes: Any) -> dict[str, Any]:
        """Validate and apply setting changes; returns the values that changed.

        Raises pydantic.ValidationError for invalid values.
        """
        merged = MetronomeConfig.model_validate({**self.config.model_dump(), **changes})
        old = self.config.model_dump()
        new = merged.model_dump()
        changed = {k: v for k, v in new.items() if old[k] != v}
        if not changed:
            return {}

        self.config = merged
        self._apply(changed)
        for callback in self._subscribers:
            callback(dict(changed))
        return changed

    def _apply(self, changed: dict[str, Any]) -> None:
        if "tempo" in changed:
            self.scheduler.set_tempo(self.config.tempo)
            if self.controller.track_loaded:
                # A manual tempo edit corrects the detected track tempo.
                self.controller.bpm = self.config.tempo
        if "beats_per_bar" in changed:
            self.scheduler.set_beats_per_bar(self.config.beats_per_bar)
        if "sound_type" in changed:
            self.scheduler.sound_type = self.config.sound_type
        if "rhythm_pattern" in changed:
            self.scheduler.rhythm = self.config.rhythm_pattern
        if "volume" in changed:
            self.scheduler.volume = self.config.volume
        if "subdivision_volume" in changed:
            self.scheduler.subdivision_volume = self.config.subdivision_volume
        if "sync_enabled" in changed:
            self.controller.sync_enabled = self.config.sync_enabled
        if "playback_rate" in changed:
            self.controller.set_rate(self.config.playback_rate)
        if "loop_start" in changed or "loop_end" in changed:
            if self.config.loop_start is None:
                self.controller.clear_loop()
            elif not self.controller.set_loop(self.config.loop_start, self.config.loop_end):
                self.config = self.config.model_copy(update={"loop_start": None, "loop_end": None})
                changed["loop_start"] = changed["loop_end"] = None

        if self.transport.is_playing and self.scheduler.running and (
            changed.keys() & {"tempo", "beats_per_bar"}
        ):
            self.controller.resync()

    # ------------------------------------------------------------------
    # Track lifecycle
    # ------------------------------------------------------------------

    def load_audio(self, samples: np.ndarray, sr: int, name: str | None = None) -> TrackAnalysis:
        """Replace the current track with decoded samples and analyse them."""
        return self.load_buffer(SampleBuffer(samples=to_mono(samples), sample_rate=sr), name=name)

    def load_file(self, path: str) -> TrackAnalysis | None:
        """Decode and load an audio file; None (and no track) if unreadable."""
        try:
            buffer = load_audio(path, sr=settings.sample_rate)
        except Exception as e:
            logger.warning("Could not load %s: %s", path, e)
            return None
        return self.load_buffer(buffer, name=path)

    def load_buffer(self, buffer: SampleBuffer, name: str | None = None) -> TrackAnalysis:
        self.remove_track()
        analysis = self.engine.analyze_buffer(buffer, beats_per_bar=self.config.beats_per_bar)
        self.attach_analysis(analysis, name=name)
        self.buffer = buffer
        return analysis

    def attach_analysis(self, analysis: TrackAnalysis, name: str | None = None) -> None:
        """Use an existing analysis (e.g. computed elsewhere) as the current track."""
        self.remove_track()
        self.analysis = analysis
        self.track_name = name
        self.controller.set_track(analysis.bpm, analysis.first_onset, analysis.duration)
        self.controller.sync_enabled = self.config.sync_enabled
        self.transport.set_rate(self.config.playback_rate)
        logger.info(f"Track loaded: {name or '<buffer>'} ({analysis.duration:.1f}s, BPM {analysis.bpm})")
        if analysis.bpm:
            self.update_config(tempo=round(min(300.0, max(1.0, analysis.bpm)), 2))
            self.controller.bpm = analysis.bpm
        if self.config.loop_start is not None:
            self.update_config(loop_start=None, loop_end=None)

    def remove_track(self) -> None:
        if self.analysis is None and self.buffer is None:
            return
        self.stop()
        self.controller.clear_track()
        self.buffer = None
        self.analysis = None
        self.track_name = None

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self) -> bool:
        """Play the track with the metronome following it."""
        if self.analysis is None:
            return False
        if self.config.sync_enabled and self.scheduler.running:
            self.scheduler.stop()
        started = self.controller.play(count_in=self.config.count_in_enabled)
        if started:
            self._arm_playhead()
        return started

    def stop(self) -> None:
        self._cancel_playhead()
        self.controller.stop()

    def pause(self) -> None:
        self._cancel_playhead()
        self.controller.pause()

    def toggle_metronome(self) -> bool:
        """Start or stop the free-running metronome; returns the new state."""
        if self.scheduler.running:
            self.scheduler.stop()
        else:
            self.scheduler.set_tempo(self.config.tempo)
            self.scheduler.start()
        return self.scheduler.running

    def seek(self, t: float) -> None:
        self.controller.seek(t)

    def nudge_phase(self, direction: int) -> None:
        self.controller.nudge(direction)

    def set_loop(self, start: float, end: float) -> bool:
        start, end = min(start, end), max(start, end)
        if end - start < self.controller.min_loop_seconds:
            self.controller.set_loop(start, end)
            if self.config.loop_start is not None:
                self.update_config(loop_start=None, loop_end=None)
            return False
        self.update_config(loop_start=start, loop_end=end)
        return self.config.loop_start is not None

    def clear_loop(self) -> None:
        self.update_config(loop_start=None, loop_end=None)

    def tap(self, now: float | None = None) -> int | None:
        bpm = self.tap_tempo.tap(self.clock.now() if now is None else now)
        if bpm is not None:
            self.update_config(tempo=min(300, max(1, bpm)))
        return bpm

    def poll(self) -> str | None:
        """Playhead check; wraps loops and detects the end of the track."""
        result = self.controller.poll()
        if result is None:
            return None
        if result == "ended":
            self._cancel_playhead()
            position = self.transport.duration
        else:
            position = self.transport.position()
        for callback in self._transport_listeners:
            callback(result, position)
        return result

    def _arm_playhead(self) -> None:
        self._cancel_playhead()
        if self.timers is not None:
            self._playhead_timer = self.timers.every(settings.playhead_interval, self.poll)

    def _cancel_playhead(self) -> None:
        if self._playhead_timer is not None:
            self._playhead_timer.cancel()
            self._playhead_timer = None

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        state = self.scheduler.state
        analysis = self.analysis
        position = self.transport.position() if analysis is not None else 0.0
        chords = analysis.chords if analysis is not None else ()
        return SessionSnapshot(
            current_beat_in_bar=state.current_beat_in_bar,
            total_beats=state.total_beats,
            detected_bpm=analysis.bpm if analysis is not None else None,
            detected_key=analysis.key.label if analysis is not None and analysis.key else None,
            chord_events=tuple(chords),
            scheduler_running=state.running,
            is_playing=self.transport.is_playing,
            position=position,
            current_chord=chord_at_time(list(chords), position) if chords else None,
            tempo=state.tempo,
            beats_per_bar=state.beats_per_bar,
        )
