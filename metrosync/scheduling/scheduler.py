"""Look-ahead beat scheduler.

Timer callbacks are too coarse to click on time by themselves, so a short
periodic tick schedules every event that falls inside a small look-ahead
window and hands it, with its exact clock time, to the renderer. The
renderer is responsible for sample-accurate playback.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from metrosync.config import settings
from metrosync.scheduling.clock import AudioClock, TimerHandle, TimerService
from metrosync.scheduling.sounds import RhythmPattern, SoundType, ToneSpec, tone_for

logger = logging.getLogger(__name__)

MIN_TEMPO = 1.0
MAX_TEMPO = 300.0


@dataclass(frozen=True)
class BeatEvent:
    """One click to render at ``time`` on the audio clock."""
    time: float
    beat_in_bar: int
    total_beats: int
    accent: bool
    subdivision: bool
    sub_index: int  # 0 for the main beat, 1.. for sub-beats
    sound_type: SoundType
    volume: float
    tone: ToneSpec
    generation: int


@dataclass(frozen=True)
class SchedulerState:
    """Read-only snapshot of the scheduler counters."""
    current_beat_in_bar: int
    total_beats: int
    next_event_time: float
    tempo: float
    beats_per_bar: int
    running: bool
    generation: int


class SoundRenderer(Protocol):
    def render(self, event: BeatEvent) -> None:
        """Play a short percussive sound at ``event.time``."""


class BeatScheduler:
    """Drift-free beat generator against an audio clock.

    ``current_beat_in_bar`` always equals ``total_beats % beats_per_bar``.
    Each start increments ``generation``; ticks armed by an earlier
    generation are ignored, so a stopped or restarted session can never emit
    events on behalf of an older one.
    """

    def __init__(
        self,
        clock: AudioClock,
        renderer: SoundRenderer | None = None,
        timers: TimerService | None = None,
        tempo: float = 120.0,
        beats_per_bar: int = 4,
        rhythm: RhythmPattern = RhythmPattern.SIMPLE,
        sound_type: SoundType = SoundType.CLICK,
        volume: float = 0.7,
        subdivision_volume: float = 0.5,
        lookahead: float | None = None,
        tick_interval: float | None = None,
    ) -> None:
        self.clock = clock
        self.renderer = renderer
        self.timers = timers
        self.lookahead = settings.lookahead if lookahead is None else lookahead
        self.tick_interval = settings.tick_interval if tick_interval is None else tick_interval

        self._tempo = _clamp_tempo(tempo)
        self._beats_per_bar = _check_beats_per_bar(beats_per_bar)
        self.rhythm = RhythmPattern(rhythm)
        self.sound_type = SoundType(sound_type)
        self.volume = volume
        self.subdivision_volume = subdivision_volume

        self._running = False
        self._generation = 0
        self._timer: TimerHandle | None = None
        self._total_beats = 0
        self._beat_in_bar = 0
        self._next_event_time = 0.0
        self._listeners: list[Callable[[BeatEvent], None]] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tempo(self) -> float:
        return self._tempo

    @property
    def beats_per_bar(self) -> int:
        return self._beats_per_bar

    @property
    def state(self) -> SchedulerState:
        return SchedulerState(
            current_beat_in_bar=self._beat_in_bar,
            total_beats=self._total_beats,
            next_event_time=self._next_event_time,
            tempo=self._tempo,
            beats_per_bar=self._beats_per_bar,
            running=self._running,
            generation=self._generation,
        )

    def add_listener(self, listener: Callable[[BeatEvent], None]) -> None:
        """Observe every emitted event (e.g. to drive a beat indicator)."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_tempo(self, bpm: float) -> float:
        """Change tempo; applies from the next scheduling decision."""
        self._tempo = _clamp_tempo(bpm)
        return self._tempo

    def set_beats_per_bar(self, beats: int) -> None:
        self._beats_per_bar = _check_beats_per_bar(beats)
        self._beat_in_bar = self._total_beats % self._beats_per_bar

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, total_beats: int = 0, first_event_time: float | None = None) -> None:
        """Start emitting beats.

        By default the first beat (beat 0) is due immediately and is emitted
        before this call returns. *total_beats* and *first_event_time* start
        at a given phase instead.
        """
        if self._running:
            return
        self._generation += 1
        generation = self._generation
        self._running = True
        self._total_beats = max(0, int(total_beats))
        self._beat_in_bar = self._total_beats % self._beats_per_bar
        now = self.clock.now()
        self._next_event_time = now if first_event_time is None else max(now, first_event_time)
        logger.info(
            "Scheduler started (generation %d, %.2f BPM, %d/bar)",
            generation, self._tempo, self._beats_per_bar,
        )

        self.tick(generation)
        if self.timers is not None:
            self._timer = self.timers.every(self.tick_interval, functools.partial(self.tick, generation))

    def stop(self) -> None:
        """Stop, cancel the pending tick and reset the counters."""
        if not self._running:
            return
        self._running = False
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._total_beats = 0
        self._beat_in_bar = 0
        self._next_event_time = 0.0
        logger.info("Scheduler stopped")

    def resync(self, total_beats: int, next_event_time: float) -> None:
        """Move the counters to a new phase without restarting the timer.

        *total_beats* is the index of the beat due at *next_event_time*.
        """
        self._total_beats = max(0, int(total_beats))
        self._beat_in_bar = self._total_beats % self._beats_per_bar
        self._next_event_time = next_event_time
        logger.debug(
            "Scheduler resync: beat %d (%d in bar) at %.4f",
            self._total_beats, self._beat_in_bar, next_event_time,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def tick(self, generation: int | None = None) -> list[BeatEvent]:
        """Emit every beat due before ``now + lookahead``.

        Returns the emitted events. A tick armed by a stale generation
        emits nothing.
        """
        if generation is not None and generation != self._generation:
            logger.debug("Dropping stale tick (generation %d, current %d)", generation, self._generation)
            return []
        if not self._running:
            return []

        horizon = self.clock.now() + self.lookahead
        emitted: list[BeatEvent] = []
        while self._next_event_time < horizon:
            emitted.extend(self._schedule_beat(self._next_event_time))
            self._next_event_time += 60.0 / self._tempo
            self._total_beats += 1
            self._beat_in_bar = (self._beat_in_bar + 1) % self._beats_per_bar
        return emitted

    def _schedule_beat(self, time: float) -> list[BeatEvent]:
        accent = self._beat_in_bar == 0
        divisions = self.rhythm.divisions
        beat_seconds = 60.0 / self._tempo

        events = []
        for sub_index in range(divisions):
            subdivision = sub_index > 0
            tone = tone_for(self.sound_type, accent=accent and not subdivision, subdivision=subdivision)
            base = self.subdivision_volume if subdivision else self.volume
            events.append(BeatEvent(
                time=time + beat_seconds * sub_index / divisions,
                beat_in_bar=self._beat_in_bar,
                total_beats=self._total_beats,
                accent=accent and not subdivision,
                subdivision=subdivision,
                sub_index=sub_index,
                sound_type=self.sound_type,
                volume=base * tone.gain,
                tone=tone,
                generation=self._generation,
            ))

        for event in events:
            if self.renderer is not None:
                self.renderer.render(event)
            for listener in self._listeners:
                listener(event)
        return events


def _clamp_tempo(bpm: float) -> float:
    return float(max(MIN_TEMPO, min(MAX_TEMPO, bpm)))


def _check_beats_per_bar(beats: int) -> int:
    beats = int(beats)
    if beats < 1:
        raise ValueError(f"beats_per_bar must be >= 1, got {beats}")
    return beats
