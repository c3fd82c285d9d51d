"""Keeping the metronome phase-locked to a playback transport.

The playback transport (the music player) and the beat scheduler run on
independent clocks. Whenever the transport position changes out of band
(seek, loop wrap, rate change, phase nudge) the scheduler counters are
re-derived from the transport position instead of being left to drift.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol

from metrosync.config import settings
from metrosync.scheduling.clock import AudioClock
from metrosync.scheduling.scheduler import BeatScheduler

logger = logging.getLogger(__name__)

# Fractions of a beat closer than this to a boundary count as on the boundary.
_BOUNDARY_EPS = 1e-9


class Transport(Protocol):
    duration: float
    rate: float

    @property
    def is_playing(self) -> bool: ...

    def position(self) -> float: ...

    def play(self, offset: float, start_at: float | None = None) -> None: ...

    def pause(self) -> None: ...

    def seek(self, t: float) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def stop(self) -> None: ...


class ClockTransport:
    """Mirror of an external player's position, derived from the audio clock.

    ``position = offset + (now - started_at) * rate``. A start time in the
    future (count-in) yields a virtual pre-roll position below ``offset``.
    """

    def __init__(self, clock: AudioClock, duration: float = 0.0, rate: float = 1.0) -> None:
        self.clock = clock
        self.duration = duration
        self.rate = rate
        self._playing = False
        self._offset = 0.0
        self._started_at = 0.0
        self._paused_at = 0.0

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def paused_at(self) -> float:
        return self._paused_at

    def position(self) -> float:
        if not self._playing:
            return self._paused_at
        return self._offset + (self.clock.now() - self._started_at) * self.rate

    def play(self, offset: float, start_at: float | None = None) -> None:
        self._offset = offset
        self._started_at = self.clock.now() if start_at is None else start_at
        self._playing = True

    def pause(self) -> None:
        if self._playing:
            # Pausing inside the pre-roll keeps the start offset.
            self._paused_at = max(self._offset, self.position())
            self._playing = False

    def seek(self, t: float) -> None:
        t = max(0.0, min(t, self.duration)) if self.duration > 0 else max(0.0, t)
        if self._playing:
            self._offset = t
            self._started_at = self.clock.now()
        else:
            self._paused_at = t

    def set_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError(f"Playback rate must be positive, got {rate}")
        if self._playing:
            self._offset = self.position()
            self._started_at = self.clock.now()
        self.rate = rate

    def stop(self) -> None:
        self._playing = False
        self._paused_at = 0.0


@dataclass
class TransportOffset:
    """Where the beat grid sits on the track timeline."""
    first_onset_time: float = 0.0
    beat_phase_offset: float = 0.0
    loop_start: float | None = None
    loop_end: float | None = None

    def __post_init__(self):
        if (self.loop_start is None) != (self.loop_end is None):
            raise ValueError("loop_start and loop_end must be set together")
        if self.loop_start is not None and self.loop_end <= self.loop_start:
            raise ValueError(f"loop_end ({self.loop_end}) must be after loop_start ({self.loop_start})")

    @property
    def has_loop(self) -> bool:
        return self.loop_start is not None


@dataclass(frozen=True)
class BeatPhase:
    """Beat position of the transport at one instant."""
    elapsed_beats: float
    total_beats: int  # beat the transport is currently inside
    beat_in_bar: int
    seconds_to_next: float  # clock seconds to the next integer beat

    @property
    def next_beat(self) -> int:
        """Index of the beat that falls on the next boundary."""
        if self.elapsed_beats - self.total_beats < _BOUNDARY_EPS:
            return self.total_beats
        return self.total_beats + 1


def compute_beat_phase(
    position: float,
    bpm: float,
    beat_phase_offset: float,
    rate: float,
    beats_per_bar: int,
) -> BeatPhase:
    """Map a transport position onto beat counters.

    Positions before the phase origin are folded forward a bar at a time so
    counters stay non-negative while keeping the beat-in-bar phase.
    """
    beats_per_second = bpm * rate / 60.0
    elapsed = (position - beat_phase_offset) / 60.0 * (bpm * rate)
    while elapsed < 0:
        elapsed += beats_per_bar

    total = math.floor(elapsed)
    frac = elapsed - total
    if frac < _BOUNDARY_EPS:
        seconds_to_next = 0.0
    else:
        seconds_to_next = (1.0 - frac) / beats_per_second
    return BeatPhase(
        elapsed_beats=elapsed,
        total_beats=total,
        beat_in_bar=total % beats_per_bar,
        seconds_to_next=seconds_to_next,
    )


class TransportSyncController:
    """Drives a BeatScheduler from a playback transport."""

    def __init__(
        self,
        scheduler: BeatScheduler,
        transport: Transport,
        clock: AudioClock,
        offsets: TransportOffset | None = None,
        min_loop_seconds: float | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.transport = transport
        self.clock = clock
        self.offsets = offsets or TransportOffset()
        self.min_loop_seconds = settings.min_loop_seconds if min_loop_seconds is None else min_loop_seconds
        self.bpm: float | None = None
        self.track_loaded = False
        self.sync_enabled = True
        self.last_phase: BeatPhase | None = None

    # ------------------------------------------------------------------
    # Track
    # ------------------------------------------------------------------

    def set_track(self, bpm: float | None, first_onset: float, duration: float) -> None:
        """Attach a freshly analysed track; the beat grid starts at its onset."""
        self.stop()
        self.bpm = bpm
        self.track_loaded = True
        self.transport.duration = duration
        self.offsets = TransportOffset(first_onset_time=first_onset, beat_phase_offset=first_onset)

    def clear_track(self) -> None:
        self.stop()
        self.bpm = None
        self.track_loaded = False
        self.transport.duration = 0.0
        self.offsets = TransportOffset()

    @property
    def has_tempo(self) -> bool:
        return self.track_loaded and bool(self.bpm) and self.bpm > 0

    @property
    def can_sync(self) -> bool:
        return self.sync_enabled and self.has_tempo

    @property
    def beat_seconds(self) -> float | None:
        """Length of one beat in track time."""
        if not self.has_tempo:
            return None
        return 60.0 / self.bpm

    # ------------------------------------------------------------------
    # Phase
    # ------------------------------------------------------------------

    def phase_at(self, position: float) -> BeatPhase | None:
        if not self.has_tempo:
            return None
        return compute_beat_phase(
            position,
            self.bpm,
            self.offsets.beat_phase_offset,
            self.transport.rate,
            self.scheduler.beats_per_bar,
        )

    def resync(self, position: float | None = None) -> BeatPhase | None:
        """Re-derive the scheduler phase from the transport position.

        No-op (returns None) before a track with a known BPM is attached.
        """
        if not self.can_sync:
            return None
        if position is None:
            position = self.transport.position()
        phase = self.phase_at(position)
        self.scheduler.set_tempo(self.bpm * self.transport.rate)
        self.scheduler.resync(phase.next_beat, self.clock.now() + phase.seconds_to_next)
        self.last_phase = phase
        logger.debug(
            "Resync at %.3fs: elapsed %.3f beats, beat %d/%d",
            position, phase.elapsed_beats, phase.beat_in_bar + 1, self.scheduler.beats_per_bar,
        )
        return phase

    # ------------------------------------------------------------------
    # Transport control
    # ------------------------------------------------------------------

    def play(self, count_in: bool = False) -> bool:
        """Start the transport and the scheduler in phase.

        With *count_in* the transport starts one bar after the metronome.
        """
        if not self.track_loaded:
            return False

        offset = self.transport.position() or self.offsets.first_onset_time
        if self.transport.duration and offset >= self.transport.duration:
            offset = self.offsets.first_onset_time
        if self.offsets.has_loop and offset >= self.offsets.loop_end:
            offset = self.offsets.loop_start

        lead = 0.0
        if count_in and self.can_sync:
            lead = self.scheduler.beats_per_bar * 60.0 / (self.bpm * self.transport.rate)

        now = self.clock.now()
        self.transport.play(offset, start_at=now + lead)
        logger.info(f"Playback from {offset:.2f}s (count-in {lead:.2f}s)")

        if not self.can_sync:
            return True

        phase = self.phase_at(self.transport.position())
        self.scheduler.stop()
        self.scheduler.set_tempo(self.bpm * self.transport.rate)
        self.scheduler.start(total_beats=phase.next_beat, first_event_time=now + phase.seconds_to_next)
        self.last_phase = phase
        return True

    def pause(self) -> None:
        self.transport.pause()
        if self.sync_enabled:
            self.scheduler.stop()
        self.last_phase = None

    def stop(self) -> None:
        """Stop playback (and the synced scheduler); forget any resync state."""
        self.transport.stop()
        if self.sync_enabled:
            self.scheduler.stop()
        self.last_phase = None

    def seek(self, t: float) -> BeatPhase | None:
        self.transport.seek(t)
        if self.transport.is_playing and self.scheduler.running:
            return self.resync()
        return None

    def set_rate(self, rate: float) -> BeatPhase | None:
        self.transport.set_rate(rate)
        if self.transport.is_playing and self.scheduler.running:
            return self.resync()
        return None

    def nudge(self, direction: int) -> BeatPhase | None:
        """Shift the beat grid by half a beat (+1 later, -1 earlier)."""
        if not self.has_tempo:
            return None
        self.offsets.beat_phase_offset += (1 if direction >= 0 else -1) * 0.5 * self.beat_seconds
        logger.info(f"Beat phase offset now {self.offsets.beat_phase_offset:.3f}s")
        if self.transport.is_playing and self.scheduler.running:
            return self.resync()
        return None

    def set_loop(self, start: float, end: float) -> bool:
        """Loop [start, end); shorter than the minimum it is treated as a seek."""
        start, end = min(start, end), max(start, end)
        if end - start < self.min_loop_seconds:
            logger.info(f"Loop range too short ({end - start:.2f}s), treating as seek")
            self.clear_loop()
            self.seek(start)
            return False
        self.offsets.loop_start = start
        self.offsets.loop_end = end
        logger.info(f"Loop range set: {start:.2f}s - {end:.2f}s")
        self.seek(start)
        return True

    def clear_loop(self) -> None:
        self.offsets.loop_start = None
        self.offsets.loop_end = None

    def poll(self) -> str | None:
        """Check the transport for loop wrap or end of track.

        Returns "loop" after wrapping to the loop start, "ended" when the
        track finished, otherwise None.
        """
        if not self.transport.is_playing:
            return None
        position = self.transport.position()

        if self.offsets.has_loop and position >= self.offsets.loop_end:
            logger.info(f"Loop: {position:.2f}s >= {self.offsets.loop_end:.2f}s, jumping to {self.offsets.loop_start:.2f}s")
            self.transport.seek(self.offsets.loop_start)
            if self.scheduler.running:
                self.resync(self.offsets.loop_start)
            return "loop"

        if self.transport.duration and position >= self.transport.duration:
            logger.info("Playback reached end of track")
            self.stop()
            return "ended"
        return None
