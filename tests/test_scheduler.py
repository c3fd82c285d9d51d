"""Tests for the look-ahead beat scheduler, run on virtual time."""

import pytest

from metrosync.scheduling.clock import ManualClock, ManualTimers
from metrosync.scheduling.scheduler import BeatScheduler
from metrosync.scheduling.sounds import RhythmPattern, SoundType
from metrosync.scheduling.tap import TapTempo


@pytest.fixture
def scheduler(clock, timers, renderer):
    return BeatScheduler(clock, renderer=renderer, timers=timers, tempo=120, beats_per_bar=4)


class TestStartStop:
    def test_first_beat_is_immediate(self, scheduler, renderer):
        scheduler.start()
        assert len(renderer.events) == 1
        first = renderer.events[0]
        assert first.time == 0.0
        assert first.beat_in_bar == 0
        assert first.accent

    def test_beats_follow_tempo(self, scheduler, timers, renderer):
        scheduler.start()
        timers.advance(2.0)
        beats = renderer.main_beats
        assert [e.time for e in beats] == pytest.approx([0.0, 0.5, 1.0, 1.5, 2.0])
        assert [e.beat_in_bar for e in beats] == [0, 1, 2, 3, 0]
        assert [e.accent for e in beats] == [True, False, False, False, True]

    def test_events_are_scheduled_ahead(self, scheduler, clock, timers):
        seen = []
        scheduler.add_listener(lambda e: seen.append((e.time, clock.now())))
        scheduler.start()
        timers.advance(3.0)
        for event_time, emitted_at in seen:
            assert event_time >= emitted_at
            assert event_time - emitted_at < scheduler.lookahead + 1e-9

    def test_counter_invariant(self, scheduler, timers):
        times = []
        scheduler.add_listener(lambda e: times.append(e.time))
        scheduler.start()
        for _ in range(40):
            timers.advance(0.11)
            state = scheduler.state
            assert state.current_beat_in_bar == state.total_beats % state.beats_per_bar
            assert state.next_event_time > times[-1]
        assert all(a < b for a, b in zip(times, times[1:]))

    def test_stop_resets_and_cancels(self, scheduler, timers, renderer):
        scheduler.start()
        timers.advance(1.0)
        scheduler.stop()
        count = len(renderer.events)

        timers.advance(2.0)
        assert len(renderer.events) == count
        assert timers.pending == 0
        state = scheduler.state
        assert (state.total_beats, state.current_beat_in_bar, state.running) == (0, 0, False)

    def test_stale_tick_is_dropped(self, scheduler, clock):
        scheduler.start()
        old = scheduler.generation
        scheduler.stop()
        scheduler.start()
        clock.advance(1.0)
        assert scheduler.tick(old) == []
        assert scheduler.tick(scheduler.generation) != []

    def test_restart_leaves_one_timer(self, scheduler, timers, renderer):
        for _ in range(3):
            scheduler.start()
            scheduler.stop()
        scheduler.start()
        assert timers.pending == 1
        timers.advance(1.0)
        assert [e.time for e in renderer.main_beats[-3:]] == pytest.approx([0.0, 0.5, 1.0])
        assert {e.generation for e in renderer.events[-3:]} == {scheduler.generation}

    def test_start_twice_is_noop(self, scheduler, renderer):
        scheduler.start()
        generation = scheduler.generation
        scheduler.start()
        assert scheduler.generation == generation
        assert len(renderer.events) == 1

    def test_start_at_phase(self, clock, renderer):
        scheduler = BeatScheduler(clock, renderer=renderer, beats_per_bar=3)
        scheduler.start(total_beats=7, first_event_time=0.05)
        assert renderer.events[0].total_beats == 7
        assert renderer.events[0].beat_in_bar == 1
        assert renderer.events[0].time == 0.05


class TestSettings:
    def test_tempo_is_clamped(self, scheduler):
        assert scheduler.set_tempo(0) == 1.0
        assert scheduler.set_tempo(1000) == 300.0

    def test_tempo_change_applies_to_next_beat(self, scheduler, timers, renderer):
        scheduler.start()
        timers.advance(0.45)
        scheduler.set_tempo(60)
        timers.advance(2.0)
        times = [e.time for e in renderer.main_beats]
        # the beat at 1.0 was already due when the tempo changed
        assert times[:4] == pytest.approx([0.0, 0.5, 1.0, 2.0])

    def test_beats_per_bar_change(self, scheduler, timers):
        scheduler.start()
        timers.advance(2.45)
        scheduler.set_beats_per_bar(3)
        state = scheduler.state
        assert state.current_beat_in_bar == state.total_beats % 3

    def test_invalid_beats_per_bar(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.set_beats_per_bar(0)


class TestSubdivisions:
    def test_triplets(self, clock, renderer):
        scheduler = BeatScheduler(clock, renderer=renderer, tempo=60, rhythm=RhythmPattern.TRIPLET)
        scheduler.start()
        events = renderer.events
        assert [e.sub_index for e in events] == [0, 1, 2]
        assert [e.time for e in events] == pytest.approx([0.0, 1 / 3, 2 / 3])
        assert [e.subdivision for e in events] == [False, True, True]
        assert events[0].accent and not events[1].accent

    def test_subdivision_volume_and_tone(self, clock, renderer):
        scheduler = BeatScheduler(
            clock, renderer=renderer, rhythm=RhythmPattern.EIGHTH,
            sound_type=SoundType.WOOD, volume=0.5, subdivision_volume=0.25,
        )
        scheduler.start()
        main, sub = renderer.events
        assert main.tone.frequency == 220.0
        assert main.volume == pytest.approx(0.5 * 0.8)
        assert sub.tone.frequency == 300.0
        assert sub.volume == pytest.approx(0.25 * 0.8)

    @pytest.mark.parametrize("pattern,divisions", [
        (RhythmPattern.SIMPLE, 1),
        (RhythmPattern.EIGHTH, 2),
        (RhythmPattern.SIXTEENTH, 4),
        (RhythmPattern.SEXTUPLET, 6),
    ])
    def test_divisions(self, pattern, divisions):
        assert pattern.divisions == divisions

    def test_click_accent_gain(self, clock, renderer):
        scheduler = BeatScheduler(clock, renderer=renderer, volume=0.6)
        scheduler.start()
        assert renderer.events[0].tone.frequency == 1000.0
        assert renderer.events[0].volume == pytest.approx(0.9)


class TestTimers:
    def test_manual_clock_cannot_go_back(self):
        clock = ManualClock(5.0)
        with pytest.raises(ValueError):
            clock.set(4.0)

    def test_after_fires_once(self, clock):
        timers = ManualTimers(clock)
        fired = []
        timers.after(0.3, lambda: fired.append(clock.now()))
        timers.advance(1.0)
        assert fired == [pytest.approx(0.3)]
        assert clock.now() == pytest.approx(1.0)

    def test_cancelled_timer_never_fires(self, clock):
        timers = ManualTimers(clock)
        fired = []
        handle = timers.every(0.1, lambda: fired.append(1))
        timers.advance(0.25)
        handle.cancel()
        timers.advance(1.0)
        assert len(fired) == 2


class TestTapTempo:
    def test_two_taps_give_tempo(self):
        tap = TapTempo()
        assert tap.tap(0.0) is None
        assert tap.tap(0.5) == 120

    def test_average_interval(self):
        tap = TapTempo()
        for t in (0.0, 0.5, 1.0, 1.3):
            bpm = tap.tap(t)
        assert bpm == 138

    def test_old_taps_expire(self):
        tap = TapTempo()
        tap.tap(0.0)
        tap.tap(0.5)
        assert tap.tap(3.0) is None
        assert tap.tap(3.4) == 150
