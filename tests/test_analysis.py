"""Tests for the correlation, onset, tempo, key and chord detectors."""

import numpy as np
import pytest

from metrosync.analysis.chords import CHORD_TEMPLATES, chord_at, chord_at_time, detect_chords, match_chord
from metrosync.analysis.chroma import analysis_frames, chroma_of
from metrosync.analysis.correlation import correlation_magnitude, correlation_spectrum, pearson
from metrosync.analysis.key import MAJOR_PROFILE, MINOR_PROFILE, detect_key, match_key
from metrosync.analysis.models import NO_CHORD, CorrelationCandidate, SampleBuffer
from metrosync.analysis.onset import detect_first_onset
from metrosync.analysis.tempo import (
    TempoSearchParams,
    amplitude_envelope,
    detect_bpm,
    refinement_centers,
    resolve_octave,
)
from tests.conftest import SR, generate_click_track, generate_progression, generate_tones


class TestCorrelation:
    def test_spectrum_peak_at_sinusoid_frequency(self):
        rate = 100.0
        t = np.arange(int(60 * rate)) / rate
        envelope = 1.0 + np.sin(2 * np.pi * 2.0 * t)  # 2 Hz = 120 BPM

        bpms = np.round(np.arange(117.0, 123.0, 0.01), 2)
        magnitudes = correlation_spectrum(envelope, rate, bpms / 60.0)
        assert abs(bpms[np.argmax(magnitudes)] - 120.0) <= 0.01

    def test_spectrum_matches_single_magnitude(self):
        rng = np.random.default_rng(0)
        x = rng.standard_normal(500)
        freqs = np.array([1.5, 3.25, 7.0])
        spectrum = correlation_spectrum(x, 50.0, freqs)
        for f, m in zip(freqs, spectrum):
            assert m == pytest.approx(correlation_magnitude(x, 50.0, f))

    def test_spectrum_rows(self):
        x = np.zeros((3, 64))
        x[1] = np.cos(2 * np.pi * 4 * np.arange(64) / 64)
        out = correlation_spectrum(x, 64.0, [4.0, 8.0])
        assert out.shape == (3, 2)
        assert out[1, 0] == pytest.approx(32.0)
        assert out[0, 0] == 0.0

    def test_empty_input(self):
        assert correlation_magnitude(np.array([]), 100.0, 2.0) == 0.0
        assert correlation_spectrum(np.array([]), 100.0, [1.0, 2.0]).tolist() == [0.0, 0.0]

    def test_pearson_constant_vector_is_zero(self):
        assert pearson(np.ones(12), np.arange(12)) == 0.0
        assert pearson(np.arange(5), np.arange(5)) == pytest.approx(1.0)


class TestOnset:
    def test_silent_buffer(self):
        assert detect_first_onset(SampleBuffer(np.zeros(SR), SR)) == 0.0

    def test_empty_buffer(self):
        assert detect_first_onset(SampleBuffer(np.zeros(0), SR)) == 0.0

    def test_leading_silence(self):
        k = 11025
        samples = np.concatenate([np.zeros(k), np.full(100, 0.8)])
        assert detect_first_onset(SampleBuffer(samples, SR)) == pytest.approx(k / SR)

    def test_noise_floor_ignored(self):
        k = 500
        samples = np.concatenate([np.full(k, 0.04), np.ones(10)])
        assert detect_first_onset(SampleBuffer(samples, SR)) == pytest.approx(k / SR)

    def test_click_track_start(self):
        audio = generate_click_track(bpm=120, duration_seconds=5, start_seconds=0.75)
        onset = detect_first_onset(SampleBuffer(audio, SR))
        assert onset == pytest.approx(0.75, abs=0.005)


class TestTempo:
    def test_envelope_frames(self):
        env, rate = amplitude_envelope(np.ones(SR), SR, 0.05, 0.01)
        assert rate == pytest.approx(SR / 220)
        assert len(env) == len(range(0, SR - 1102, 220))
        assert np.allclose(env, 1.0)

    def test_envelope_too_short(self):
        env, _ = amplitude_envelope(np.ones(100), SR)
        assert env.size == 0

    def test_120_bpm_click_track(self, click_120):
        bpm = detect_bpm(SampleBuffer(click_120, SR))
        assert bpm == pytest.approx(120.0, abs=0.5)

    def test_slow_click_track_is_doubled(self, click_96):
        """Tops below the split are read as half the perceived tempo."""
        bpm = detect_bpm(SampleBuffer(click_96, SR))
        assert bpm == pytest.approx(192.0, abs=0.5)

    def test_silence_has_no_tempo(self):
        assert detect_bpm(SampleBuffer(np.zeros(SR * 3), SR)) is None

    def test_refinement_centers_include_doubles(self):
        params = TempoSearchParams()
        coarse = [CorrelationCandidate(96.0, 5.0), CorrelationCandidate(150.0, 4.0)]
        assert refinement_centers(coarse, params) == [96.0, 192.0, 150.0]


class TestResolveOctave:
    def test_fast_top_is_rounded(self):
        cands = [CorrelationCandidate(128.04, 10.0), CorrelationCandidate(64.02, 8.0)]
        assert resolve_octave(cands) == 128.0

    def test_doubled_region_weighted(self):
        cands = [
            CorrelationCandidate(96.0, 10.0),
            CorrelationCandidate(192.0, 8.0),
            CorrelationCandidate(191.9, 5.0),
            CorrelationCandidate(192.1, 5.0),
            CorrelationCandidate(195.0, 1.0),  # outside the weighting window
        ]
        assert resolve_octave(cands) == pytest.approx(192.0)

    def test_fallback_doubles_90_to_100(self):
        cands = [
            CorrelationCandidate(96.0, 10.0),
            CorrelationCandidate(95.9, 9.0),
            CorrelationCandidate(96.1, 9.0),
            CorrelationCandidate(70.0, 2.0),
        ]
        assert resolve_octave(cands) == pytest.approx(192.0)

    def test_slow_top_without_companions(self):
        assert resolve_octave([CorrelationCandidate(80.004, 3.0)]) == 80.0

    def test_empty(self):
        assert resolve_octave([]) is None


class TestKey:
    def test_profile_itself_is_c_major(self):
        result = match_key(MAJOR_PROFILE)
        assert result.label == "C Major"
        assert result.correlation == pytest.approx(1.0)

    def test_rotated_minor_profile(self):
        result = match_key(np.roll(MINOR_PROFILE, 9))
        assert result.label == "A Minor"

    def test_wrong_shape(self):
        assert match_key(np.ones(7)) is None

    @pytest.mark.parametrize("tonic,label", [(0, "C Major"), (7, "G Major")])
    def test_detect_key_from_tones(self, tonic, label):
        profile = np.roll(MAJOR_PROFILE, tonic)
        audio = generate_tones({60 + pc: profile[pc] / 10 for pc in range(12)}, 2.0)
        result = detect_key(SampleBuffer(audio, SR))
        assert result.label == label
        assert result.correlation > 0.99

    def test_silence_has_no_key(self):
        assert detect_key(SampleBuffer(np.zeros(SR * 2), SR)) is None


class TestChroma:
    def test_short_signal_padded(self):
        frames = analysis_frames(np.ones(100), 8192, 4096, pad_short=True)
        assert frames.shape == (1, 8192)
        assert analysis_frames(np.ones(100), 8192, 4096).shape == (0, 8192)

    def test_triad_chroma(self):
        chroma = chroma_of(generate_tones({60: 0.3, 64: 0.3, 67: 0.3}, 1.0), SR)
        assert set(np.flatnonzero(chroma > chroma.max() * 0.01)) == {0, 4, 7}


class TestChords:
    def test_template_count(self):
        assert len(CHORD_TEMPLATES) == 96

    def test_match_triad(self):
        chroma = np.zeros(12)
        chroma[[9, 0, 4]] = 1.0
        assert match_chord(chroma)[0] == "Am"

    def test_match_seventh(self):
        chroma = np.zeros(12)
        chroma[[7, 11, 2, 5]] = 1.0
        assert match_chord(chroma)[0] == "G7"

    def test_flat_chroma_is_no_chord(self):
        assert match_chord(np.ones(12))[0] == NO_CHORD

    def test_cutoff(self):
        chroma = np.zeros(12)
        chroma[[0, 4, 7]] = 1.0
        assert match_chord(chroma, min_correlation=1.5)[0] == NO_CHORD

    def test_silence_is_no_chord(self):
        assert match_chord(np.zeros(12)) == (NO_CHORD, 0.0)
        assert match_chord(None) == (NO_CHORD, 0.0)

    def test_no_tempo_no_chords(self):
        audio = generate_progression(["C", "G"])
        assert detect_chords(SampleBuffer(audio, SR), None) == []

    def test_progression_round_trip(self):
        progression = ["C", "C", "G", "G", "Am", "Am", "F", "F"]
        buffer = SampleBuffer(generate_progression(progression), SR)
        events = detect_chords(buffer, 120.0, smoothing_bars=1)

        assert [(e.bar, e.chord) for e in events] == [(0, "C"), (2, "G"), (4, "Am"), (6, "F")]
        assert all(e.beat == 0 for e in events)
        for bar, expected in enumerate(progression):
            assert chord_at(events, bar) == expected
            assert chord_at_time(events, bar * 2.0 + 0.5) == expected

    def test_smoothing_delays_change(self):
        buffer = SampleBuffer(generate_progression(["C"] * 4 + ["Am"] * 4), SR)
        events = detect_chords(buffer, 120.0)
        assert [(e.bar, e.chord) for e in events] == [(0, "C"), (6, "Am")]
        assert events[1].time == pytest.approx(12.0)

    def test_offset_shifts_bars(self):
        audio = np.concatenate([np.zeros(SR // 2), generate_progression(["C", "G"])])
        events = detect_chords(SampleBuffer(audio, SR), 120.0, offset=0.5, smoothing_bars=1)
        assert [(e.bar, e.chord) for e in events] == [(0, "C"), (1, "G")]
        assert events[0].time == pytest.approx(0.5)

    def test_chord_at_before_first_event(self):
        assert chord_at([], 3) is None
        assert chord_at_time([], 1.0) is None
