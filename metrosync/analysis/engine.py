"""Analysis orchestrator - runs every detector over one track."""

import logging
import time
from dataclasses import asdict

import numpy as np

from metrosync.analysis.cache import AnalysisCache
from metrosync.analysis.chords import detect_chords
from metrosync.analysis.key import detect_key
from metrosync.analysis.models import SampleBuffer, TrackAnalysis
from metrosync.analysis.onset import detect_first_onset
from metrosync.analysis.tempo import TempoSearchParams, detect_bpm
from metrosync.audio.loader import load_audio
from metrosync.config import settings

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Orchestrates onset, tempo, key and chord analysis.

    Detectors are independent and read the same immutable buffer. A failing
    detector is logged and its result left empty; analysis never raises for
    bad audio content.
    """

    def __init__(self, cache: AnalysisCache | None = None, tempo_params: TempoSearchParams | None = None):
        self.cache = cache
        self.tempo_params = tempo_params

    def analyze_file(self, file_path: str, beats_per_bar: int = 4) -> TrackAnalysis | None:
        """Analyze an audio file; None if it cannot be decoded."""
        try:
            buffer = load_audio(file_path, sr=settings.sample_rate)
        except Exception as e:
            logger.warning("Could not load %s: %s", file_path, e)
            return None
        return self.analyze_buffer(buffer, beats_per_bar=beats_per_bar)

    def analyze_audio(self, audio: np.ndarray, sr: int = 22050, beats_per_bar: int = 4) -> TrackAnalysis:
        """Analyze pre-loaded mono audio data."""
        return self.analyze_buffer(SampleBuffer(samples=audio, sample_rate=sr), beats_per_bar=beats_per_bar)

    def analyze_buffer(self, buffer: SampleBuffer, beats_per_bar: int = 4) -> TrackAnalysis:
        params = self.tempo_params or TempoSearchParams.from_settings()

        audio_hash = params_hash = None
        if self.cache:
            audio_hash = AnalysisCache.audio_hash(buffer)
            params_hash = AnalysisCache.params_hash({
                "tempo": asdict(params),
                "beats_per_bar": beats_per_bar,
                "chroma_frame_size": settings.chroma_frame_size,
                "chord_smoothing_bars": settings.chord_smoothing_bars,
                "chord_min_correlation": settings.chord_min_correlation,
            })
            cached = self.cache.load(audio_hash, params_hash)
            if cached is not None:
                logger.info("Analysis loaded from cache")
                return cached

        logger.info(f"Analyzing {buffer.duration:.1f}s of audio at {buffer.sample_rate}Hz")
        t0 = time.perf_counter()

        logger.info("Step 1: Onset detection")
        first_onset = self._run("onset", detect_first_onset, buffer, default=0.0)

        logger.info("Step 2: Tempo")
        bpm = self._run("tempo", detect_bpm, buffer, params)

        logger.info("Step 3: Key")
        key = self._run("key", detect_key, buffer)

        logger.info("Step 4: Chords")
        chords = self._run(
            "chords", detect_chords, buffer, bpm, beats_per_bar, first_onset, default=[],
        )

        analysis = TrackAnalysis(
            duration=buffer.duration,
            bpm=bpm,
            first_onset=first_onset,
            key=key,
            chords=tuple(chords),
            beats_per_bar=beats_per_bar,
        )
        logger.info(f"Analysis finished in {time.perf_counter() - t0:.2f}s")

        if self.cache and audio_hash:
            self.cache.save(audio_hash, params_hash, analysis)
        return analysis

    @staticmethod
    def _run(name, fn, *args, default=None):
        try:
            return fn(*args)
        except Exception as e:
            logger.warning("%s detection failed: %s", name, e)
            return default
