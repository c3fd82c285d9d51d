"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio
    sample_rate: int = 22050
    mono: bool = True

    # Tempo analysis
    min_bpm: float = 60.0
    max_bpm: float = 240.0
    bpm_analysis_seconds: float = 100.0
    envelope_window_seconds: float = 0.05
    envelope_hop_seconds: float = 0.01
    coarse_bpm_step: float = 0.1
    fine_bpm_step: float = 0.01
    fine_bpm_span: float = 3.0
    coarse_peak_count: int = 10
    octave_split_bpm: float = 100.0
    octave_search_window: float = 5.0
    octave_weight_window: float = 0.3
    octave_fallback_range: tuple[float, float] = (90.0, 100.0)
    octave_fallback_top_n: int = 20

    # Onset
    onset_threshold_ratio: float = 0.05

    # Key / chords
    chroma_frame_size: int = 8192
    chroma_subsample: int = 8
    chroma_min_midi: int = 28
    chroma_max_midi: int = 103
    chord_smoothing_bars: int = 5
    chord_min_correlation: float = 0.35

    # Scheduler
    tick_interval: float = 0.025  # s between scheduler polls
    lookahead: float = 0.1  # s scheduled ahead of the audio clock
    playhead_interval: float = 0.05
    min_loop_seconds: float = 1.0
    tap_window_seconds: float = 2.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    # Cache
    cache_dir: str = ".cache/analysis.lmdb"
    cache_enabled: bool = False

    model_config = {"env_prefix": "METROSYNC_"}


settings = Settings()
