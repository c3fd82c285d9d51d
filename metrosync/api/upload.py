"""File upload endpoint for track analysis."""

import asyncio
import logging
import os
import tempfile

from fastapi import APIRouter, File, HTTPException, Query, UploadFile

from metrosync.analysis.cache import AnalysisCache
from metrosync.analysis.engine import AnalysisEngine
from metrosync.analysis.models import TrackAnalysis
from metrosync.api.schemas import AnalysisResponse, ChordEventResponse, KeyResponse
from metrosync.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac", ".wma"}

_engine: AnalysisEngine | None = None


def get_engine() -> AnalysisEngine:
    """Shared engine; backed by the LMDB cache when caching is enabled."""
    global _engine
    if _engine is None:
        cache = AnalysisCache(settings.cache_dir) if settings.cache_enabled else None
        _engine = AnalysisEngine(cache=cache)
    return _engine


def close_engine() -> None:
    global _engine
    if _engine is not None and _engine.cache is not None:
        _engine.cache.close()
    _engine = None


def analysis_to_response(analysis: TrackAnalysis) -> AnalysisResponse:
    return AnalysisResponse(
        bpm=analysis.bpm,
        first_onset=analysis.first_onset,
        key=KeyResponse(
            tonic=analysis.key.tonic,
            mode=analysis.key.mode,
            label=analysis.key.label,
            correlation=analysis.key.correlation,
        ) if analysis.key else None,
        chords=[
            ChordEventResponse(bar=c.bar, beat=c.beat, chord=c.chord, time=c.time)
            for c in analysis.chords
        ],
        duration=analysis.duration,
        beats_per_bar=analysis.beats_per_bar,
    )


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_file(
    file: UploadFile = File(...),
    beats_per_bar: int = Query(4, ge=1, le=16),
):
    """Analyze an uploaded audio file for tempo, onset, key and chords."""
    suffix = ""
    if file.filename and "." in file.filename:
        suffix = "." + file.filename.rsplit(".", 1)[-1].lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    content = await file.read()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    tmp_path = None
    try:
        # librosa needs a file path for some formats
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name

        engine = get_engine()
        loop = asyncio.get_running_loop()
        analysis = await loop.run_in_executor(None, engine.analyze_file, tmp_path, beats_per_bar)
    except Exception as e:
        logger.exception("Analysis failed: %s", e)
        raise HTTPException(500, "Analysis failed")
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass

    if analysis is None:
        raise HTTPException(422, "Could not decode audio")
    return analysis_to_response(analysis)
