"""Track analysis cache backed by LMDB.

One entry per (detector code, analysis parameters, decoded audio):

    analysis:{code_hash}:{params_hash}:{audio_hash}   → TrackAnalysis JSON

Editing a detector module or changing a tempo/chord setting yields a new key,
so outdated results are never returned. Entries written under another
``code_hash`` are purged when the cache is opened.
"""

import hashlib
import json
import logging
from pathlib import Path

import lmdb
import numpy as np

from metrosync.analysis.models import SampleBuffer, TrackAnalysis

logger = logging.getLogger(__name__)

# Analyses are small JSON documents; 256 MB of address space is plenty.
_MAP_SIZE = 256 * 1024 * 1024

_PREFIX = "analysis"

# Detector modules (relative to this package) whose source is part of the key.
ANALYSIS_DEPS: tuple[str, ...] = (
    "correlation.py",
    "onset.py",
    "tempo.py",
    "chroma.py",
    "key.py",
    "chords.py",
)


def code_hash(deps: tuple[str, ...] = ANALYSIS_DEPS) -> str:
    """Digest of the detector sources -> 12 hex chars."""
    package_dir = Path(__file__).resolve().parent
    digest = hashlib.sha256()
    for name in sorted(deps):
        source = package_dir / name
        digest.update(name.encode())
        if source.is_file():
            digest.update(source.read_bytes())
    return digest.hexdigest()[:12]


class AnalysisCache:
    """Persistent ``TrackAnalysis`` store.

    Usable as a context manager; ``close`` releases the LMDB environment.
    """

    def __init__(self, path: Path | str = ".cache/analysis.lmdb"):
        self.path = Path(path)
        self.code_hash = code_hash()

        self.path.mkdir(parents=True, exist_ok=True)
        self._env = lmdb.open(str(self.path), map_size=_MAP_SIZE, subdir=True, readahead=False)
        removed = self.purge_stale()
        if removed:
            logger.info("Analysis cache: purged %d entries from older detector code", removed)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @staticmethod
    def audio_hash(buffer: SampleBuffer) -> str:
        """Content hash of the decoded samples and their rate."""
        digest = hashlib.sha256(str(buffer.sample_rate).encode("ascii"))
        digest.update(np.ascontiguousarray(buffer.samples, dtype=np.float64).tobytes())
        return digest.hexdigest()[:16]

    @staticmethod
    def params_hash(params: dict) -> str:
        """Hash of the analysis parameters that influence the result."""
        payload = json.dumps(params, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode()).hexdigest()[:12]

    def _key(self, audio_hash: str, params_hash: str) -> bytes:
        return f"{_PREFIX}:{self.code_hash}:{params_hash}:{audio_hash}".encode()

    def load(self, audio_hash: str, params_hash: str) -> TrackAnalysis | None:
        with self._env.begin() as txn:
            raw = txn.get(self._key(audio_hash, params_hash))
        if raw is None:
            return None
        try:
            return TrackAnalysis.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt cache entry for %s: %s", audio_hash, e)
            return None

    def save(self, audio_hash: str, params_hash: str, analysis: TrackAnalysis) -> None:
        payload = json.dumps(analysis.to_dict()).encode()
        with self._env.begin(write=True) as txn:
            txn.put(self._key(audio_hash, params_hash), payload)

    def purge_stale(self) -> int:
        """Delete entries whose code hash differs from the current one."""
        current = f"{_PREFIX}:{self.code_hash}:".encode()
        with self._env.begin(write=True) as txn:
            stale = [key for key in txn.cursor().iternext(values=False) if not key.startswith(current)]
            for key in stale:
                txn.delete(key)
        return len(stale)

    def close(self) -> None:
        if self._env is not None:
            self._env.close()
            self._env = None
