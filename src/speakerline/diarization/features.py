"""Frame-level acoustic features shared by voice activity detection and timeline building."""

from __future__ import annotations

import threading
from collections import OrderedDict
from pathlib import Path

import librosa
import numpy as np

from ..errors import InvalidAudioFormat, stage_error
from ..io.audio import load_audio, validate_audio_file
from ..utils.hash import hash_file
from .config import DiarizationConfig
from .logger import logger
from .models import AudioFeatures

CacheKey = tuple[str, int, int, str]


def feature_cache_key(path: Path) -> CacheKey:
    """Identity of a recording: resolved path, size, mtime and BLAKE2s digest."""

    resolved = path.resolve()
    stat = resolved.stat()
    return (str(resolved), int(stat.st_size), int(stat.st_mtime_ns), hash_file(resolved))


class FeatureCache:
    """Small LRU of extracted features, safe to share between threads."""

    def __init__(self, max_entries: int = 4) -> None:
        self.max_entries = max(0, int(max_entries))
        self._items: OrderedDict[CacheKey, AudioFeatures] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> AudioFeatures | None:
        with self._lock:
            features = self._items.get(key)
            if features is None:
                self.misses += 1
                return None
            self._items.move_to_end(key)
            self.hits += 1
            return features

    def put(self, key: CacheKey, features: AudioFeatures) -> None:
        if self.max_entries == 0:
            return
        with self._lock:
            self._items[key] = features
            self._items.move_to_end(key)
            while len(self._items) > self.max_entries:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class AudioFeatureExtractor:
    """Decode a recording and compute log-mel, MFCC, RMS energy and pitch tracks."""

    def __init__(
        self,
        config: DiarizationConfig | None = None,
        *,
        cache: FeatureCache | None = None,
    ) -> None:
        self.config = config or DiarizationConfig()
        self.cache = cache if cache is not None else FeatureCache(self.config.feature_cache_size)

    def extract_features(self, audio_file: str | Path) -> AudioFeatures:
        path = validate_audio_file(audio_file, min_bytes=self.config.min_file_bytes)
        key = feature_cache_key(path)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("[features] cache hit for %s", path.name)
            return cached

        y, sr = load_audio(path, self.config.target_sr)
        if y.size == 0:
            raise stage_error(
                InvalidAudioFormat, "audio file decoded to zero samples", audio_file=path
            )
        if not np.all(np.isfinite(y)):
            y = np.nan_to_num(y, nan=0.0, posinf=0.0, neginf=0.0)

        features = self.compute(y, sr, source=path)
        self.cache.put(key, features)
        logger.info(
            "[features] %s: %.2fs, %d frames @ %d Hz",
            path.name,
            features.duration,
            features.frame_count,
            sr,
        )
        return features

    def compute(self, y: np.ndarray, sr: int, *, source: Path | None = None) -> AudioFeatures:
        """Compute frame features for mono float32 samples already at ``sr``."""

        cfg = self.config
        y = np.asarray(y, dtype=np.float32)
        mel = librosa.feature.melspectrogram(
            y=y,
            sr=sr,
            n_fft=cfg.n_fft,
            hop_length=cfg.hop_length,
            n_mels=cfg.n_mels,
        )
        log_mel = librosa.power_to_db(mel, ref=1.0)
        mfcc = librosa.feature.mfcc(S=log_mel, n_mfcc=cfg.n_mfcc)
        energy = librosa.feature.rms(
            y=y, frame_length=cfg.n_fft, hop_length=cfg.hop_length, center=True
        )[0]
        pitch = self._pitch_track(y, sr) if cfg.estimate_pitch else None

        frames = min(log_mel.shape[1], mfcc.shape[1], energy.shape[0])
        if pitch is not None:
            frames = min(frames, pitch.shape[0])
            pitch = pitch[:frames].astype(np.float32)

        return AudioFeatures(
            duration=float(y.shape[0]) / float(sr),
            sample_rate=int(sr),
            hop_length=cfg.hop_length,
            spectrogram=log_mel[:, :frames].astype(np.float32),
            mfcc=mfcc[:, :frames].astype(np.float32),
            energy=energy[:frames].astype(np.float32),
            pitch=pitch,
            source=source,
        )

    def _pitch_track(self, y: np.ndarray, sr: int) -> np.ndarray | None:
        cfg = self.config
        try:
            return librosa.yin(
                y,
                fmin=cfg.pitch_fmin,
                fmax=cfg.pitch_fmax,
                sr=sr,
                frame_length=cfg.n_fft,
                hop_length=cfg.hop_length,
                center=True,
            )
        except librosa.util.exceptions.ParameterError as exc:
            logger.warning("[features] pitch estimation disabled for this file: %s", exc)
            return None


__all__ = ["AudioFeatureExtractor", "FeatureCache", "feature_cache_key"]
