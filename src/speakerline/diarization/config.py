"""Per-call options and engine tuning for the diarization core."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError


def bool_env(name: str) -> bool | None:
    val = os.getenv(name)
    if val is None:
        return None
    norm = val.strip().lower()
    if norm in {"1", "true", "yes", "on"}:
        return True
    if norm in {"0", "false", "no", "off"}:
        return False
    return None


def _ensure_numeric_range(
    name: str,
    value: float,
    *,
    ge: float | None = None,
    gt: float | None = None,
    le: float | None = None,
    lt: float | None = None,
) -> None:
    """Validate numeric range constraints for configuration fields."""

    if ge is not None and value < ge:
        raise ConfigurationError(message=f"{name} must be >= {ge}", context={name: value})
    if gt is not None and value <= gt:
        raise ConfigurationError(message=f"{name} must be > {gt}", context={name: value})
    if le is not None and value > le:
        raise ConfigurationError(message=f"{name} must be <= {le}", context={name: value})
    if lt is not None and value >= lt:
        raise ConfigurationError(message=f"{name} must be < {lt}", context={name: value})


@dataclass(slots=True, frozen=True)
class DiarizationOptions:
    """Options for a single diarization call."""

    expected_speaker_count: int | None = None
    min_speaker_duration: float = 1.0
    max_speakers: int = 10
    enable_speaker_identification: bool = False
    vad_threshold: float = 0.5

    def __post_init__(self) -> None:
        _ensure_numeric_range("max_speakers", self.max_speakers, ge=1)
        if self.expected_speaker_count is not None:
            _ensure_numeric_range("expected_speaker_count", self.expected_speaker_count, ge=1)
        _ensure_numeric_range("min_speaker_duration", self.min_speaker_duration, ge=0.0)
        _ensure_numeric_range("vad_threshold", self.vad_threshold, ge=0.0, le=1.0)


@dataclass(slots=True)
class DiarizationConfig:
    target_sr: int = 16000
    n_fft: int = 1024
    hop_length: int = 160
    n_mels: int = 64
    n_mfcc: int = 20
    estimate_pitch: bool = True
    pitch_fmin: float = 65.0
    pitch_fmax: float = 400.0
    min_file_bytes: int = 1024
    # Frames quieter than this (dB relative to the loudest frame) count as silence.
    vad_floor_db: float = -60.0
    vad_min_silence_sec: float = 0.3
    # Split long voice regions so one embedding never covers minutes of audio.
    max_segment_sec: float = 30.0
    similarity_threshold: float = 0.7
    embedding_dim: int = 512
    min_embedding_window_sec: float = 0.5
    max_concurrent_embeddings: int = 4
    feature_cache_size: int = 4
    ecapa_model_path: Path | None = None

    def __post_init__(self) -> None:
        if self.ecapa_model_path is not None:
            self.ecapa_model_path = Path(self.ecapa_model_path)
        _ensure_numeric_range("target_sr", self.target_sr, gt=0)
        _ensure_numeric_range("n_fft", self.n_fft, gt=0)
        _ensure_numeric_range("hop_length", self.hop_length, gt=0)
        _ensure_numeric_range("n_mels", self.n_mels, gt=0)
        _ensure_numeric_range("n_mfcc", self.n_mfcc, gt=1)
        _ensure_numeric_range("pitch_fmin", self.pitch_fmin, gt=0.0)
        _ensure_numeric_range("pitch_fmax", self.pitch_fmax, gt=self.pitch_fmin)
        _ensure_numeric_range("min_file_bytes", self.min_file_bytes, ge=0)
        _ensure_numeric_range("vad_floor_db", self.vad_floor_db, lt=0.0)
        _ensure_numeric_range("vad_min_silence_sec", self.vad_min_silence_sec, ge=0.0)
        _ensure_numeric_range("max_segment_sec", self.max_segment_sec, ge=0.0)
        _ensure_numeric_range("similarity_threshold", self.similarity_threshold, ge=-1.0, le=1.0)
        _ensure_numeric_range("embedding_dim", self.embedding_dim, gt=0)
        _ensure_numeric_range("min_embedding_window_sec", self.min_embedding_window_sec, ge=0.0)
        _ensure_numeric_range("max_concurrent_embeddings", self.max_concurrent_embeddings, ge=1)
        _ensure_numeric_range("feature_cache_size", self.feature_cache_size, ge=0)

    @property
    def frame_sec(self) -> float:
        return self.hop_length / float(self.target_sr)

    @classmethod
    def from_env(cls, prefix: str = "SPEAKERLINE_", **overrides: Any) -> DiarizationConfig:
        """Build a config from ``<prefix><FIELD>`` environment variables."""

        values: dict[str, Any] = {}
        for f in fields(cls):
            env_name = f"{prefix}{f.name.upper()}"
            raw = os.getenv(env_name)
            if raw is None:
                continue
            default = f.default
            if isinstance(default, bool):
                parsed = bool_env(env_name)
                if parsed is None:
                    raise ConfigurationError(
                        message=f"{env_name} must be a boolean", context={env_name: raw}
                    )
                values[f.name] = parsed
                continue
            try:
                if isinstance(default, int):
                    values[f.name] = int(raw)
                elif isinstance(default, float):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = Path(raw) if raw.strip() else None
            except ValueError as exc:
                raise ConfigurationError(
                    message=f"{env_name} has invalid value {raw!r}",
                    context={env_name: raw},
                    cause=exc,
                ) from exc
        values.update(overrides)
        return cls(**values)


__all__ = ["DiarizationConfig", "DiarizationOptions", "bool_env"]
