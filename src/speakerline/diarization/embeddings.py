"""Speaker embedding extractors.

``SpeakerEmbeddingExtractor`` is the capability the pipeline depends on.  Two
implementations ship with the package: a model-free MFCC statistics extractor
(default, deterministic) and an ECAPA-TDNN encoder served through ONNX
Runtime.  Every extractor decodes its own window, so concurrent calls on
disjoint spans of one file are safe.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path

import librosa
import numpy as np

from ..errors import (
    DependencyError,
    EmbeddingExtractionFailed,
    InvalidAudioFormat,
    stage_error,
)
from ..io.audio import decode_audio_segment
from ..io.onnx_utils import create_onnx_session, resolve_model_path
from .config import DiarizationConfig
from .logger import logger
from .models import SpeakerEmbedding

ECAPA_ENV = "ECAPA_ONNX_PATH"
ECAPA_CANDIDATES: tuple[str | Path, ...] = (
    Path("ecapa_onnx") / "ecapa_tdnn.onnx",
    Path("Diarization") / "ecapa-onnx" / "ecapa_tdnn.onnx",
    "ecapa_tdnn.onnx",
)


class SpeakerEmbeddingExtractor(ABC):
    """Turn a window of a recording into a fixed-length voice embedding."""

    dimension: int

    @abstractmethod
    def extract_embedding(
        self, audio_file: str | Path, start_time: float, duration: float
    ) -> SpeakerEmbedding:
        """Raise ``EmbeddingExtractionFailed`` when the window cannot be embedded."""


class _WindowedExtractor(SpeakerEmbeddingExtractor):
    def __init__(self, config: DiarizationConfig | None = None) -> None:
        self.config = config or DiarizationConfig()

    def _load_window(self, audio_file: str | Path, start_time: float, duration: float) -> np.ndarray:
        cfg = self.config
        context = {"start_time": round(float(start_time), 3), "duration": round(float(duration), 3)}
        if duration < cfg.min_embedding_window_sec:
            raise stage_error(
                EmbeddingExtractionFailed,
                f"window of {duration:.2f}s is shorter than the "
                f"{cfg.min_embedding_window_sec:.2f}s minimum",
                audio_file=audio_file,
                context=context,
            )
        try:
            window = decode_audio_segment(
                audio_file, cfg.target_sr, start=start_time, duration=duration
            )
        except InvalidAudioFormat as exc:
            raise stage_error(
                EmbeddingExtractionFailed,
                f"could not decode window: {exc.message}",
                audio_file=audio_file,
                context=context,
                cause=exc,
            ) from exc
        if window.size < int(cfg.min_embedding_window_sec * cfg.target_sr):
            raise stage_error(
                EmbeddingExtractionFailed,
                f"decoded only {window.size} samples",
                audio_file=audio_file,
                context=context,
            )
        return np.nan_to_num(window.astype(np.float32, copy=False))


class MFCCStatisticsExtractor(_WindowedExtractor):
    """Deterministic embedding from MFCC and spectral shape statistics.

    The vector holds the mean and standard deviation of MFCC 1..n (c0 is the
    frame loudness and is skipped), of their deltas, and of four spectral
    shape descriptors.  It is L2 normalised and zero padded to
    ``config.embedding_dim`` so it can sit beside model embeddings of the
    same width.
    """

    def __init__(self, config: DiarizationConfig | None = None) -> None:
        super().__init__(config)
        self.dimension = self.config.embedding_dim

    def extract_embedding(
        self, audio_file: str | Path, start_time: float, duration: float
    ) -> SpeakerEmbedding:
        y = self._load_window(audio_file, start_time, duration)
        vector = self.embed_samples(y, self.config.target_sr)
        return SpeakerEmbedding(vector=vector, timestamp=float(start_time), duration=float(duration))

    def embed_samples(self, y: np.ndarray, sr: int) -> np.ndarray:
        cfg = self.config
        mfcc = librosa.feature.mfcc(
            y=y, sr=sr, n_mfcc=cfg.n_mfcc, n_fft=cfg.n_fft, hop_length=cfg.hop_length
        )[1:]
        width = min(9, mfcc.shape[1] - (1 - mfcc.shape[1] % 2))
        if width >= 3:
            delta = librosa.feature.delta(mfcc, width=width)
        else:
            delta = np.zeros_like(mfcc)
        spectral = np.vstack(
            [
                librosa.feature.spectral_centroid(
                    y=y, sr=sr, n_fft=cfg.n_fft, hop_length=cfg.hop_length
                )[0]
                / (sr / 2.0),
                librosa.feature.spectral_bandwidth(
                    y=y, sr=sr, n_fft=cfg.n_fft, hop_length=cfg.hop_length
                )[0]
                / (sr / 2.0),
                librosa.feature.spectral_flatness(y=y, n_fft=cfg.n_fft, hop_length=cfg.hop_length)[0],
                librosa.feature.zero_crossing_rate(
                    y, frame_length=cfg.n_fft, hop_length=cfg.hop_length
                )[0],
            ]
        )
        stats = np.concatenate(
            [
                mfcc.mean(axis=1),
                mfcc.std(axis=1),
                delta.mean(axis=1),
                delta.std(axis=1),
                spectral.mean(axis=1),
                spectral.std(axis=1),
            ]
        ).astype(np.float64)
        stats = np.nan_to_num(stats)
        norm = float(np.linalg.norm(stats))
        if norm > 0.0:
            stats = stats / norm
        out = np.zeros(self.dimension, dtype=np.float32)
        take = min(self.dimension, stats.shape[0])
        out[:take] = stats[:take]
        return out


class ECAPAEmbeddingExtractor(_WindowedExtractor):
    """ECAPA-TDNN speaker encoder served through ONNX Runtime."""

    def __init__(
        self, config: DiarizationConfig | None = None, model_path: Path | None = None
    ) -> None:
        super().__init__(config)
        path = resolve_model_path(
            model_path or self.config.ecapa_model_path,
            env_var=ECAPA_ENV,
            relative_candidates=ECAPA_CANDIDATES,
        )
        if path is None:
            raise DependencyError(
                message="ECAPA ONNX model not found; set ECAPA_ONNX_PATH or SPEAKERLINE_MODEL_DIR",
                stage="embeddings",
            )
        self.model_path = path
        self.session = create_onnx_session(path)
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        out_shape = self.session.get_outputs()[0].shape
        last = out_shape[-1] if out_shape else None
        self.dimension = int(last) if isinstance(last, int) and last > 0 else 192
        logger.info("ECAPA ONNX model loaded: %s (dim=%d)", path, self.dimension)

    def extract_embedding(
        self, audio_file: str | Path, start_time: float, duration: float
    ) -> SpeakerEmbedding:
        y = self._load_window(audio_file, start_time, duration)
        try:
            vector = self.embed_samples(y, self.config.target_sr)
        except Exception as exc:  # onnxruntime raises its own exception types
            raise stage_error(
                EmbeddingExtractionFailed,
                f"ECAPA inference failed: {exc}",
                audio_file=audio_file,
                context={"start_time": round(float(start_time), 3)},
                cause=exc,
            ) from exc
        return SpeakerEmbedding(vector=vector, timestamp=float(start_time), duration=float(duration))

    def embed_samples(self, y: np.ndarray, sr: int) -> np.ndarray:
        mel = librosa.feature.melspectrogram(
            y=y,
            sr=sr,
            n_fft=400,
            hop_length=160,
            n_mels=80,
            fmin=20,
            fmax=sr / 2,
        )
        mel = librosa.power_to_db(mel, ref=1.0).T
        m = mel.mean(axis=0, keepdims=True)
        s = mel.std(axis=0, keepdims=True) + 1e-8
        mel = (mel - m) / s
        inputs = np.transpose(mel[np.newaxis, ...].astype(np.float32), (0, 2, 1))
        outputs = self.session.run([self.output_name], {self.input_name: inputs})
        vec = np.asarray(outputs[0][0], dtype=np.float32).reshape(-1)
        norm = np.linalg.norm(vec)
        return vec / (norm + 1e-8)


def build_embedding_extractor(config: DiarizationConfig | None = None) -> SpeakerEmbeddingExtractor:
    """ECAPA when a model is configured, MFCC statistics otherwise.

    An explicitly configured model that fails to load is an error; the MFCC
    fallback only covers the case where no model was asked for.
    """

    cfg = config or DiarizationConfig()
    if cfg.ecapa_model_path is not None or os.getenv(ECAPA_ENV):
        return ECAPAEmbeddingExtractor(cfg)
    logger.info("No ECAPA model configured; using MFCC statistics embeddings")
    return MFCCStatisticsExtractor(cfg)


__all__ = [
    "ECAPAEmbeddingExtractor",
    "MFCCStatisticsExtractor",
    "SpeakerEmbeddingExtractor",
    "build_embedding_extractor",
]
