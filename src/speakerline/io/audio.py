"""Audio probing, validation and decoding utilities."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path

import numpy as np
import soundfile as sf

from ..errors import AudioFileNotFound, AudioFileTooSmall, InvalidAudioFormat, stage_error

logger = logging.getLogger(__name__)

PCM_FORMATS = {"WAV", "WAVEX", "AIFF", "AIFFC", "FLAC"}
PCM_FALLBACK_SUBTYPES = {"PCM", "FLOAT", "DOUBLE"}
MIN_AUDIO_BYTES = 1024

__all__ = [
    "MIN_AUDIO_BYTES",
    "validate_audio_file",
    "load_audio",
    "decode_audio_segment",
]


def is_uncompressed_pcm(info: sf.Info) -> bool:
    """Return True when libsndfile can seek the file frame-accurately."""

    try:
        fmt = (info.format or "").upper()
        subtype = (info.subtype or "").upper()
    except AttributeError:
        return False

    if fmt not in PCM_FORMATS:
        return False

    return any(token in subtype for token in PCM_FALLBACK_SUBTYPES)


def validate_audio_file(path: str | Path, min_bytes: int = MIN_AUDIO_BYTES) -> Path:
    """Check that ``path`` exists and is not an empty or truncated recording."""

    p = Path(path)
    if not p.is_file():
        raise stage_error(AudioFileNotFound, f"audio file not found: {p}", audio_file=p)
    size = p.stat().st_size
    if size < min_bytes:
        raise stage_error(
            AudioFileTooSmall,
            f"audio file is {size} bytes (minimum {min_bytes})",
            audio_file=p,
            context={"size_bytes": size, "min_bytes": min_bytes},
        )
    return p


def _to_mono(y: np.ndarray) -> np.ndarray:
    if y.ndim > 1:
        y = np.mean(y, axis=1)
    return y


def _resample(y: np.ndarray, sr: int, target_sr: int) -> np.ndarray:
    if sr == target_sr:
        return y
    import soxr  # Local import to avoid dependency at import time

    return soxr.resample(y, sr, target_sr)


def decode_with_ffmpeg(source: Path, target_sr: int) -> tuple[np.ndarray, int]:
    """Decode arbitrary containers via ffmpeg -> temp wav -> soundfile."""

    with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as tmp:
        tmp_wav = tmp.name

    cmd = [
        "ffmpeg",
        "-y",
        "-i",
        str(source),
        "-ac",
        "1",
        "-ar",
        str(target_sr),
        "-f",
        "wav",
        "-loglevel",
        "quiet",
        tmp_wav,
    ]

    try:
        subprocess.run(
            cmd,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=300,
        )
        y, sr = sf.read(tmp_wav, always_2d=False, dtype="float32")
        logger.debug("Decoded %s via ffmpeg", source)
        return _to_mono(y).astype(np.float32), sr
    except subprocess.TimeoutExpired as exc:
        raise stage_error(
            InvalidAudioFormat, "ffmpeg decoding timed out", audio_file=source, cause=exc
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr_output = exc.stderr.decode(errors="ignore") if exc.stderr else "no details"
        raise stage_error(
            InvalidAudioFormat,
            f"ffmpeg cannot decode audio: {stderr_output}",
            audio_file=source,
            cause=exc,
        ) from exc
    finally:
        try:
            os.remove(tmp_wav)
        except OSError:
            pass


def load_audio(path: str | Path, target_sr: int) -> tuple[np.ndarray, int]:
    """Load a whole recording as mono float32 at ``target_sr``.

    libsndfile is tried first; containers it cannot read go through ffmpeg.
    """

    p = Path(path)
    try:
        y, sr = sf.read(p, always_2d=False, dtype="float32")
    except RuntimeError as exc:
        logger.debug("soundfile could not read %s (%s); trying ffmpeg", p, exc)
        try:
            return decode_with_ffmpeg(p, target_sr)
        except FileNotFoundError as ffmpeg_missing:
            raise stage_error(
                InvalidAudioFormat,
                "unsupported container and ffmpeg is not installed",
                audio_file=p,
                stage="features",
                cause=ffmpeg_missing,
            ) from exc
    y = _resample(_to_mono(y), sr, target_sr)
    return np.asarray(y, dtype=np.float32), target_sr


def decode_audio_segment(
    path: str | Path,
    target_sr: int,
    *,
    start: float = 0.0,
    duration: float | None = None,
) -> np.ndarray:
    """Decode a bounded segment from an audio file into float32 samples.

    Each call opens its own handle, so concurrent calls on disjoint spans of
    the same file never share decoder state.
    """

    source = Path(path)
    start = max(0.0, float(start))
    seg_duration = None if duration is None else max(0.0, float(duration))

    try:
        info = sf.info(source)
    except RuntimeError:
        info = None

    if info is not None and is_uncompressed_pcm(info):
        with sf.SoundFile(source) as snd:
            sr_in = int(snd.samplerate)
            snd.seek(max(0, min(int(round(start * sr_in)), snd.frames)))
            frames = -1 if seg_duration is None else int(round(seg_duration * sr_in))
            data = snd.read(frames, dtype="float32", always_2d=False)
        data = _resample(_to_mono(data), sr_in, target_sr)
        return np.asarray(data, dtype=np.float32)

    cmd = [
        "ffmpeg",
        "-y",
        "-ss",
        str(start),
        "-i",
        str(source),
        "-ac",
        "1",
        "-ar",
        str(target_sr),
        "-f",
        "f32le",
        "-loglevel",
        "quiet",
    ]
    if seg_duration is not None and seg_duration > 0:
        cmd.extend(["-t", str(seg_duration)])
    cmd.append("pipe:1")

    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=120, check=False)
    except FileNotFoundError as exc:
        raise stage_error(
            InvalidAudioFormat,
            "ffmpeg is required to decode compressed audio containers",
            audio_file=source,
            stage="embeddings",
            cause=exc,
        ) from exc
    if proc.returncode != 0:
        raise stage_error(
            InvalidAudioFormat,
            f"ffmpeg segment decode failed: {proc.stderr.decode(errors='ignore')}",
            audio_file=source,
            stage="embeddings",
        )

    chunk = proc.stdout
    if len(chunk) % 4 != 0:
        chunk = chunk[: len(chunk) - (len(chunk) % 4)]
    return np.frombuffer(chunk, dtype="<f4").astype(np.float32, copy=False)
