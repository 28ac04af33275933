"""Error types for the speakerline diarization core.

Every failure the core raises carries the pipeline stage it originated from
and a JSON serialisable ``context`` payload (file name, stage, counts) so the
surrounding application can log it and pick a localized message.  The
diarization kinds below are stable: callers switch on the class or on the
``kind`` attribute, never on the message text.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

__all__ = [
    "PipelineError",
    "ConfigurationError",
    "DependencyError",
    "DiarizationError",
    "AudioFileNotFound",
    "AudioFileTooSmall",
    "InvalidAudioFormat",
    "NoVoiceDetected",
    "EmbeddingExtractionFailed",
    "ClusteringFailed",
    "InsufficientAudioSamples",
    "attach_context",
    "stage_error",
]


@dataclass(slots=True)
class PipelineError(RuntimeError):
    """Base class for pipeline level failures.

    Attributes
    ----------
    message:
        Human readable description of the failure.
    stage:
        Optional stage identifier (``None`` for configuration level issues).
    context:
        JSON serialisable dictionary with granular diagnostics.
    cause:
        Underlying exception (kept for debugging, not included in ``__str__``).
    """

    message: str
    stage: str | None = None
    context: MutableMapping[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __post_init__(self) -> None:  # pragma: no cover - trivial
        if self.context is None:
            self.context = {}

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ConfigurationError(PipelineError):
    """Raised when configuration validation fails."""


class DependencyError(PipelineError):
    """Raised when runtime dependencies (models, ONNX Runtime) are missing."""


class DiarizationError(PipelineError):
    """Base class of the stable diarization error kinds."""

    kind: ClassVar[str] = "diarization_error"
    default_stage: ClassVar[str | None] = None
    hint: ClassVar[str] = "Check the logs for details."

    @property
    def recovery_hint(self) -> str:
        return self.hint


class AudioFileNotFound(DiarizationError):
    kind = "file_not_found"
    default_stage = "validate"
    hint = "Check that the recording still exists at the given path."


class AudioFileTooSmall(DiarizationError):
    kind = "file_too_small"
    default_stage = "validate"
    hint = "The recording is empty or truncated; record again."


class InvalidAudioFormat(DiarizationError):
    kind = "invalid_audio_format"
    default_stage = "validate"
    hint = "Check audio file format (try converting to WAV 16kHz mono)."


class NoVoiceDetected(DiarizationError):
    kind = "no_voice_detected"
    default_stage = "vad"
    hint = "No speech was found; provide a recording with audible voice."


class EmbeddingExtractionFailed(DiarizationError):
    kind = "embedding_extraction_failed"
    default_stage = "embeddings"
    hint = "Verify the speaker embedding model and that voice segments are long enough."


class ClusteringFailed(DiarizationError):
    kind = "clustering_failed"
    default_stage = "clustering"
    hint = "Internal clustering error; report the recording that triggered it."


class InsufficientAudioSamples(DiarizationError):
    kind = "insufficient_audio_samples"
    default_stage = "profile"
    hint = "Provide at least one enrollment recording."


def attach_context(
    error: PipelineError,
    context: Mapping[str, Any] | None,
) -> PipelineError:
    """Merge ``context`` into ``error.context`` preserving existing keys."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error


def stage_error(
    error_cls: type[DiarizationError],
    message: str,
    *,
    audio_file: str | Path | None = None,
    stage: str | None = None,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> DiarizationError:
    """Build a diarization error with the file name and stage in its context."""

    resolved_stage = stage or error_cls.default_stage
    payload: MutableMapping[str, Any] = {"stage": resolved_stage}
    if audio_file is not None:
        payload["file"] = Path(audio_file).name
    if context:
        payload.update(context)
    if cause:
        payload.setdefault("cause", repr(cause))
    return error_cls(message=message, stage=resolved_stage, context=payload, cause=cause)
