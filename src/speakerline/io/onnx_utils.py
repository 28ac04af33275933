"""Utilities for locating and loading ONNX Runtime models."""

from __future__ import annotations

import importlib
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import DependencyError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from onnxruntime import InferenceSession as OrtInferenceSession
else:  # pragma: no cover - runtime safe fallback
    OrtInferenceSession = Any  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)

MODEL_DIR_ENV = "SPEAKERLINE_MODEL_DIR"


def iter_model_roots() -> Iterator[Path]:
    env_root = os.getenv(MODEL_DIR_ENV)
    if env_root:
        yield Path(env_root)
    yield Path.cwd() / "models"
    yield Path.home() / ".cache" / "speakerline" / "models"


def resolve_model_path(
    explicit: str | Path | None,
    *,
    env_var: str,
    relative_candidates: tuple[str | Path, ...],
) -> Path | None:
    """Return the first existing model file among explicit, env and root candidates."""

    if explicit:
        return Path(explicit)
    env_path = os.getenv(env_var)
    if env_path:
        return Path(env_path)
    seen: set[str] = set()
    for root in iter_model_roots():
        for rel in relative_candidates:
            cand = root / Path(rel)
            key = str(cand)
            if key in seen:
                continue
            seen.add(key)
            if cand.exists():
                return cand
    return None


def create_onnx_session(
    model_path: str | Path, *, cpu_only: bool = True, threads: int = 1
) -> OrtInferenceSession:
    """Create an ONNX Runtime session with consistent CPU behaviour."""
    try:
        ort = importlib.import_module("onnxruntime")
    except ImportError as exc:
        raise DependencyError(
            message=f"onnxruntime is not installed: {exc}", stage="embeddings", cause=exc
        ) from exc
    if not Path(model_path).exists():
        raise DependencyError(
            message=f"ONNX model not found: {model_path}",
            stage="embeddings",
            context={"model_path": str(model_path)},
        )
    opts = ort.SessionOptions()
    if threads:
        opts.intra_op_num_threads = threads
        opts.inter_op_num_threads = threads
    opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    providers = ["CPUExecutionProvider"] if cpu_only else ort.get_available_providers()
    try:
        return ort.InferenceSession(str(model_path), providers=providers, sess_options=opts)
    except Exception as exc:  # pragma: no cover - runtime dependent
        raise DependencyError(
            message=f"Failed to initialize ONNX Runtime session for {model_path}: {exc}",
            stage="embeddings",
            context={"model_path": str(model_path)},
            cause=exc,
        ) from exc


__all__ = ["create_onnx_session", "iter_model_roots", "resolve_model_path"]
