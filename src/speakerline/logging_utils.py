from __future__ import annotations

import json
import logging
import time
import uuid
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np


def _make_json_safe(obj: Any) -> Any:
    """Recursively convert values into JSON-serialisable types."""
    if isinstance(obj, Path):
        return obj.as_posix()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, dict):
        return {key: _make_json_safe(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_make_json_safe(value) for value in obj]
    return obj


class JSONLWriter:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text("", encoding="utf-8")

    def emit(self, record: dict[str, Any]) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(_make_json_safe(record), ensure_ascii=False) + "\n")
        except OSError as exc:
            logging.getLogger(__name__).warning(
                "Could not write to event log %s: %s", self.path, exc
            )


@dataclass
class RunStats:
    """Timings, counters, warnings and failures of one service call."""

    run_id: str
    file_id: str
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    stage_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def mark(self, stage: str, elapsed_ms: float, counts: dict[str, int] | None = None) -> None:
        self.stage_timings_ms[stage] = self.stage_timings_ms.get(stage, 0.0) + float(elapsed_ms)
        if counts:
            self.count(stage, **counts)

    def count(self, stage: str, **counts: int) -> None:
        slot = self.stage_counts.setdefault(stage, {})
        for key, value in counts.items():
            slot[key] = slot.get(key, 0) + int(value)

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "file": self.file_id,
            "stage_timings_ms": dict(self.stage_timings_ms),
            "stage_counts": {k: dict(v) for k, v in self.stage_counts.items()},
            "warnings": len(self.warnings),
            "failures": len(self.failures),
        }


def _fmt_hms_ms(milliseconds: float) -> str:
    """Return a human readable string with millisecond precision."""

    safe_ms = max(0.0, float(milliseconds))
    seconds = safe_ms / 1000.0
    base_seconds = int(seconds)
    fractional_ms = int(round((seconds - base_seconds) * 1000))

    if fractional_ms == 1000:
        base_seconds += 1
        fractional_ms = 0

    hours, remainder = divmod(base_seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    if minutes:
        return f"{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    return f"00:{secs:02d}.{fractional_ms:03d}"


# Each asyncio task (and so each concurrent service call) sees its own run.
_current_run: ContextVar[RunStats | None] = ContextVar("speakerline_run", default=None)


class StageMonitor:
    """Per-service observability hook: stage timings, counters and failures.

    Components receive the monitor explicitly instead of reaching for a shared
    singleton.  Statistics are collected per call inside ``run()`` and the
    monitor keeps only the ``history`` most recent runs.  ``stage()`` logs
    start/stop, records elapsed time and always re-raises the failure it
    observed.  With ``events_path`` every stage event is appended to a JSONL
    file.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        events_path: Path | None = None,
        history: int = 32,
    ) -> None:
        self.log = logger or logging.getLogger("speakerline.diarization")
        self.jsonl = JSONLWriter(events_path) if events_path else None
        self.runs: deque[RunStats] = deque(maxlen=max(1, int(history)))

    @property
    def current(self) -> RunStats | None:
        return _current_run.get()

    @property
    def last_run(self) -> RunStats | None:
        return self.runs[-1] if self.runs else None

    @contextmanager
    def run(self, file_id: str) -> Iterator[RunStats]:
        """Collect statistics for one call; nested calls share the outer run."""

        active = _current_run.get()
        if active is not None:
            yield active
            return
        stats = RunStats(run_id=uuid.uuid4().hex[:12], file_id=file_id)
        token = _current_run.set(stats)
        self.event("run", "start")
        try:
            yield stats
        finally:
            self.event("run", "stop", **stats.summary())
            _current_run.reset(token)
            self.runs.append(stats)
            self.log.debug(
                "[run] %s %s: %d warning(s), %d failure(s)",
                stats.run_id,
                file_id,
                len(stats.warnings),
                len(stats.failures),
            )

    def event(self, stage: str, event: str, **fields: Any) -> None:
        if self.jsonl is None:
            return
        record: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
            "stage": stage,
            "event": event,
        }
        stats = _current_run.get()
        if stats is not None:
            record["run_id"] = stats.run_id
            record.setdefault("file", stats.file_id)
        record.update(fields)
        self.jsonl.emit(record)

    def count(self, stage: str, **counts: int) -> None:
        stats = _current_run.get()
        if stats is not None:
            stats.count(stage, **counts)

    def warn(self, stage: str, message: str, *args: Any) -> None:
        text = message % args if args else message
        stats = _current_run.get()
        if stats is not None:
            stats.warnings.append(f"{stage}: {text}")
        self.log.warning("[%s] %s", stage, text)

    @contextmanager
    def stage(self, name: str, **context: Any) -> Iterator[None]:
        start = time.perf_counter()
        self.log.debug("[%s] start", name)
        self.event(name, "start", **context)
        try:
            yield
        except BaseException as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            stats = _current_run.get()
            if stats is not None:
                stats.mark(name, elapsed_ms)
                stats.failures.append(
                    {
                        "stage": name,
                        "error": f"{type(exc).__name__}: {exc}",
                        "elapsed_ms": elapsed_ms,
                        **context,
                    }
                )
            self.event(name, "error", elapsed_ms=elapsed_ms, error=type(exc).__name__, **context)
            self.log.info(
                "[%s] failed with %s (%s)", name, type(exc).__name__, _fmt_hms_ms(elapsed_ms)
            )
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        stats = _current_run.get()
        if stats is not None:
            stats.mark(name, elapsed_ms)
        self.event(name, "stop", elapsed_ms=elapsed_ms, **context)
        self.log.debug("[%s] ok in %s", name, _fmt_hms_ms(elapsed_ms))


__all__ = ["JSONLWriter", "RunStats", "StageMonitor", "_fmt_hms_ms", "_make_json_safe"]
