"""JSON file store for :class:`SpeakerProfile` values.

The diarization core never persists profiles; this store backs the command
line front-end.  Access is serialised with a re-entrant lock and every write
goes through a ``.tmp`` file that replaces the registry atomically.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..diarization.models import SpeakerProfile

logger = logging.getLogger(__name__)


class ProfileRegistry:
    def __init__(self, path: str | Path, auto_flush: bool = True):
        self.path = Path(path)
        self.auto_flush = auto_flush
        self._lock = threading.RLock()
        self._profiles: dict[str, SpeakerProfile] = {}
        self._metadata: dict[str, Any] = {}
        self._load()

    def _iso_now(self) -> str:
        return datetime.now(tz=UTC).isoformat(timespec="seconds")

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Registry load failed: %s", exc)
            return
        if not isinstance(data, dict):
            logger.warning("Registry load expected a JSON object at %s", self.path)
            return
        if "speakers" in data:
            raw = data.get("speakers") or {}
            self._metadata = {k: v for k, v in data.items() if k != "speakers"}
        else:
            raw = data
        for name, record in raw.items():
            try:
                self._profiles[name] = SpeakerProfile.from_dict(record)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed profile %r in %s: %s", name, self.path, exc)

    def reload(self) -> None:
        with self._lock:
            self._profiles = {}
            self._metadata = {}
            self._load()

    def save(self) -> None:
        with self._lock:
            now = self._iso_now()
            self._metadata.setdefault("created_at", now)
            self._metadata["updated_at"] = now
            self._metadata["total_speakers"] = len(self._profiles)
            payload = {
                **self._metadata,
                "speakers": {name: p.to_dict() for name, p in self._profiles.items()},
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(".tmp")
            try:
                temp_path.write_text(
                    json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8"
                )
                temp_path.replace(self.path)
            except OSError as exc:
                logger.warning("Registry save failed: %s", exc)
                temp_path.unlink(missing_ok=True)
                raise

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._profiles

    def get(self, name: str) -> SpeakerProfile | None:
        with self._lock:
            return self._profiles.get(name)

    def profiles(self) -> list[SpeakerProfile]:
        with self._lock:
            return list(self._profiles.values())

    def put(self, profile: SpeakerProfile) -> None:
        with self._lock:
            self._profiles[profile.name] = profile
            if self.auto_flush:
                self.save()

    def remove(self, name: str) -> bool:
        with self._lock:
            removed = self._profiles.pop(name, None) is not None
            if removed and self.auto_flush:
                self.save()
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)


__all__ = ["ProfileRegistry"]
