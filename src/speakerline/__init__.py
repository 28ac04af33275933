"""
speakerline: speaker diarization core
Lazy top-level access to the service and its value types
"""

__version__ = "0.1.0"

import importlib
from typing import Any

_LAZY_EXPORTS = {
    "SpeakerDiarizationService": "speakerline.diarization.service",
    "DiarizationConfig": "speakerline.diarization.config",
    "DiarizationOptions": "speakerline.diarization.config",
    "DiarizationResult": "speakerline.diarization.models",
    "SpeakerProfile": "speakerline.diarization.models",
    "TranscriptSegment": "speakerline.diarization.models",
    "ProfileRegistry": "speakerline.io.profile_registry",
}


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(importlib.import_module(module_name), name)
    globals()[name] = value
    return value


__all__ = ["__version__", *_LAZY_EXPORTS]
