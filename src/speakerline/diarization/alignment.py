"""Attach transcript text to speaker segments by temporal overlap."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from .models import SpeakerSegment, TranscriptSegment


def overlap(a_start: float, a_end: float, b_start: float, b_end: float) -> float:
    return max(0.0, min(a_end, b_end) - max(a_start, b_start))


class TranscriptAligner:
    """Merge transcript text into speaker segments.

    Only ``text`` and ``confidence`` change; confidence becomes
    ``min(segment confidence, duration weighted transcript confidence)`` so
    alignment can lower but never raise it.
    """

    def align(
        self,
        transcript: Sequence[TranscriptSegment],
        speaker_segments: Sequence[SpeakerSegment],
    ) -> list[SpeakerSegment]:
        ordered = sorted(transcript, key=lambda t: t.start_time)
        aligned: list[SpeakerSegment] = []
        for seg in speaker_segments:
            hits = [
                t
                for t in ordered
                if t.start_time < seg.end_time
                and overlap(seg.start_time, seg.end_time, t.start_time, t.end_time) > 0.0
            ]
            if not hits:
                aligned.append(seg)
                continue

            text = " ".join(t.text.strip() for t in hits if t.text.strip()).strip()
            total = sum(max(0.0, t.duration) for t in hits)
            confidence = seg.confidence
            if total > 0.0:
                weighted = sum(t.confidence * max(0.0, t.duration) for t in hits) / total
                confidence = min(seg.confidence, weighted)
            aligned.append(replace(seg, text=text or None, confidence=confidence))
        return aligned


__all__ = ["TranscriptAligner", "overlap"]
