"""Turn clusters into the ordered speaker timeline and per-speaker aggregates."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

import numpy as np

from .logger import logger
from .models import (
    AgeRange,
    AudioFeatures,
    Gender,
    Speaker,
    SpeakerCharacteristics,
    SpeakerCluster,
    SpeakerSegment,
    cosine_similarity,
)

# Median F0 split between typical adult male and female voices (Hz).
GENDER_SPLIT_HZ = 165.0
MIN_VOICED_FRAMES = 10
VOICED_ENERGY_RATIO = 0.1


@dataclass(frozen=True)
class Timeline:
    speakers: tuple[Speaker, ...]
    segments: tuple[SpeakerSegment, ...]


class SpeakerTimelineBuilder:
    def generate(self, clusters: Sequence[SpeakerCluster], features: AudioFeatures) -> Timeline:
        peak = float(np.max(features.energy)) if features.frame_count else 0.0
        speakers: list[Speaker] = []
        segments: list[SpeakerSegment] = []

        for idx, cluster in enumerate(clusters):
            own: list[SpeakerSegment] = []
            for emb in cluster.embeddings:
                if emb.duration <= 0.0:
                    logger.debug("[timeline] skipping zero-length embedding at %.2fs", emb.timestamp)
                    continue
                end = min(emb.end_time, features.duration) if features.duration else emb.end_time
                if end <= emb.timestamp:
                    end = emb.end_time
                sim = cosine_similarity(emb.vector, cluster.centroid.vector)
                own.append(
                    SpeakerSegment(
                        speaker_id=cluster.id,
                        start_time=float(emb.timestamp),
                        end_time=float(end),
                        confidence=float(np.clip(sim, 0.0, 1.0)),
                        audio_level=self._audio_level(features, emb.timestamp, end, peak),
                    )
                )
            speakers.append(
                Speaker(
                    id=cluster.id,
                    name=f"Speaker_{idx + 1}",
                    total_speaking_time=float(sum(seg.duration for seg in own)),
                    segment_count=len(own),
                    average_confidence=float(cluster.confidence),
                    characteristics=self._characteristics(features, own, peak),
                )
            )
            segments.extend(own)

        segments.sort(key=lambda seg: (seg.start_time, seg.end_time))
        return Timeline(speakers=tuple(speakers), segments=tuple(segments))

    @staticmethod
    def _audio_level(features: AudioFeatures, start: float, end: float, peak: float) -> float:
        if peak <= 0.0:
            return 0.0
        frames = features.energy[features.frame_slice(start, end)]
        if frames.size == 0:
            return 0.0
        return float(np.clip(np.mean(frames) / peak, 0.0, 1.0))

    @staticmethod
    def _characteristics(
        features: AudioFeatures, segments: Sequence[SpeakerSegment], peak: float
    ) -> SpeakerCharacteristics:
        if features.pitch is None or peak <= 0.0 or not segments:
            return SpeakerCharacteristics()
        voiced: list[np.ndarray] = []
        for seg in segments:
            window = features.frame_slice(seg.start_time, seg.end_time)
            f0 = features.pitch[window]
            loud = features.energy[window] >= VOICED_ENERGY_RATIO * peak
            n = min(f0.shape[0], loud.shape[0])
            picked = f0[:n][loud[:n]]
            voiced.append(picked[np.isfinite(picked)])
        f0_all = np.concatenate(voiced) if voiced else np.array([])
        if f0_all.size < MIN_VOICED_FRAMES:
            return SpeakerCharacteristics()
        low, high = np.percentile(f0_all, [5, 95])
        median = float(np.median(f0_all))
        gender = Gender.MALE if median < GENDER_SPLIT_HZ else Gender.FEMALE
        return SpeakerCharacteristics(
            estimated_gender=gender,
            estimated_age=AgeRange.UNKNOWN,
            pitch_range=(round(float(low), 1), round(float(high), 1)),
        )


def annotate_speaking_rate(
    speakers: Sequence[Speaker], segments: Sequence[SpeakerSegment]
) -> list[Speaker]:
    """Fill ``speaking_rate`` (words per minute) from aligned segment text."""

    out: list[Speaker] = []
    for speaker in speakers:
        words = 0
        talk_sec = 0.0
        for seg in segments:
            if seg.speaker_id != speaker.id or not seg.text:
                continue
            words += len(seg.text.split())
            talk_sec += seg.duration
        if talk_sec <= 0.0:
            out.append(speaker)
            continue
        rate = round(words / (talk_sec / 60.0), 1)
        characteristics = replace(
            speaker.characteristics or SpeakerCharacteristics(), speaking_rate=rate
        )
        out.append(replace(speaker, characteristics=characteristics))
    return out


__all__ = ["SpeakerTimelineBuilder", "Timeline", "annotate_speaking_rate"]
