"""Match diarized speakers against known profiles."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .logger import logger
from .models import (
    DiarizationResult,
    IdentifiedSpeaker,
    Speaker,
    SpeakerEmbedding,
    SpeakerIdentificationResult,
    SpeakerProfile,
    cosine_similarity,
)


class SpeakerIdentifier:
    def __init__(self, similarity_threshold: float = 0.7) -> None:
        self.similarity_threshold = float(similarity_threshold)

    def best_match(
        self, embedding: SpeakerEmbedding, profiles: Sequence[SpeakerProfile]
    ) -> tuple[SpeakerProfile | None, float]:
        """Highest-similarity profile strictly above the threshold, else ``(None, best)``."""

        best: SpeakerProfile | None = None
        best_sim = -1.0
        for profile in profiles:
            sim = cosine_similarity(embedding.vector, profile.representative_embedding.vector)
            if sim > best_sim:
                best, best_sim = profile, sim
        if best is None or best_sim <= self.similarity_threshold:
            return None, best_sim
        return best, best_sim

    def identify(
        self,
        result: DiarizationResult,
        centroids: Mapping[str, SpeakerEmbedding],
        profiles: Sequence[SpeakerProfile],
    ) -> SpeakerIdentificationResult:
        identified: list[IdentifiedSpeaker] = []
        unidentified: list[Speaker] = []
        for speaker in result.speakers:
            centroid = centroids.get(speaker.id)
            if centroid is None:
                unidentified.append(speaker)
                continue
            profile, sim = self.best_match(centroid, profiles)
            if profile is None:
                logger.info("[identify] %s unmatched (best similarity %.3f)", speaker.id, sim)
                unidentified.append(speaker)
                continue
            logger.info("[identify] %s -> %s (%.3f)", speaker.id, profile.name, sim)
            identified.append(
                IdentifiedSpeaker(
                    speaker_id=speaker.id,
                    profile=profile,
                    confidence=float(sim),
                    segments=tuple(result.segments_for(speaker.id)),
                )
            )
        return SpeakerIdentificationResult(
            audio_file=result.audio_file,
            diarization_result=result,
            identified_speakers=tuple(identified),
            unidentified_speakers=tuple(unidentified),
        )


__all__ = ["SpeakerIdentifier"]
