"""Build and incrementally update speaker profiles."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from pathlib import Path

import numpy as np

from ..errors import ConfigurationError, InsufficientAudioSamples, NoVoiceDetected, stage_error
from .logger import logger
from .models import (
    EmbeddingStatistics,
    SpeakerEmbedding,
    SpeakerProfile,
    centroid_of,
    utc_now,
)

# Returns every embedding found across the samples plus their summed duration.
SampleEmbedder = Callable[[Sequence[Path]], Awaitable[tuple[list[SpeakerEmbedding], float]]]


def pooled_statistics(
    old: EmbeddingStatistics, old_count: int, new: EmbeddingStatistics, new_count: int
) -> EmbeddingStatistics:
    """Statistics of the union of two embedding sets from their summaries."""

    total = old_count + new_count
    m1 = old.mean.astype(np.float64)
    m2 = new.mean.astype(np.float64)
    s1 = old.standard_deviation.astype(np.float64)
    s2 = new.standard_deviation.astype(np.float64)
    mean = (m1 * old_count + m2 * new_count) / total
    second = (old_count * (s1**2 + m1**2) + new_count * (s2**2 + m2**2)) / total
    var = np.maximum(second - mean**2, 0.0)
    return EmbeddingStatistics(
        mean=mean.astype(np.float32),
        standard_deviation=np.sqrt(var).astype(np.float32),
        min_values=np.minimum(old.min_values, new.min_values).astype(np.float32),
        max_values=np.maximum(old.max_values, new.max_values).astype(np.float32),
    )


class SpeakerProfileManager:
    """Profile creation/update on top of a sample embedder.

    ``embed_samples`` runs features, voice activity detection and embedding
    extraction over each file; the service supplies its own pipeline.
    """

    def __init__(self, embed_samples: SampleEmbedder) -> None:
        self.embed_samples = embed_samples

    async def create_profile(self, audio_samples: Sequence[str | Path], name: str) -> SpeakerProfile:
        embeddings, total_duration = await self._collect(audio_samples, name)
        profile = self.build_profile(name, embeddings, total_duration)
        logger.info(
            "[profile] created %r from %d embedding(s) over %.1fs",
            name,
            profile.sample_count,
            profile.total_duration,
        )
        return profile

    async def update_profile(
        self, profile: SpeakerProfile, additional_samples: Sequence[str | Path]
    ) -> SpeakerProfile:
        embeddings, total_duration = await self._collect(additional_samples, profile.name)
        updated = self.merge_profile(profile, embeddings, total_duration)
        logger.info(
            "[profile] updated %r: %d -> %d embedding(s)",
            profile.name,
            profile.sample_count,
            updated.sample_count,
        )
        return updated

    async def _collect(
        self, samples: Sequence[str | Path], name: str
    ) -> tuple[list[SpeakerEmbedding], float]:
        if not samples:
            raise stage_error(
                InsufficientAudioSamples,
                "at least one audio sample is required",
                context={"profile": name},
            )
        paths = [Path(s) for s in samples]
        embeddings, total_duration = await self.embed_samples(paths)
        if not embeddings:
            raise stage_error(
                NoVoiceDetected,
                "no usable voice found in the enrollment samples",
                audio_file=paths[0],
                stage="profile",
                context={"profile": name, "samples": len(paths)},
            )
        return embeddings, total_duration

    @staticmethod
    def build_profile(
        name: str, embeddings: Sequence[SpeakerEmbedding], total_duration: float
    ) -> SpeakerProfile:
        matrix = np.vstack([np.asarray(e.vector, dtype=np.float64) for e in embeddings])
        return SpeakerProfile(
            name=name,
            representative_embedding=centroid_of(embeddings),
            embedding_statistics=EmbeddingStatistics.from_vectors(matrix),
            sample_count=len(embeddings),
            total_duration=float(total_duration),
        )

    @staticmethod
    def merge_profile(
        profile: SpeakerProfile, embeddings: Sequence[SpeakerEmbedding], total_duration: float
    ) -> SpeakerProfile:
        profile_dim = profile.representative_embedding.dimension
        new_dims = sorted({e.dimension for e in embeddings})
        if new_dims != [profile_dim]:
            raise ConfigurationError(
                f"profile {profile.name!r} holds {profile_dim}-dim embeddings but the "
                f"extractor produced {new_dims}; re-enroll with the current embedding model",
                stage="profile",
                context={
                    "profile": profile.name,
                    "profile_dimension": profile_dim,
                    "embedding_dimensions": new_dims,
                },
            )
        old_count = int(profile.sample_count)
        new_count = len(embeddings)
        old_vec = np.asarray(profile.representative_embedding.vector, dtype=np.float64)
        new_vec = np.asarray(centroid_of(embeddings).vector, dtype=np.float64)
        combined = (old_vec * old_count + new_vec * new_count) / (old_count + new_count)
        matrix = np.vstack([np.asarray(e.vector, dtype=np.float64) for e in embeddings])
        if old_count > 0:
            stats = pooled_statistics(
                profile.embedding_statistics,
                old_count,
                EmbeddingStatistics.from_vectors(matrix),
                new_count,
            )
        else:
            stats = EmbeddingStatistics.from_vectors(matrix)
        return replace(
            profile,
            representative_embedding=SpeakerEmbedding(
                vector=combined.astype(np.float32), timestamp=0.0
            ),
            embedding_statistics=stats,
            sample_count=old_count + new_count,
            total_duration=float(profile.total_duration) + float(total_duration),
            last_updated=utc_now(),
        )


__all__ = ["SpeakerProfileManager", "pooled_statistics"]
