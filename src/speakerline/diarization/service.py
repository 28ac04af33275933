"""Async orchestration of the diarization pipeline.

``perform_diarization`` runs features -> voice activity -> per-segment
embeddings (bounded fan-out) -> clustering -> timeline.  CPU-bound stages run
in the default executor; the coroutine yields between stages so a cancelled
task stops there and never returns a partial result.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeVar

from ..errors import DiarizationError, EmbeddingExtractionFailed, attach_context, stage_error
from ..logging_utils import StageMonitor
from .alignment import TranscriptAligner
from .clustering import SpeakerClusterer
from .config import DiarizationConfig, DiarizationOptions
from .embeddings import SpeakerEmbeddingExtractor, build_embedding_extractor
from .features import AudioFeatureExtractor
from .identification import SpeakerIdentifier
from .logger import logger
from .models import (
    DiarizationResult,
    SpeakerEmbedding,
    SpeakerIdentificationResult,
    SpeakerProfile,
    TranscriptSegment,
    VoiceSegment,
    centroid_of,
    duration_weighted_confidence,
)
from .profiles import SpeakerProfileManager
from .timeline import SpeakerTimelineBuilder, annotate_speaking_rate
from .vad import VoiceActivityDetector

T = TypeVar("T")


class SpeakerDiarizationService:
    """Entry point for diarization, transcript alignment, identification and enrollment.

    Every collaborator can be injected; defaults are built from ``config``.
    The service keeps no per-call state, so one instance may serve concurrent
    calls on different files.  Each public call records its own ``RunStats``
    in ``monitor.runs``.
    """

    def __init__(
        self,
        config: DiarizationConfig | None = None,
        *,
        feature_extractor: AudioFeatureExtractor | None = None,
        vad: VoiceActivityDetector | None = None,
        embedding_extractor: SpeakerEmbeddingExtractor | None = None,
        clusterer: SpeakerClusterer | None = None,
        timeline_builder: SpeakerTimelineBuilder | None = None,
        aligner: TranscriptAligner | None = None,
        identifier: SpeakerIdentifier | None = None,
        monitor: StageMonitor | None = None,
    ) -> None:
        self.config = config or DiarizationConfig()
        self.feature_extractor = feature_extractor or AudioFeatureExtractor(self.config)
        self.vad = vad or VoiceActivityDetector(self.config)
        self.embedding_extractor = embedding_extractor or build_embedding_extractor(self.config)
        self.clusterer = clusterer or SpeakerClusterer()
        self.timeline_builder = timeline_builder or SpeakerTimelineBuilder()
        self.aligner = aligner or TranscriptAligner()
        self.identifier = identifier or SpeakerIdentifier(self.config.similarity_threshold)
        self.monitor = monitor or StageMonitor(logger)
        self.profiles = SpeakerProfileManager(self._embed_samples)

    # ------------------------------------------------------------------
    # helpers
    @contextmanager
    def _stage(self, name: str, audio_file: Path | None = None) -> Iterator[None]:
        context: dict[str, Any] = {"file": audio_file.name} if audio_file else {}
        try:
            with self.monitor.stage(name, **context):
                yield
        except DiarizationError as exc:
            attach_context(exc, {"stage": exc.stage or name, **context})
            raise

    async def _run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def _extract_embeddings(
        self, audio_file: Path, segments: Sequence[VoiceSegment]
    ) -> list[SpeakerEmbedding]:
        """Embed each segment with bounded concurrency; failed segments are skipped."""

        semaphore = asyncio.Semaphore(self.config.max_concurrent_embeddings)

        async def embed_one(seg: VoiceSegment) -> SpeakerEmbedding | None:
            async with semaphore:
                await asyncio.sleep(0)
                try:
                    emb = await self._run_blocking(
                        self.embedding_extractor.extract_embedding,
                        audio_file,
                        seg.start_time,
                        seg.duration,
                    )
                except EmbeddingExtractionFailed as exc:
                    self.monitor.count("embeddings", embeddings_skipped=1)
                    self.monitor.warn(
                        "embeddings",
                        "skipped segment %.2f-%.2fs of %s: %s",
                        seg.start_time,
                        seg.end_time,
                        audio_file.name,
                        exc.message,
                    )
                    return None
            # The timeline is derived from the originating voice segment.
            return replace(emb, timestamp=seg.start_time, duration=seg.duration)

        results = await asyncio.gather(*(embed_one(seg) for seg in segments))
        embeddings = [emb for emb in results if emb is not None]
        self.monitor.count("embeddings", embeddings_extracted=len(embeddings))
        return embeddings

    async def _embed_samples(self, samples: Sequence[Path]) -> tuple[list[SpeakerEmbedding], float]:
        defaults = DiarizationOptions()
        embeddings: list[SpeakerEmbedding] = []
        total_duration = 0.0
        for path in samples:
            with self._stage("features", path):
                features = await self._run_blocking(self.feature_extractor.extract_features, path)
            total_duration += features.duration
            await asyncio.sleep(0)
            with self._stage("vad", path):
                segments = await self._run_blocking(
                    self.vad.detect_voice_activity,
                    features,
                    defaults.min_speaker_duration,
                    defaults.vad_threshold,
                )
            if not segments:
                logger.info("[profile] no voice in %s", path.name)
                continue
            with self._stage("embeddings", path):
                embeddings.extend(await self._extract_embeddings(path, segments))
        return embeddings, total_duration

    # ------------------------------------------------------------------
    # public API
    async def perform_diarization(
        self,
        audio_file: str | Path,
        options: DiarizationOptions | None = None,
        *,
        known_speakers: Sequence[SpeakerProfile] | None = None,
    ) -> DiarizationResult:
        path = Path(audio_file)
        with self.monitor.run(path.name):
            return await self._diarize(path, options or DiarizationOptions(), known_speakers)

    async def _diarize(
        self,
        path: Path,
        opts: DiarizationOptions,
        known_speakers: Sequence[SpeakerProfile] | None,
    ) -> DiarizationResult:
        started = time.perf_counter()
        logger.info("[diarize] %s", path.name)

        with self._stage("features", path):
            features = await self._run_blocking(self.feature_extractor.extract_features, path)
        await asyncio.sleep(0)

        with self._stage("vad", path):
            segments = await self._run_blocking(
                self.vad.detect_voice_activity,
                features,
                opts.min_speaker_duration,
                opts.vad_threshold,
            )
        await asyncio.sleep(0)
        if not segments:
            logger.info("[diarize] no voice detected in %s; returning empty result", path.name)
            return DiarizationResult.empty(
                path, features.duration, time.perf_counter() - started
            )

        with self._stage("embeddings", path):
            embeddings = await self._extract_embeddings(path, segments)
            if not embeddings:
                raise stage_error(
                    EmbeddingExtractionFailed,
                    f"embedding extraction failed for all {len(segments)} voice segment(s)",
                    audio_file=path,
                    context={"segments": len(segments)},
                )
        await asyncio.sleep(0)

        with self._stage("clustering", path):
            clusters = await self._run_blocking(
                self.clusterer.cluster,
                embeddings,
                opts.expected_speaker_count,
                opts.max_speakers,
                self.config.similarity_threshold,
            )
        await asyncio.sleep(0)

        with self._stage("timeline", path):
            timeline = self.timeline_builder.generate(clusters, features)

        speakers = list(timeline.speakers)
        if opts.enable_speaker_identification and known_speakers:
            for idx, cluster in enumerate(clusters):
                profile, _sim = self.identifier.best_match(cluster.centroid, known_speakers)
                if profile is not None:
                    speakers[idx] = replace(speakers[idx], name=profile.name)

        result = DiarizationResult(
            audio_file=path,
            total_duration=features.duration,
            speaker_count=len(speakers),
            speakers=tuple(speakers),
            segments=timeline.segments,
            confidence=duration_weighted_confidence(timeline.segments),
            processing_time=time.perf_counter() - started,
        )
        logger.info(
            "[diarize] %s: %d speaker(s), %d segment(s), confidence %.2f in %.2fs",
            path.name,
            result.speaker_count,
            len(result.segments),
            result.confidence,
            result.processing_time,
        )
        return result

    async def perform_diarization_with_transcription(
        self,
        audio_file: str | Path,
        transcript: Sequence[TranscriptSegment],
        options: DiarizationOptions | None = None,
        *,
        known_speakers: Sequence[SpeakerProfile] | None = None,
    ) -> DiarizationResult:
        path = Path(audio_file)
        with self.monitor.run(path.name):
            result = await self._diarize(path, options or DiarizationOptions(), known_speakers)
            with self._stage("alignment", path):
                segments = self.aligner.align(transcript, result.segments)
        speakers = annotate_speaking_rate(result.speakers, segments)
        return replace(
            result,
            segments=tuple(segments),
            speakers=tuple(speakers),
            confidence=duration_weighted_confidence(segments),
        )

    async def identify_speakers(
        self,
        audio_file: str | Path,
        known_speakers: Sequence[SpeakerProfile],
        options: DiarizationOptions | None = None,
    ) -> SpeakerIdentificationResult:
        opts = replace(options or DiarizationOptions(), expected_speaker_count=None)
        path = Path(audio_file)
        with self.monitor.run(path.name):
            return await self._identify(path, known_speakers, opts)

    async def _identify(
        self,
        path: Path,
        known_speakers: Sequence[SpeakerProfile],
        opts: DiarizationOptions,
    ) -> SpeakerIdentificationResult:
        result = await self._diarize(path, opts, None)

        centroids: dict[str, SpeakerEmbedding] = {}
        with self._stage("identify", path):
            for speaker in result.speakers:
                spans = [
                    VoiceSegment(start_time=seg.start_time, duration=seg.duration)
                    for seg in result.segments_for(speaker.id)
                ]
                embeddings = await self._extract_embeddings(path, spans)
                if embeddings:
                    centroids[speaker.id] = centroid_of(embeddings)
            return self.identifier.identify(result, centroids, known_speakers)

    async def create_speaker_profile(
        self, audio_samples: Sequence[str | Path], name: str
    ) -> SpeakerProfile:
        with self.monitor.run(f"profile:{name}"), self._stage("profile"):
            return await self.profiles.create_profile(audio_samples, name)

    async def update_speaker_profile(
        self, profile: SpeakerProfile, additional_samples: Sequence[str | Path]
    ) -> SpeakerProfile:
        with self.monitor.run(f"profile:{profile.name}"), self._stage("profile"):
            return await self.profiles.update_profile(profile, additional_samples)


__all__ = ["SpeakerDiarizationService"]
