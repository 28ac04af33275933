"""Matching diarized speakers against enrolled profiles."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest
from conftest import FakeEmbeddingExtractor, unit, write_tone_wav

from speakerline.diarization.config import DiarizationOptions
from speakerline.diarization.identification import SpeakerIdentifier
from speakerline.diarization.models import (
    DiarizationResult,
    Speaker,
    SpeakerEmbedding,
    SpeakerSegment,
    cosine_similarity,
)
from speakerline.diarization.profiles import SpeakerProfileManager
from speakerline.diarization.service import SpeakerDiarizationService


def _profile(name: str, vector: np.ndarray):
    emb = SpeakerEmbedding(vector=vector.astype(np.float32), timestamp=0.0)
    return SpeakerProfileManager.build_profile(name, [emb], 10.0)


def _result() -> DiarizationResult:
    speakers = (
        Speaker("speaker_0", "Speaker_1", 10.0, 1, 0.9),
        Speaker("speaker_1", "Speaker_2", 5.0, 1, 0.9),
    )
    segments = (
        SpeakerSegment("speaker_0", 0.0, 10.0, confidence=0.9),
        SpeakerSegment("speaker_1", 12.0, 17.0, confidence=0.9),
    )
    return DiarizationResult("a.wav", 20.0, 2, speakers, segments, 0.9, 0.1)


def test_similar_speaker_is_identified():
    p = unit(0)
    centroid = 0.95 * unit(0) + np.sqrt(1 - 0.95**2) * unit(1)
    alice = _profile("Alice", p)

    out = SpeakerIdentifier(0.7).identify(
        _result(),
        {"speaker_0": SpeakerEmbedding(vector=centroid, timestamp=0.0),
         "speaker_1": SpeakerEmbedding(vector=unit(3), timestamp=12.0)},
        [alice],
    )

    assert [i.speaker_id for i in out.identified_speakers] == ["speaker_0"]
    assert out.identified_speakers[0].profile is alice
    assert out.identified_speakers[0].confidence == pytest.approx(0.95, abs=1e-5)
    assert [seg.start_time for seg in out.identified_speakers[0].segments] == [0.0]
    assert [s.id for s in out.unidentified_speakers] == ["speaker_1"]


def test_best_match_wins_over_first_match():
    identifier = SpeakerIdentifier(0.7)
    first = _profile("First", 0.8 * unit(0) + 0.6 * unit(1))
    best = _profile("Best", unit(0))
    profile, sim = identifier.best_match(SpeakerEmbedding(unit(0), 0.0), [first, best])
    assert profile is best
    assert sim == pytest.approx(1.0)


def test_threshold_is_strict():
    edge = _profile("Edge", 0.8 * unit(0) + 0.6 * unit(1))
    query = SpeakerEmbedding(unit(0), 0.0)
    sim = cosine_similarity(query.vector, edge.representative_embedding.vector)

    at_threshold, _ = SpeakerIdentifier(sim).best_match(query, [edge])
    below_threshold, _ = SpeakerIdentifier(sim - 1e-6).best_match(query, [edge])

    assert at_threshold is None
    assert below_threshold is edge


def test_no_profiles_leaves_everyone_unidentified():
    out = SpeakerIdentifier().identify(_result(), {}, [])
    assert out.identified_speakers == ()
    assert len(out.unidentified_speakers) == 2


def test_service_identifies_enrolled_speaker(tmp_path, config, two_speaker_wav):
    enroll_wav = write_tone_wav(tmp_path / "alice.wav", [(1.0, 3.0, 220.0)], total_sec=5.0)
    vectors = {0.0: unit(0), 1.0: unit(0), 15.0: unit(1), 30.0: unit(0)}
    service = SpeakerDiarizationService(
        config, embedding_extractor=FakeEmbeddingExtractor(vectors, tolerance=0.3)
    )

    alice = asyncio.run(service.create_speaker_profile([enroll_wav], "Alice"))
    out = asyncio.run(
        service.identify_speakers(
            two_speaker_wav, [alice], DiarizationOptions(expected_speaker_count=5)
        )
    )

    assert out.diarization_result.speaker_count == 2
    assert [(i.speaker_id, i.profile.name) for i in out.identified_speakers] == [
        ("speaker_0", "Alice")
    ]
    assert [s.id for s in out.unidentified_speakers] == ["speaker_1"]


def test_diarization_names_known_speakers(config, two_speaker_wav):
    service = SpeakerDiarizationService(
        config,
        embedding_extractor=FakeEmbeddingExtractor({0.0: unit(0), 15.0: unit(1), 30.0: unit(0)}),
    )
    bob = _profile("Bob", unit(1))
    result = asyncio.run(
        service.perform_diarization(
            two_speaker_wav,
            DiarizationOptions(enable_speaker_identification=True),
            known_speakers=[bob],
        )
    )
    names = {s.id: s.name for s in result.speakers}
    assert names == {"speaker_0": "Speaker_1", "speaker_1": "Bob"}
