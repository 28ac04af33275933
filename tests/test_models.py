"""Value types and their serialisation."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from conftest import unit

from speakerline.diarization.models import (
    DiarizationResult,
    Speaker,
    SpeakerEmbedding,
    SpeakerProfile,
    SpeakerSegment,
    TranscriptSegment,
    VoiceSegment,
    centroid_of,
    duration_weighted_confidence,
)
from speakerline.diarization.profiles import SpeakerProfileManager


def test_voice_segment_end_time_and_validation():
    seg = VoiceSegment(start_time=2.0, duration=3.5)
    assert seg.end_time == pytest.approx(5.5)
    with pytest.raises(ValueError):
        VoiceSegment(start_time=1.0, duration=0.0)


def test_speaker_segment_requires_positive_span():
    with pytest.raises(ValueError):
        SpeakerSegment("speaker_0", 3.0, 3.0)


def test_result_confidence_is_duration_weighted():
    segments = [
        SpeakerSegment("speaker_0", 0.0, 9.0, confidence=1.0),
        SpeakerSegment("speaker_1", 9.0, 10.0, confidence=0.0),
    ]
    assert duration_weighted_confidence(segments) == pytest.approx(0.9)
    assert duration_weighted_confidence([]) == 0.0


def test_result_speaker_count_must_match():
    with pytest.raises(ValueError):
        DiarizationResult(Path("a.wav"), 1.0, 2, (), (), 0.0, 0.0)


def test_result_to_dict_carries_segment_text():
    seg = SpeakerSegment("speaker_0", 0.0, 1.0, confidence=0.5, text="hi")
    speaker = Speaker("speaker_0", "Speaker_1", 1.0, 1, 0.5)
    result = DiarizationResult(Path("a.wav"), 1.0, 1, (speaker,), (seg,), 0.5, 0.0)

    payload = result.to_dict()
    assert payload["segments"][0]["text"] == "hi"
    assert payload["speakers"][0]["name"] == "Speaker_1"
    assert result.segments_for("speaker_0") == [seg]
    assert result.segments_for("speaker_9") == []


def test_centroid_of_empty_set_raises():
    with pytest.raises(ValueError):
        centroid_of([])


def test_profile_dict_round_trip():
    embs = [SpeakerEmbedding(unit(0), 0.0), SpeakerEmbedding(unit(1), 1.0)]
    profile = SpeakerProfileManager.build_profile("Dana", embs, 42.0)

    restored = SpeakerProfile.from_dict(profile.to_dict())

    assert restored.id == profile.id
    assert restored.name == "Dana"
    assert restored.sample_count == 2
    assert restored.created_at.replace(microsecond=0) == profile.created_at.replace(microsecond=0)
    np.testing.assert_allclose(
        restored.embedding_statistics.standard_deviation,
        profile.embedding_statistics.standard_deviation,
    )


def test_transcript_segment_from_dict_accepts_short_keys():
    seg = TranscriptSegment.from_dict({"text": "hi", "start": 1, "end": 2.5})
    assert seg.start_time == 1.0
    assert seg.duration == pytest.approx(1.5)
    assert seg.confidence == 1.0
