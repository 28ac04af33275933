"""End-to-end pipeline behaviour of SpeakerDiarizationService."""

from __future__ import annotations

import asyncio
import threading

import pytest
from conftest import FakeEmbeddingExtractor, unit, write_tone_wav

from speakerline.diarization.config import DiarizationConfig, DiarizationOptions
from speakerline.diarization.embeddings import MFCCStatisticsExtractor
from speakerline.diarization.models import TranscriptSegment
from speakerline.diarization.service import SpeakerDiarizationService
from speakerline.errors import AudioFileNotFound, AudioFileTooSmall, EmbeddingExtractionFailed


def _service(config, extractor, monitor=None) -> SpeakerDiarizationService:
    return SpeakerDiarizationService(config, embedding_extractor=extractor, monitor=monitor)


def test_two_speaker_scenario(config, two_speaker_wav, two_speaker_extractor):
    service = _service(config, two_speaker_extractor)
    result = asyncio.run(
        service.perform_diarization(two_speaker_wav, DiarizationOptions(expected_speaker_count=2))
    )

    assert result.speaker_count == 2
    assert len(result.speakers) == 2
    assert len(result.segments) == 3
    assert {s.speaker_id for s in result.segments} <= {"speaker_0", "speaker_1"}
    first, second, third = result.segments
    assert first.speaker_id == third.speaker_id != second.speaker_id
    assert result.total_duration == pytest.approx(60.0, abs=1e-3)
    assert 0.0 <= result.confidence <= 1.0
    assert result.processing_time >= 0.0


def test_segments_sorted_without_overlap(config, two_speaker_wav, two_speaker_extractor):
    result = asyncio.run(_service(config, two_speaker_extractor).perform_diarization(two_speaker_wav))

    starts = [s.start_time for s in result.segments]
    assert starts == sorted(starts)
    for prev, nxt in zip(result.segments, result.segments[1:]):
        assert prev.end_time <= nxt.start_time
    assert [round(s.start_time) for s in result.segments] == [0, 15, 30]


def test_speaker_count_bounded_by_max(config, two_speaker_wav, two_speaker_extractor):
    result = asyncio.run(
        _service(config, two_speaker_extractor).perform_diarization(
            two_speaker_wav, DiarizationOptions(max_speakers=1)
        )
    )
    assert result.speaker_count == 1
    assert result.speakers[0].segment_count == 3


def test_silence_gives_empty_result(config, silent_wav, two_speaker_extractor):
    result = asyncio.run(_service(config, two_speaker_extractor).perform_diarization(silent_wav))

    assert result.speaker_count == 0
    assert result.speakers == ()
    assert result.segments == ()
    assert two_speaker_extractor.calls == []


def test_failed_segment_is_skipped_and_counted(config, two_speaker_wav, monitor):
    extractor = FakeEmbeddingExtractor(
        {0.0: unit(0), 30.0: unit(1)}, fail_at={15.0}
    )
    result = asyncio.run(_service(config, extractor, monitor).perform_diarization(two_speaker_wav))

    assert [round(s.start_time) for s in result.segments] == [0, 30]
    assert monitor.last_run.stage_counts["embeddings"]["embeddings_skipped"] == 1
    assert any("skipped segment" in w for w in monitor.last_run.warnings)


def test_all_segments_failing_raises(config, two_speaker_wav, monitor):
    extractor = FakeEmbeddingExtractor(fail_at={0.0, 15.0, 30.0})
    with pytest.raises(EmbeddingExtractionFailed) as excinfo:
        asyncio.run(_service(config, extractor, monitor).perform_diarization(two_speaker_wav))
    assert excinfo.value.context["file"] == two_speaker_wav.name
    assert excinfo.value.context["segments"] == 3
    assert monitor.last_run.failures[-1]["stage"] == "embeddings"


def test_validation_errors_propagate(config, tmp_path, two_speaker_extractor):
    service = _service(config, two_speaker_extractor)
    with pytest.raises(AudioFileNotFound):
        asyncio.run(service.perform_diarization(tmp_path / "missing.wav"))

    tiny = tmp_path / "tiny.wav"
    tiny.write_bytes(b"\x00" * 16)
    with pytest.raises(AudioFileTooSmall) as excinfo:
        asyncio.run(service.perform_diarization(tiny))
    assert excinfo.value.context["file"] == "tiny.wav"
    assert excinfo.value.context["stage"] == "validate"


def test_embedding_fan_out_is_bounded(two_speaker_wav):
    active = 0
    peak = 0
    lock = threading.Lock()
    release = threading.Event()

    class _Slow(FakeEmbeddingExtractor):
        def extract_embedding(self, audio_file, start_time, duration):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            release.wait(0.05)
            try:
                return super().extract_embedding(audio_file, start_time, duration)
            finally:
                with lock:
                    active -= 1

    cfg = DiarizationConfig(embedding_dim=8, max_concurrent_embeddings=1)
    asyncio.run(_service(cfg, _Slow()).perform_diarization(two_speaker_wav))
    assert peak == 1


def test_cancellation_raises_without_result(config, two_speaker_wav, two_speaker_extractor):
    service = _service(config, two_speaker_extractor)

    async def _run():
        task = asyncio.create_task(service.perform_diarization(two_speaker_wav))
        await asyncio.sleep(0)
        task.cancel()
        return await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(_run())


def test_transcript_alignment_flow(config, two_speaker_wav, two_speaker_extractor):
    transcript = [
        TranscriptSegment("hello there", 0.5, 4.0, 0.9),
        TranscriptSegment("general kenobi", 15.5, 20.0, 0.6),
    ]
    service = _service(config, two_speaker_extractor)
    result = asyncio.run(
        service.perform_diarization_with_transcription(
            two_speaker_wav, transcript, DiarizationOptions(expected_speaker_count=2)
        )
    )

    texts = [s.text for s in result.segments]
    assert texts == ["hello there", "general kenobi", None]
    assert result.segments[1].confidence <= 0.6
    rates = {s.id: s.characteristics.speaking_rate for s in result.speakers}
    assert rates["speaker_1"] is not None and rates["speaker_1"] > 0


def test_mfcc_extractor_end_to_end(two_speaker_wav):
    cfg = DiarizationConfig()
    service = SpeakerDiarizationService(cfg, embedding_extractor=MFCCStatisticsExtractor(cfg))
    result = asyncio.run(
        service.perform_diarization(two_speaker_wav, DiarizationOptions(expected_speaker_count=2))
    )

    first, second, third = result.segments
    assert first.speaker_id == third.speaker_id
    assert second.speaker_id != first.speaker_id
    assert service.monitor.last_run.stage_timings_ms["clustering"] >= 0.0


def test_tone_between_speakers_is_separated_by_vad(tmp_path, config):
    wav = write_tone_wav(
        tmp_path / "pair.wav", [(0.0, 2.0, 200.0), (4.0, 2.0, 600.0)], total_sec=7.0
    )
    extractor = FakeEmbeddingExtractor({0.0: unit(0), 4.0: unit(1)})
    result = asyncio.run(_service(config, extractor).perform_diarization(wav))
    assert result.speaker_count == 2
