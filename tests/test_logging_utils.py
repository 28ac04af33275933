"""Per-call run statistics and the JSONL event sink."""

from __future__ import annotations

import asyncio
import json

import pytest

from speakerline.diarization.service import SpeakerDiarizationService
from speakerline.logging_utils import StageMonitor, _fmt_hms_ms


def test_run_history_stays_bounded(config, two_speaker_wav, two_speaker_extractor):
    monitor = StageMonitor(history=3)
    service = SpeakerDiarizationService(
        config, embedding_extractor=two_speaker_extractor, monitor=monitor
    )

    for _ in range(5):
        asyncio.run(service.perform_diarization(two_speaker_wav))

    assert len(monitor.runs) == 3
    assert len({run.run_id for run in monitor.runs}) == 3
    for run in monitor.runs:
        assert run.file_id == two_speaker_wav.name
        assert run.stage_counts["embeddings"]["embeddings_extracted"] == 3
    assert monitor.current is None


def test_concurrent_calls_keep_separate_stats(
    config, two_speaker_wav, silent_wav, two_speaker_extractor
):
    monitor = StageMonitor()
    service = SpeakerDiarizationService(
        config, embedding_extractor=two_speaker_extractor, monitor=monitor
    )

    async def both():
        return await asyncio.gather(
            service.perform_diarization(two_speaker_wav),
            service.perform_diarization(silent_wav),
        )

    asyncio.run(both())

    by_file = {run.file_id: run for run in monitor.runs}
    assert set(by_file) == {two_speaker_wav.name, silent_wav.name}
    assert by_file[two_speaker_wav.name].stage_counts["embeddings"]["embeddings_extracted"] == 3
    assert "embeddings" not in by_file[silent_wav.name].stage_counts
    assert "clustering" not in by_file[silent_wav.name].stage_timings_ms


def test_transcription_call_is_one_run(config, two_speaker_wav, two_speaker_extractor, monitor):
    service = SpeakerDiarizationService(
        config, embedding_extractor=two_speaker_extractor, monitor=monitor
    )
    asyncio.run(service.perform_diarization_with_transcription(two_speaker_wav, []))

    assert len(monitor.runs) == 1
    assert {"features", "vad", "embeddings", "clustering", "alignment"} <= set(
        monitor.last_run.stage_timings_ms
    )


def test_events_are_written_as_jsonl(tmp_path, config, two_speaker_wav, two_speaker_extractor):
    events = tmp_path / "logs" / "events.jsonl"
    monitor = StageMonitor(events_path=events)
    service = SpeakerDiarizationService(
        config, embedding_extractor=two_speaker_extractor, monitor=monitor
    )
    asyncio.run(service.perform_diarization(two_speaker_wav))

    records = [json.loads(line) for line in events.read_text(encoding="utf-8").splitlines()]
    assert records[0]["stage"] == "run" and records[0]["event"] == "start"
    assert records[-1]["stage"] == "run" and records[-1]["event"] == "stop"
    assert records[-1]["stage_counts"]["embeddings"]["embeddings_extracted"] == 3
    assert {r["run_id"] for r in records} == {monitor.last_run.run_id}
    assert all(r["file"] == two_speaker_wav.name for r in records)
    stops = [r["stage"] for r in records if r["event"] == "stop" and r["stage"] != "run"]
    assert stops == ["features", "vad", "embeddings", "clustering", "timeline"]


def test_stage_failure_is_recorded_and_reraised(tmp_path):
    events = tmp_path / "events.jsonl"
    monitor = StageMonitor(events_path=events)

    with pytest.raises(ValueError), monitor.run("a.wav") as stats:
        with monitor.stage("vad", file="a.wav"):
            raise ValueError("boom")

    assert stats.failures == [
        {
            "stage": "vad",
            "error": "ValueError: boom",
            "elapsed_ms": stats.failures[0]["elapsed_ms"],
            "file": "a.wav",
        }
    ]
    assert monitor.last_run is stats
    errors = [json.loads(line) for line in events.read_text(encoding="utf-8").splitlines()]
    assert [r["event"] for r in errors] == ["start", "start", "error", "stop"]
    assert errors[2]["error"] == "ValueError"


def test_nested_runs_share_the_outer_run(monitor):
    with monitor.run("outer.wav") as outer:
        with monitor.run("inner.wav") as inner:
            monitor.count("embeddings", embeddings_skipped=2)
        assert inner is outer
    assert len(monitor.runs) == 1
    assert monitor.last_run.stage_counts == {"embeddings": {"embeddings_skipped": 2}}


def test_monitor_outside_a_run_only_logs(monitor):
    monitor.count("embeddings", embeddings_skipped=1)
    monitor.warn("embeddings", "skipped %d", 1)
    with monitor.stage("vad"):
        pass
    assert monitor.last_run is None


def test_fmt_hms_ms():
    assert _fmt_hms_ms(1234) == "00:01.234"
    assert _fmt_hms_ms(61_000) == "01:01.000"
    assert _fmt_hms_ms(3_600_500) == "1:00:00.500"
    assert _fmt_hms_ms(-5) == "00:00.000"
