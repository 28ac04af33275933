"""Configuration validation and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from speakerline.diarization.config import DiarizationConfig, DiarizationOptions, bool_env
from speakerline.errors import ConfigurationError, PipelineError


def test_options_defaults():
    opts = DiarizationOptions()
    assert opts.expected_speaker_count is None
    assert opts.min_speaker_duration == pytest.approx(1.0)
    assert opts.max_speakers == 10
    assert opts.enable_speaker_identification is False
    assert opts.vad_threshold == pytest.approx(0.5)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_speakers": 0},
        {"expected_speaker_count": 0},
        {"vad_threshold": 1.5},
        {"min_speaker_duration": -0.1},
    ],
)
def test_options_reject_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        DiarizationOptions(**kwargs)


def test_configuration_error_is_pipeline_error():
    with pytest.raises(PipelineError) as excinfo:
        DiarizationConfig(similarity_threshold=1.5)
    assert "similarity_threshold" in excinfo.value.context


def test_pitch_bounds_must_be_ordered():
    with pytest.raises(ConfigurationError):
        DiarizationConfig(pitch_fmin=300.0, pitch_fmax=200.0)


def test_from_env_reads_prefixed_overrides(monkeypatch):
    monkeypatch.setenv("SPEAKERLINE_SIMILARITY_THRESHOLD", "0.65")
    monkeypatch.setenv("SPEAKERLINE_MAX_CONCURRENT_EMBEDDINGS", "2")
    monkeypatch.setenv("SPEAKERLINE_ESTIMATE_PITCH", "off")
    monkeypatch.setenv("SPEAKERLINE_ECAPA_MODEL_PATH", "/models/ecapa.onnx")

    cfg = DiarizationConfig.from_env(hop_length=320)

    assert cfg.similarity_threshold == pytest.approx(0.65)
    assert cfg.max_concurrent_embeddings == 2
    assert cfg.estimate_pitch is False
    assert cfg.ecapa_model_path == Path("/models/ecapa.onnx")
    assert cfg.hop_length == 320
    assert cfg.target_sr == 16000


def test_from_env_rejects_malformed_values(monkeypatch):
    monkeypatch.setenv("SPEAKERLINE_N_MELS", "many")
    with pytest.raises(ConfigurationError):
        DiarizationConfig.from_env()

    monkeypatch.delenv("SPEAKERLINE_N_MELS")
    monkeypatch.setenv("SPEAKERLINE_ESTIMATE_PITCH", "maybe")
    with pytest.raises(ConfigurationError):
        DiarizationConfig.from_env()


def test_bool_env_vocabulary(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    assert bool_env("FLAG") is True
    monkeypatch.setenv("FLAG", "0")
    assert bool_env("FLAG") is False
    monkeypatch.delenv("FLAG")
    assert bool_env("FLAG") is None


def test_frame_sec():
    assert DiarizationConfig(hop_length=160, target_sr=16000).frame_sec == pytest.approx(0.01)
