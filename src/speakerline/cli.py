"""Command line interface for the speakerline diarization core."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer

from .diarization.config import DiarizationConfig, DiarizationOptions
from .diarization.logger import logger
from .diarization.models import TranscriptSegment
from .diarization.service import SpeakerDiarizationService
from .errors import DiarizationError, PipelineError
from .io.profile_registry import ProfileRegistry
from .logging_utils import StageMonitor, _make_json_safe

app = typer.Typer(help="Speaker diarization, enrollment and identification.")


def _service(events: Path | None = None) -> SpeakerDiarizationService:
    monitor = StageMonitor(logger, events_path=events) if events is not None else None
    return SpeakerDiarizationService(DiarizationConfig.from_env(), monitor=monitor)


def _fail(exc: PipelineError) -> typer.Exit:
    typer.secho(str(exc), fg=typer.colors.RED, err=True)
    if isinstance(exc, DiarizationError):
        typer.echo(f"hint: {exc.recovery_hint}", err=True)
    return typer.Exit(code=1)


def _emit(payload: dict, output: Path | None) -> None:
    text = json.dumps(_make_json_safe(payload), indent=2, ensure_ascii=False)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
        typer.echo(f"wrote {output}")
        return
    typer.echo(text)


def _load_transcript(path: Path) -> list[TranscriptSegment]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Transcript '{path}' is not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("segments", [])
    if not isinstance(data, list):
        raise typer.BadParameter("Transcript must be a list of segments or {'segments': [...]}")
    try:
        return [TranscriptSegment.from_dict(item) for item in data]
    except (TypeError, ValueError) as exc:
        raise typer.BadParameter(f"Transcript segment is malformed: {exc}") from exc


@app.command()
def diarize(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Input audio file"),
    speakers: int | None = typer.Option(None, "--speakers", help="Expected number of speakers"),
    max_speakers: int = typer.Option(10, help="Upper bound on detected speakers"),
    min_duration: float = typer.Option(1.0, help="Minimum voice segment duration (s)"),
    vad_threshold: float = typer.Option(0.5, help="Voice activity threshold (0-1)"),
    transcript: Path | None = typer.Option(
        None, exists=True, readable=True, help="Transcript JSON to align with the speakers"
    ),
    registry: Path | None = typer.Option(None, help="Profile registry used to name speakers"),
    identify: bool = typer.Option(
        False, "--identify", is_flag=True, help="Label speakers with matching registry profiles"
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON here"),
    events: Path | None = typer.Option(None, "--events", help="Append stage events (JSONL) here"),
):
    """Diarize AUDIO and print the speaker timeline as JSON."""
    try:
        options = DiarizationOptions(
            expected_speaker_count=speakers,
            min_speaker_duration=min_duration,
            max_speakers=max_speakers,
            enable_speaker_identification=identify,
            vad_threshold=vad_threshold,
        )
    except PipelineError as exc:
        raise typer.BadParameter(exc.message) from exc

    known = ProfileRegistry(registry).profiles() if (identify and registry) else None
    try:
        service = _service(events)
        if transcript is not None:
            result = asyncio.run(
                service.perform_diarization_with_transcription(
                    audio, _load_transcript(transcript), options, known_speakers=known
                )
            )
        else:
            result = asyncio.run(service.perform_diarization(audio, options, known_speakers=known))
    except PipelineError as exc:
        raise _fail(exc) from exc

    _emit(result.to_dict(), output)


@app.command()
def enroll(
    name: str = typer.Argument(..., help="Speaker name"),
    samples: list[Path] = typer.Argument(..., exists=True, readable=True, help="Enrollment audio"),
    registry: Path = typer.Option(Path("speaker_profiles.json"), help="Profile registry path"),
):
    """Create the profile NAME, or extend it when the registry already has it."""
    store = ProfileRegistry(registry)
    service = _service()
    existing = store.get(name)
    try:
        if existing is None:
            profile = asyncio.run(service.create_speaker_profile(samples, name))
        else:
            profile = asyncio.run(service.update_speaker_profile(existing, samples))
    except PipelineError as exc:
        raise _fail(exc) from exc
    store.put(profile)
    typer.echo(
        f"{'updated' if existing else 'enrolled'} {name}: "
        f"{profile.sample_count} embedding(s), {profile.total_duration:.1f}s"
    )


@app.command()
def identify(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Input audio file"),
    registry: Path = typer.Option(Path("speaker_profiles.json"), help="Profile registry path"),
    max_speakers: int = typer.Option(10, help="Upper bound on detected speakers"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON here"),
    events: Path | None = typer.Option(None, "--events", help="Append stage events (JSONL) here"),
):
    """Match the speakers in AUDIO against enrolled profiles."""
    store = ProfileRegistry(registry)
    if not len(store):
        typer.secho(f"Registry {registry} has no profiles; enroll speakers first.", err=True)
        raise typer.Exit(code=1)
    try:
        result = asyncio.run(
            _service(events).identify_speakers(
                audio, store.profiles(), DiarizationOptions(max_speakers=max_speakers)
            )
        )
    except PipelineError as exc:
        raise _fail(exc) from exc
    _emit(result.to_dict(), output)


def main() -> None:
    """Console script entry point for the speakerline CLI (Typer app)."""
    app()


if __name__ == "__main__":  # pragma: no cover
    app()
