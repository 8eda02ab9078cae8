"""Command line interface for meetscribe."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
from dataclasses import asdict
from pathlib import Path
from typing import Dict, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from . import config as config_mod
from .audio import AudioSource, FileSource, MicrophoneSource, list_input_devices
from .config import ConfigError
from .errors import AcquisitionError, SummaryError
from .models import Config, TranscriptEntry
from .onboarding import run_onboarding
from .session import RecordingSession, SessionResult
from .summarizer import get_summarizer
from .transcriber import TranscriptionClient, get_client
from .transcript import TranscriptAssembler
from .waveform import LevelMonitor, render

app = typer.Typer(add_completion=False, help="Live meeting recording with incremental transcription.")


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_config() -> Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        _fail(str(exc))


def _make_client(cfg: Config) -> TranscriptionClient:
    try:
        return get_client(cfg)
    except ConfigError as exc:
        _fail(str(exc))


def _print_entry(entry: TranscriptEntry) -> None:
    typer.echo("\r" + entry.format())


def _read_notes(notes: Optional[Path]) -> str:
    return notes.read_text() if notes is not None else ""


async def _record(session: RecordingSession, client: TranscriptionClient, duration: Optional[float], meter: bool) -> SessionResult:
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, stop_requested.set)
    try:
        await session.start()
        typer.secho("Recording... press Ctrl+C to stop.", fg=typer.colors.BLUE)
        deadline = loop.time() + duration if duration else None
        while not stop_requested.is_set():
            if deadline is not None and loop.time() >= deadline:
                break
            if meter and session.monitor is not None:
                typer.echo("\r" + render(session.monitor.levels()), nl=False)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_requested.wait(), timeout=0.1)
        if meter:
            typer.echo()
        typer.secho("Finalizing transcription...", fg=typer.colors.BLUE)
        return await session.stop()
    finally:
        await session.stop()
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await client.aclose()


async def _replay(session: RecordingSession, client: TranscriptionClient) -> SessionResult:
    try:
        await session.start()
        await session.wait_captured()
        return await session.stop()
    finally:
        await session.stop()
        await client.aclose()


async def _summarise(cfg: Config, notes: str, transcript: str) -> str:
    summarizer = get_summarizer(cfg)
    try:
        return await summarizer.summarise(notes, transcript)
    finally:
        await summarizer.aclose()


def _run_session(cfg: Config, source: AudioSource, monitor: Optional[LevelMonitor], runner) -> SessionResult:
    client = _make_client(cfg)
    assembler = TranscriptAssembler(cfg.speaker_label, listener=_print_entry)
    session = RecordingSession(source, client, cfg, assembler=assembler, monitor=monitor)
    try:
        return asyncio.run(runner(session, client))
    except AcquisitionError as exc:
        _fail(f"Failed to start recording: {exc}")


def _finish(
    cfg: Config,
    result: SessionResult,
    output: Optional[Path],
    as_json: bool,
    notes: Optional[Path],
    summarise: bool,
) -> None:
    typer.echo("\nTranscript:\n" + result.transcript)
    if result.capture_error:
        typer.secho(f"\nAudio capture stopped early: {result.capture_error}", fg=typer.colors.YELLOW, err=True)
    if result.abandoned:
        typer.secho(
            f"\n{len(result.abandoned)} chunk(s) could not be transcribed and were left out.",
            fg=typer.colors.YELLOW,
            err=True,
        )

    summary: Optional[str] = None
    if summarise:
        try:
            summary = asyncio.run(_summarise(cfg, _read_notes(notes), result.transcript))
        except SummaryError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
        else:
            typer.secho("\nSummary:\n" + summary, fg=typer.colors.GREEN)

    if output is None:
        return
    if as_json:
        payload = result.to_dict()
        payload["summary"] = summary
        output.write_text(json.dumps(payload, indent=2))
    else:
        output.write_text(result.transcript + "\n")
    typer.secho(f"\nTranscript written to {output}.", fg=typer.colors.BLUE)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"meetscribe v{__version__}")
        raise typer.Exit()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def record(
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop automatically after this many seconds."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the transcript to this file."),
    as_json: bool = typer.Option(False, "--json", help="Write the output file as JSON."),
    notes: Optional[Path] = typer.Option(None, "--notes", exists=True, readable=True, help="Meeting notes for the summary."),
    summarise: bool = typer.Option(False, "--summarise/--no-summarise", help="Request a summary after recording."),
    device: Optional[str] = typer.Option(None, "--device", help="Input device index or name."),
    meter: bool = typer.Option(True, "--meter/--no-meter", help="Show live input levels."),
) -> None:
    """Record from the microphone and transcribe while you talk."""

    cfg = _load_config()
    if device is not None:
        cfg.input_device = device
    monitor = LevelMonitor()
    source = MicrophoneSource(frame_listener=monitor.feed)

    async def runner(session: RecordingSession, client: TranscriptionClient) -> SessionResult:
        return await _record(session, client, duration, meter)

    result = _run_session(cfg, source, monitor, runner)
    _finish(cfg, result, output, as_json, notes, summarise)


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the audio file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the transcript to this file."),
    as_json: bool = typer.Option(False, "--json", help="Write the output file as JSON."),
    notes: Optional[Path] = typer.Option(None, "--notes", exists=True, readable=True, help="Meeting notes for the summary."),
    summarise: bool = typer.Option(False, "--summarise/--no-summarise", help="Request a summary afterwards."),
    realtime: bool = typer.Option(False, "--realtime", help="Pace chunks as if the file were being recorded."),
) -> None:
    """Run an audio file through the live transcription pipeline."""

    cfg = _load_config()
    source = FileSource(audio, realtime=realtime)
    result = _run_session(cfg, source, None, _replay)
    _finish(cfg, result, output, as_json, notes, summarise)


@app.command()
def summarise(
    transcript: Path = typer.Argument(..., exists=True, readable=True, help="Transcript text file."),
    notes: Optional[Path] = typer.Option(None, "--notes", exists=True, readable=True, help="Meeting notes file."),
) -> None:
    """Generate a summary from a transcript and optional notes."""

    cfg = _load_config()
    try:
        summary = asyncio.run(_summarise(cfg, _read_notes(notes), transcript.read_text()))
    except SummaryError as exc:
        _fail(str(exc))
    typer.secho("Summary:\n" + summary, fg=typer.colors.GREEN)


@app.command()
def devices() -> None:
    """List available input devices."""

    try:
        found = list_input_devices()
    except AcquisitionError as exc:
        _fail(str(exc))
    if not found:
        typer.echo("No input devices found.")
        return
    table = Table(show_header=True, box=None, padding=(0, 2))
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Sample rate", justify="right")
    for device in found:
        table.add_row(
            str(device["index"]),
            str(device["name"]),
            str(device["channels"]),
            f"{device['default_samplerate']:g} Hz" if device["default_samplerate"] else "-",
        )
    Console().print(table)


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    try:
        run_onboarding()
    except Exception as exc:
        typer.secho(f"Setup failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def config(
    backend: Optional[str] = typer.Option(None, help="Transcription backend (auto, http, openai)."),
    transcription_url: Optional[str] = typer.Option(None, help="URL of the transcription endpoint."),
    summary_url: Optional[str] = typer.Option(None, help="URL of the summary endpoint."),
    api_token: Optional[str] = typer.Option(None, help="Bearer token for both endpoints."),
    openai_api_key: Optional[str] = typer.Option(None, help="API key for the OpenAI backend."),
    openai_model: Optional[str] = typer.Option(None, help="OpenAI transcription model id."),
    request_timeout: Optional[float] = typer.Option(None, help="HTTP timeout (seconds) per request."),
    chunk_seconds: Optional[float] = typer.Option(None, help="Length of each audio chunk in seconds."),
    max_concurrency: Optional[int] = typer.Option(None, help="Maximum transcription requests in flight."),
    max_retries: Optional[int] = typer.Option(None, help="Attempts per failed chunk in a retry pass."),
    retry_mode: Optional[str] = typer.Option(None, help="When to retry failed chunks (on_stop, background)."),
    input_device: Optional[str] = typer.Option(None, help="Default input device index or name."),
    verify_ssl: Optional[bool] = typer.Option(
        None,
        "--verify-ssl/--no-verify-ssl",
        help="Toggle TLS certificate verification for API calls.",
    ),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "backend": backend,
            "transcription_url": transcription_url,
            "summary_url": summary_url,
            "api_token": api_token,
            "openai_api_key": openai_api_key,
            "openai_model": openai_model,
            "request_timeout": request_timeout,
            "chunk_seconds": chunk_seconds,
            "max_concurrency": max_concurrency,
            "max_retries": max_retries,
            "retry_mode": retry_mode,
            "input_device": input_device,
            "verify_ssl": verify_ssl,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        typer.echo(json.dumps(asdict(cfg), indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


if __name__ == "__main__":  # pragma: no cover
    app()
