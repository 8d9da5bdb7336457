"""
chunkscribe.cli - Typer CLI entry point.

Provides live dictation, file transcription, provisioning, cache and
settings commands.
"""

from __future__ import annotations

import importlib.util
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chunkscribe import __version__
from chunkscribe.config import HOME_ENV_VAR, SettingsStore, TranscriberSettings, default_home, dump_settings
from chunkscribe.exceptions import ChunkscribeError, DependencyError
from chunkscribe.logging import configure_logging
from chunkscribe.progress import ConsoleProgressReporter
from chunkscribe.provision.models import model_filename
from chunkscribe.provision.platform import describe_platform
from chunkscribe.provision.store import CachedAssetStore
from chunkscribe.transcribe.base import TranscriptionResult
from chunkscribe.transcribe.engine import (
    PlatformFacts,
    is_model_cached,
    resolve_backend,
    select_engine,
    transcribe_file,
)
from chunkscribe.utils import format_duration

app = typer.Typer(
    name="chunkscribe",
    help="Live dictation into text files with local Whisper models.\n\n"
    "Records the microphone in fixed-length chunks, transcribes them with "
    "whisper.cpp or faster-whisper, and appends the text in order.",
    add_completion=False,
)
cache_app = typer.Typer(help="Inspect or clear downloaded binaries and models.")
config_app = typer.Typer(help="Show or change settings.")
app.add_typer(cache_app, name="cache")
app.add_typer(config_app, name="config")

console = Console()


@dataclass
class AppContext:
    home: Path

    @property
    def settings_store(self) -> SettingsStore:
        return SettingsStore.in_home(self.home)

    @property
    def asset_store(self) -> CachedAssetStore:
        return CachedAssetStore(self.home)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"chunkscribe {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    home: Path | None = typer.Option(
        None,
        "--home",
        envvar=HOME_ENV_VAR,
        help="Directory for settings, binaries and models (default: ~/.chunkscribe)",
    ),
) -> None:
    """Chunkscribe - live dictation with local Whisper models."""
    configure_logging(verbose)
    ctx.obj = AppContext(home=home.expanduser() if home else default_home())


def _app_context(ctx: typer.Context) -> AppContext:
    obj = ctx.find_object(AppContext)
    return obj if obj is not None else AppContext(home=default_home())


def _fail(error: ChunkscribeError) -> typer.Exit:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    if isinstance(error, DependencyError) and error.install_hint:
        console.print(f"[dim]{error.install_hint}[/dim]")
    return typer.Exit(1)


def _settings_with(
    store: SettingsStore, model: str | None = None, engine: str | None = None
) -> TranscriberSettings:
    settings = store.get()
    overrides = {k: v for k, v in {"model_id": model, "engine": engine}.items() if v}
    if not overrides:
        return settings
    return TranscriberSettings(**{**settings.model_dump(), **overrides})


# Dictation


@app.command("record")
def record(
    ctx: typer.Context,
    output: Path = typer.Argument(..., help="Text file to dictate into (appended to)"),
) -> None:
    """Dictate into a text file until Enter or Ctrl+C is pressed."""
    from chunkscribe.document import TextDocument
    from chunkscribe.record.microphone import SoundDeviceMicrophone
    from chunkscribe.session import Session

    app_ctx = _app_context(ctx)
    asset_store = app_ctx.asset_store
    document = TextDocument.open(output)

    def show_result(result: TranscriptionResult) -> None:
        if result.failed:
            console.print(f"[yellow]  Chunk {result.seq} dropped: {result.error}[/yellow]")
        elif result.text:
            console.print(f"[dim]  [{result.seq}] {result.text}[/dim]")

    session = Session(
        sink=document,
        microphone=SoundDeviceMicrophone(),
        settings_store=app_ctx.settings_store,
        engine_factory=lambda settings: select_engine(PlatformFacts.current(), settings, asset_store),
        reporter=ConsoleProgressReporter(console),
        cursor=document.end,
        on_result=show_result,
    )

    try:
        session.start()
    except ChunkscribeError as e:
        raise _fail(e)

    started = time.monotonic()
    console.print(f"[green]●[/green] Recording into {output}. Press Enter to stop.")
    try:
        input()
    except (KeyboardInterrupt, EOFError):
        pass

    console.print("[dim]Recording stopping, finishing transcriptions...[/dim]")
    elapsed = time.monotonic() - started
    session.dispose()

    results = session.last_results
    failed = sum(1 for r in results if r.failed)
    console.print(
        f"[green]✓[/green] Recorded {format_duration(elapsed)}: "
        f"{len(results)} chunk(s), {failed} dropped"
    )


@app.command("transcribe")
def transcribe(
    ctx: typer.Context,
    audio: Path = typer.Argument(..., help="Audio file to transcribe"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model id (e.g. base.en)"),
    engine: str | None = typer.Option(None, "--engine", "-e", help="Engine: auto, cpp or faster"),
) -> None:
    """Transcribe an audio file in one pass."""
    app_ctx = _app_context(ctx)
    try:
        settings = _settings_with(app_ctx.settings_store, model, engine)
        inference = select_engine(PlatformFacts.current(), settings, app_ctx.asset_store)
        text = transcribe_file(inference, audio, ConsoleProgressReporter(console))
    except ChunkscribeError as e:
        raise _fail(e)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(text)


@app.command("provision")
def provision(
    ctx: typer.Context,
    model: str | None = typer.Option(None, "--model", "-m", help="Model id (e.g. base.en)"),
    engine: str | None = typer.Option(None, "--engine", "-e", help="Engine: auto, cpp or faster"),
) -> None:
    """Download the engine and model now so recording can start offline."""
    app_ctx = _app_context(ctx)
    try:
        settings = _settings_with(app_ctx.settings_store, model, engine)
        inference = select_engine(PlatformFacts.current(), settings, app_ctx.asset_store)
        console.print(f"[cyan]Provisioning {inference.name} engine ({settings.model_id})...[/cyan]")
        inference.initialize(ConsoleProgressReporter(console))
    except ChunkscribeError as e:
        raise _fail(e)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# Cache


@cache_app.command("status")
def cache_status(ctx: typer.Context) -> None:
    """Show whether the engine binary and current model are cached."""
    app_ctx = _app_context(ctx)
    asset_store = app_ctx.asset_store
    try:
        settings = app_ctx.settings_store.get()
        facts = PlatformFacts.current()
        backend = resolve_backend(facts, settings.engine)
    except ChunkscribeError as e:
        raise _fail(e)

    table = Table(title="Cache Status")
    table.add_column("Item", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    table.add_row("Engine", backend, str(app_ctx.home))

    if backend == "cpp":
        binary = asset_store.binary(describe_platform(facts.system, facts.machine))
        table.add_row(
            "Binary",
            "✓ Present" if binary.present else "✗ Not downloaded",
            str(binary.local_path),
        )

    inference = select_engine(facts, settings, asset_store)
    try:
        cached = is_model_cached(inference, asset_store, settings.model_id)
    except DependencyError as e:
        table.add_row("Model", "? Unknown", e.install_hint or str(e))
    else:
        status = "✓ Cached - offline ready" if cached else "✗ Not cached - needs download"
        detail = model_filename(settings.model_id) if backend == "cpp" else settings.model_id
        table.add_row("Model", status, detail)

    console.print(table)


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete all downloaded binaries and models."""
    app_ctx = _app_context(ctx)
    if not yes and not typer.confirm("Delete all cached models and binaries?"):
        raise typer.Exit(0)
    try:
        app_ctx.asset_store.clear()
    except OSError as e:
        console.print(f"[red]Failed to clear cache: {e}[/red]")
        raise typer.Exit(1)
    console.print("[green]✓[/green] Cache cleared")


# Settings


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the current settings."""
    app_ctx = _app_context(ctx)
    try:
        settings = app_ctx.settings_store.get()
    except ChunkscribeError as e:
        raise _fail(e)
    console.print(f"[dim]# {app_ctx.settings_store.path}[/dim]")
    console.print(dump_settings(settings), markup=False)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    model: str | None = typer.Option(None, "--model", "-m", help="Model id (e.g. base.en)"),
    chunk_seconds: int | None = typer.Option(
        None, "--chunk-seconds", "-c", help="Chunk duration in seconds (5-30)"
    ),
    engine: str | None = typer.Option(None, "--engine", "-e", help="Engine: auto, cpp or faster"),
    max_in_flight: int | None = typer.Option(
        None, "--max-in-flight", help="Maximum concurrent transcriptions"
    ),
    language: str | None = typer.Option(None, "--language", "-l", help="Language code"),
) -> None:
    """Change settings."""
    app_ctx = _app_context(ctx)
    previous_model = None
    try:
        previous_model = app_ctx.settings_store.get().model_id
        settings = app_ctx.settings_store.update(
            model_id=model,
            chunk_duration_ms=chunk_seconds * 1000 if chunk_seconds is not None else None,
            engine=engine,
            max_in_flight=max_in_flight,
            language=language,
        )
    except ChunkscribeError as e:
        raise _fail(e)

    console.print("[green]✓[/green] Settings saved")
    if settings.model_id != previous_model:
        try:
            inference = select_engine(PlatformFacts.current(), settings, app_ctx.asset_store)
            cached = is_model_cached(inference, app_ctx.asset_store, settings.model_id)
        except ChunkscribeError:
            cached = False
        if cached:
            console.print("[dim]Model changed (already cached).[/dim]")
        else:
            console.print("[dim]Model changed. New model loads on next recording.[/dim]")


# Environment


@app.command("doctor")
def doctor() -> None:
    """Check optional dependencies and system tools."""
    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    descriptor = describe_platform()
    table.add_row(
        "Platform",
        f"{descriptor.os}/{descriptor.arch}",
        descriptor.archive_asset_name or "no prebuilt whisper.cpp (uses faster-whisper)",
    )

    all_passed = True
    extractor = "powershell" if descriptor.is_windows else "unzip"
    if shutil.which(extractor):
        table.add_row(extractor, "✓ Installed", "")
    else:
        table.add_row(extractor, "✗ Missing", "Needed to unpack whisper.cpp releases")
        all_passed = all_passed and not descriptor.supports_native

    for module, package in (
        ("sounddevice", "sounddevice"),
        ("faster_whisper", "faster-whisper"),
        ("librosa", "librosa"),
    ):
        if importlib.util.find_spec(module) is not None:
            table.add_row(package, "✓ Installed", "")
        else:
            table.add_row(package, "✗ Missing", f"pip install {package}")
            all_passed = False

    console.print(table)
    if not all_passed:
        console.print("\n[yellow]⚠ Some checks failed[/yellow]")
        raise typer.Exit(1)
    console.print("\n[green]✓ All checks passed[/green]")
