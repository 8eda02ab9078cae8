from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, Prompt
from rich.table import Table
from rich.text import Text

from .config import CONFIG_PATH, save_config
from .models import Config


def _mask(secret: Optional[str]) -> str:
    if not secret:
        return "-"
    return secret[:3] + "…" if len(secret) > 6 else "***"


def run_onboarding(console: Optional[Console] = None) -> Config:
    console = console or Console()

    welcome_text = Text()
    welcome_text.append("🎙 Welcome to meetscribe!\n\n", style="bold cyan")
    welcome_text.append("Record meetings and get a transcript while you talk\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = Config()

    console.print("[bold]Transcription Service[/bold]")
    console.print()

    console.print("Choose your transcription backend:")
    console.print("  1. Auto-select (your endpoint if set, otherwise OpenAI)")
    console.print("  2. Transcription endpoint (JSON over HTTP)")
    console.print("  3. OpenAI API")
    console.print()

    backend_choice = Prompt.ask("Select option", choices=["1", "2", "3"], default="1", console=console)

    if backend_choice in {"1", "2"}:
        config.backend = "auto" if backend_choice == "1" else "http"
        console.print()
        console.print("Transcription endpoint URL (leave empty to skip):")
        url = Prompt.ask("URL", default="", console=console)
        config.transcription_url = url or None
        token = Prompt.ask("Bearer token (optional)", default="", password=True, console=console)
        config.api_token = token or None
    if backend_choice in {"1", "3"}:
        if backend_choice == "3":
            config.backend = "openai"
        console.print()
        console.print("Enter your OpenAI API key:")
        console.print("(Get one at https://platform.openai.com/api-keys)")
        api_key = Prompt.ask("API Key", default="", password=True, console=console)
        config.openai_api_key = api_key or None

    console.print()
    console.print("[bold]Summaries[/bold]")
    console.print()
    summary_url = Prompt.ask("Summary endpoint URL (leave empty to skip)", default="", console=console)
    config.summary_url = summary_url or None

    console.print()
    console.print("[bold]Recording[/bold]")
    console.print()
    config.chunk_seconds = FloatPrompt.ask("Chunk length in seconds", default=config.chunk_seconds, console=console)

    console.print()
    console.print("[bold green]✓ Setup Complete![/bold green]")
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("Backend:", config.backend)
    summary.add_row("Transcription URL:", config.transcription_url or "-")
    summary.add_row("OpenAI key:", _mask(config.openai_api_key))
    summary.add_row("Summary URL:", config.summary_url or "-")
    summary.add_row("Chunk length:", f"{config.chunk_seconds:g}s")

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True, console=console):
        save_config(config)
        console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
        console.print()
        console.print("[bold]To record a meeting, run:[/bold]")
        console.print("  [cyan]meetscribe record[/cyan]")
        console.print()
        console.print("[bold]To transcribe a file, run:[/bold]")
        console.print("  [cyan]meetscribe transcribe <audio-file>[/cyan]")
        console.print()
    else:
        console.print("[yellow]Configuration not saved. Run 'meetscribe setup' to try again.[/yellow]")
    return config
