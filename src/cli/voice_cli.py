"""
Voice Tutor CLI - spoken flashcard review from the terminal.

Usage:
    voice-tutor decks               # List Anki decks with due counts
    voice-tutor study               # Voice session on the demo deck
    voice-tutor study -d Spanish    # Voice session on an Anki deck
    voice-tutor review Spanish      # Manual (non-voice) review
"""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config import get_settings
from src.cards.anki_source import AnkiCardSource
from src.cards.base import CardSource
from src.cards.models import Verdict
from src.core.errors import TutorError
from src.voice.orchestrator import SessionOrchestrator
from src.voice.session import Phase, SessionSnapshot

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="voice-tutor",
    help="🎙️ Voice Tutor - spoken flashcard review with a realtime AI tutor",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

STYLES = {
    Verdict.CORRECT: "bold green",
    Verdict.INCORRECT: "bold red",
}

FAREWELL_SECONDS = 8.0

PHASE_LABELS = {
    Phase.DISCONNECTED: "[dim]● disconnected[/]",
    Phase.CONNECTING: "[yellow]● connecting[/]",
    Phase.CONNECTED_IDLE: "[cyan]● connected[/]",
    Phase.CONNECTED_STUDYING: "[green]● studying[/]",
}


# =============================================================================
# Deck Commands
# =============================================================================


@app.command()
def decks() -> None:
    """List Anki decks with their due card counts."""
    asyncio.run(_list_decks())


async def _list_decks(source: AnkiCardSource | None = None) -> None:
    source = source or AnkiCardSource()
    try:
        if not await source.client.check_connection():
            console.print("[red]Anki is not reachable. Start Anki with AnkiConnect enabled.[/]")
            raise typer.Exit(code=1)

        table = Table(title="Anki Decks")
        table.add_column("Deck", style="cyan")
        table.add_column("Due", justify="right", style="green")
        table.add_column("Total", justify="right")
        for name in await source.list_decks():
            stats = await source.deck_stats(name)
            table.add_row(escape(name), str(stats.remaining_cards), str(stats.total_cards))
        console.print(table)
    except TutorError as exc:
        console.print(f"[red]Could not list decks: {exc}[/]")
        raise typer.Exit(code=1)
    finally:
        await source.close()


# =============================================================================
# Voice Study
# =============================================================================


@app.command()
def study(
    deck: Annotated[
        str | None, typer.Option("--deck", "-d", help="Anki deck (demo deck if omitted)")
    ] = None,
) -> None:
    """
    Start a spoken study session.

    Examples:
        voice-tutor study              # Demo deck
        voice-tutor study -d Spanish   # Anki deck "Spanish"
    """
    console.print(
        Panel(
            f"[bold cyan]VOICE STUDY SESSION[/]\n"
            f"Deck: {deck or 'demo deck'}\n"
            f"[dim]Speak your answers. Press Ctrl+C to stop.[/]",
            title="🎙️",
            border_style="cyan",
        )
    )
    try:
        asyncio.run(_run_voice_session(deck))
    except KeyboardInterrupt:
        console.print("\n[dim]Session stopped.[/]")


class _SnapshotPrinter:
    """Prints what changed between orchestrator snapshots."""

    def __init__(self) -> None:
        self._transcript_seen = 0
        self._last: SessionSnapshot | None = None

    def __call__(self, snapshot: SessionSnapshot) -> None:
        last = self._last
        self._last = snapshot

        for line in snapshot.transcript[self._transcript_seen:]:
            console.print(f"[dim]{escape(line)}[/]")
        self._transcript_seen = len(snapshot.transcript)

        if last is None or snapshot.phase is not last.phase:
            console.print(PHASE_LABELS[snapshot.phase])
        if snapshot.verdict and (last is None or snapshot.verdict is not last.verdict):
            icon = "✓" if snapshot.verdict is Verdict.CORRECT else "✗"
            console.print(f"[{STYLES[snapshot.verdict]}]{icon} {snapshot.verdict.value.upper()}[/]")
        card = snapshot.current_card
        if card is not None and (last is None or last.current_card != card):
            console.print(
                Panel(escape(card.front), title=f"Card ({snapshot.queue_length} left)", border_style="cyan")
            )


async def _run_voice_session(deck: str | None) -> None:
    orchestrator = SessionOrchestrator()
    orchestrator.add_listener(_SnapshotPrinter())
    try:
        if not await orchestrator.start_study_session(deck):
            console.print(f"[red]Could not start study session: {orchestrator.error}[/]")
            raise typer.Exit(code=1)
        while orchestrator.phase.is_connected:
            if orchestrator.is_finished:
                console.print("[green]All due cards reviewed.[/]")
                # Let the tutor finish its closing remarks
                await asyncio.sleep(FAREWELL_SECONDS)
                break
            await asyncio.sleep(0.5)
        if orchestrator.error:
            console.print(f"[red]Session ended: {orchestrator.error}[/]")
    finally:
        await orchestrator.close()


# =============================================================================
# Manual Review
# =============================================================================


@app.command()
def review(
    deck: Annotated[str, typer.Argument(help="Anki deck to review")],
) -> None:
    """
    Review due cards by hand, without voice.

    Shows each front, reveals the back on Enter, and records your grade in Anki.
    """
    asyncio.run(_run_manual_review(deck))


async def _run_manual_review(deck: str, source: CardSource | None = None) -> tuple[int, int]:
    """Review loop; returns (correct, incorrect) for the grades Anki accepted."""
    source = source or AnkiCardSource()
    correct = incorrect = 0
    try:
        queue = await source.list_due(deck)
        console.print(f"[green]Loaded {len(queue)} due cards from '{escape(deck)}'[/]")
        while queue:
            cards = await source.fetch_details([queue[0]])
            if not cards:
                queue.pop(0)
                continue
            card = cards[0]
            console.print(
                Panel(escape(card.front), title=f"Question ({len(queue) - 1} left)", border_style="cyan")
            )
            Prompt.ask("[dim]Press Enter to show the answer[/]", default="", show_default=False)
            console.print(Panel(escape(card.back), title="Answer", border_style="blue"))
            choice = Prompt.ask("Result", choices=["c", "i", "q"], default="c")
            if choice == "q":
                break
            verdict = Verdict.CORRECT if choice == "c" else Verdict.INCORRECT
            if not await source.grade(card.card_id, verdict):
                # Still due in Anki, so it stays at the head of the queue
                console.print("[red]Anki did not accept the answer; the card stays in the queue.[/]")
                continue
            queue.pop(0)
            if verdict is Verdict.CORRECT:
                correct += 1
            else:
                incorrect += 1
    except TutorError as exc:
        console.print(f"[red]Review failed: {exc}[/]")
        raise typer.Exit(code=1)
    finally:
        await source.close()

    table = Table(title="Session Complete")
    table.add_column("Correct", style="green", justify="right")
    table.add_column("Incorrect", style="red", justify="right")
    table.add_row(str(correct), str(incorrect))
    console.print(table)
    return correct, incorrect


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()

    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)

    app()


if __name__ == "__main__":
    main()
