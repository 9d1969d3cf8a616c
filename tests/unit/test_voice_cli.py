"""
Unit tests for the CLI's manual review loop and deck listing.

Prompts are scripted through Prompt.ask and output goes to an in-memory
console, so neither a terminal nor Anki is needed.
"""

import io
from unittest.mock import AsyncMock, Mock, patch

import pytest
import typer
from rich.console import Console
from rich.prompt import Prompt

from src.cards.anki_source import AnkiCardSource
from src.cards.models import Verdict
from src.cli import voice_cli
from src.core.errors import CardSourceError


@pytest.fixture
def output(monkeypatch):
    """Capture everything the CLI prints."""
    buffer = io.StringIO()
    monkeypatch.setattr(voice_cli, "console", Console(file=buffer, width=120))
    return buffer


class TestManualReview:
    """Tests for the review command's loop."""

    @pytest.mark.asyncio
    async def test_grades_every_card_and_counts(self, spanish_source, output):
        """Each accepted grade pops one card and is counted."""
        answers = ["", "c", "", "i", "", "c"]

        with patch.object(Prompt, "ask", side_effect=answers):
            totals = await voice_cli._run_manual_review("Spanish", source=spanish_source)

        assert totals == (2, 1)
        assert spanish_source.grades == [
            (101, Verdict.CORRECT),
            (102, Verdict.INCORRECT),
            (103, Verdict.CORRECT),
        ]
        assert spanish_source.closed
        assert "Session Complete" in output.getvalue()

    @pytest.mark.asyncio
    async def test_rejected_grade_keeps_card(self, spanish_source, output):
        """A card Anki refused to grade is asked again instead of dropped."""
        results = iter([False, True, True, True])
        record = spanish_source.grade

        async def flaky_grade(card_id, verdict):
            await record(card_id, verdict)
            return next(results)

        spanish_source.grade = flaky_grade
        answers = ["", "c", "", "c", "", "c", "", "i"]

        with patch.object(Prompt, "ask", side_effect=answers):
            totals = await voice_cli._run_manual_review("Spanish", source=spanish_source)

        assert [card_id for card_id, _ in spanish_source.grades] == [101, 101, 102, 103]
        assert totals == (2, 1)
        assert "did not accept" in output.getvalue()

    @pytest.mark.asyncio
    async def test_quit_stops_without_grading(self, spanish_source, output):
        """Choosing q ends the review and still closes the source."""
        with patch.object(Prompt, "ask", side_effect=["", "q"]):
            totals = await voice_cli._run_manual_review("Spanish", source=spanish_source)

        assert totals == (0, 0)
        assert spanish_source.grades == []
        assert spanish_source.closed

    @pytest.mark.asyncio
    async def test_source_failure_exits(self, spanish_source, output):
        """A card source error exits with code 1 after closing the source."""
        spanish_source.fail_with["list_due"] = CardSourceError("AnkiConnect error: offline")

        with pytest.raises(typer.Exit):
            await voice_cli._run_manual_review("Spanish", source=spanish_source)

        assert spanish_source.closed
        assert "offline" in output.getvalue()


class TestListDecks:
    """Tests for the decks command."""

    @pytest.fixture
    def anki(self):
        """AnkiClient double with async methods."""
        client = Mock()
        client.check_connection = AsyncMock(return_value=True)
        client.deck_names = AsyncMock(return_value=["Spanish", "Default"])
        client.find_cards = AsyncMock(return_value=[1, 2, 3, 4])
        client.find_due_cards = AsyncMock(return_value=[2, 3])
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_lists_decks_with_counts(self, anki, output):
        """Every deck appears with its due and total counts."""
        await voice_cli._list_decks(AnkiCardSource(client=anki))

        text = output.getvalue()
        assert "Default" in text
        assert "Spanish" in text
        assert anki.find_due_cards.await_count == 2
        anki.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_anki_exits(self, anki, output):
        """No AnkiConnect means exit code 1 and a hint."""
        anki.check_connection.return_value = False

        with pytest.raises(typer.Exit):
            await voice_cli._list_decks(AnkiCardSource(client=anki))

        assert "not reachable" in output.getvalue()
        anki.close.assert_awaited_once()
