"""
Card source interface.

A card source supplies the due queue for a deck and records grading
outcomes. The orchestrator only ever talks to this interface; whether
cards come from Anki or from the built-in demo deck is decided by the
session binding.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.cards.models import Card, CardId, DeckStats, Verdict


class CardSource(ABC):
    """Abstract flashcard backend."""

    #: Short label used in logs and prompts
    kind: str = "abstract"

    @abstractmethod
    async def list_due(self, deck_id: str | None) -> list[CardId]:
        """Return the ids of cards due for review, in review order."""

    @abstractmethod
    async def fetch_details(self, card_ids: list[CardId]) -> list[Card]:
        """
        Fetch cards for a batch of ids.

        The result follows the input order. Unknown ids are omitted, so
        callers must be ready for a shorter list than they asked for.
        """

    @abstractmethod
    async def grade(self, card_id: CardId, verdict: Verdict) -> bool:
        """Record a review outcome. Returns True if the backend accepted it."""

    @abstractmethod
    async def deck_stats(self, deck_id: str | None) -> DeckStats:
        """Human-readable deck summary. Not authoritative session state."""

    def reset(self) -> None:
        """Restore the source to its initial state. No-op by default."""

    async def close(self) -> None:
        """Release any network resources. No-op by default."""
