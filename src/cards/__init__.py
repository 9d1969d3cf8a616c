"""Flashcard sources: Anki over AnkiConnect and the built-in demo deck."""

from src.cards.anki_source import AnkiCardSource
from src.cards.base import CardSource
from src.cards.mock_source import MOCK_DECK, MOCK_DECK_NAME, MockCardSource
from src.cards.models import Card, CardId, DeckStats, Verdict
from src.cards.text import clean_anki_text

__all__ = [
    "CardSource",
    "AnkiCardSource",
    "MockCardSource",
    "MOCK_DECK",
    "MOCK_DECK_NAME",
    # Models
    "Card",
    "CardId",
    "DeckStats",
    "Verdict",
    "clean_anki_text",
]
