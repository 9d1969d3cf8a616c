"""AnkiConnect access."""

from src.anki.anki_client import AnkiClient
from src.anki.config import VERDICT_EASE, deck_query, get_ease

__all__ = [
    "AnkiClient",
    # Config exports
    "VERDICT_EASE",
    "deck_query",
    "get_ease",
]
