"""
Anki configuration constants.

Centralizes AnkiConnect action names, search query templates and the
verdict-to-ease mapping so the client and the card source agree.
"""

from __future__ import annotations

# =============================================================================
# AnkiConnect Actions
# =============================================================================
ACTION_VERSION = "version"
ACTION_DECK_NAMES = "deckNames"
ACTION_FIND_CARDS = "findCards"
ACTION_CARDS_INFO = "cardsInfo"
ACTION_ANSWER_CARDS = "answerCards"

# =============================================================================
# Ease Values
# =============================================================================
# Anki review buttons: 1=Again, 2=Hard, 3=Good, 4=Easy
EASE_AGAIN = 1
EASE_GOOD = 3

VERDICT_EASE: dict[str, int] = {
    "correct": EASE_GOOD,
    "incorrect": EASE_AGAIN,
}


def get_ease(verdict: str) -> int:
    """
    Map a grading verdict to the Anki ease button.

    Args:
        verdict: "correct" or "incorrect"

    Returns:
        Ease value for answerCards

    Raises:
        ValueError: If the verdict is not recognised
    """
    try:
        return VERDICT_EASE[verdict]
    except KeyError:
        raise ValueError(f"Unknown verdict: {verdict!r}") from None


def deck_query(deck_name: str, due_only: bool = False) -> str:
    """
    Build an Anki search query for a deck.

    Args:
        deck_name: Deck to search
        due_only: Restrict to cards currently due

    Returns:
        Search string like 'deck:"Spanish" is:due'
    """
    query = f'deck:"{deck_name}"'
    if due_only:
        query += " is:due"
    return query
