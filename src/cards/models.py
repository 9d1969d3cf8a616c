"""Flashcard domain types shared by every card source."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

# Anki uses integer ids, the demo deck uses short strings
CardId = Union[int, str]


class Verdict(str, Enum):
    """Grading outcome for one spoken answer."""

    CORRECT = "correct"
    INCORRECT = "incorrect"


@dataclass(frozen=True)
class Card:
    """A flashcard as presented to the learner."""

    card_id: CardId
    front: str
    back: str

    def to_dict(self) -> dict[str, str]:
        """Front/back payload as sent to the dialogue agent."""
        return {"front": self.front, "back": self.back}


@dataclass(frozen=True)
class DeckStats:
    """Informational deck summary used in the greeting."""

    name: str
    total_cards: int
    remaining_cards: int
