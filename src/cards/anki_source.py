"""
Remote card source backed by AnkiConnect.

Scheduling stays with Anki: this source only asks which cards are due
and reports review outcomes back as ease values.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from src.anki.anki_client import AnkiClient
from src.anki.config import get_ease
from src.cards.base import CardSource
from src.cards.models import Card, CardId, DeckStats, Verdict
from src.cards.text import clean_anki_text


class AnkiCardSource(CardSource):
    """Card source that proxies a local AnkiConnect service."""

    kind = "anki"

    def __init__(self, client: AnkiClient | None = None):
        self.client = client or AnkiClient()

    async def list_decks(self) -> list[str]:
        """Deck names known to Anki, sorted for display."""
        return sorted(await self.client.deck_names())

    async def list_due(self, deck_id: str | None) -> list[CardId]:
        if not deck_id:
            raise ValueError("AnkiCardSource requires a deck name")
        card_ids = await self.client.find_due_cards(deck_id)
        logger.debug("Found {} due cards in deck '{}'", len(card_ids), deck_id)
        return list(card_ids)

    async def fetch_details(self, card_ids: list[CardId]) -> list[Card]:
        if not card_ids:
            return []
        infos = await self.client.cards_info([int(cid) for cid in card_ids])
        by_id = {info["cardId"]: self._map_card(info) for info in infos}
        missing = [cid for cid in card_ids if int(cid) not in by_id]
        if missing:
            logger.warning("Anki returned no details for cards {}", missing)
        return [by_id[int(cid)] for cid in card_ids if int(cid) in by_id]

    async def grade(self, card_id: CardId, verdict: Verdict) -> bool:
        ease = get_ease(verdict.value)
        accepted = await self.client.answer_card(int(card_id), ease)
        logger.info("Anki grade: card={} verdict={} ease={} accepted={}", card_id, verdict.value, ease, accepted)
        return accepted

    async def deck_stats(self, deck_id: str | None) -> DeckStats:
        if not deck_id:
            raise ValueError("AnkiCardSource requires a deck name")
        total = await self.client.find_cards(deck_id)
        due = await self.client.find_due_cards(deck_id)
        return DeckStats(name=deck_id, total_cards=len(total), remaining_cards=len(due))

    async def close(self) -> None:
        await self.client.close()

    # ========================================
    # Mapping Helpers
    # ========================================

    @staticmethod
    def _field_value(field: dict[str, Any] | None) -> str:
        """Extract the raw value from an Anki field dict."""
        if not field:
            return ""
        return str(field.get("value") or "")

    @classmethod
    def _map_card(cls, info: dict[str, Any]) -> Card:
        """
        Map a cardsInfo entry to a Card.

        Front and back are the note's first two fields by field order,
        which covers Basic and most custom note types. Cards without
        fields fall back to the rendered question/answer HTML.
        """
        fields = info.get("fields") or {}
        ordered = sorted(fields.values(), key=lambda f: f.get("order", 0))
        if len(ordered) >= 2:
            front_raw = cls._field_value(ordered[0])
            back_raw = cls._field_value(ordered[1])
        else:
            front_raw = info.get("question", "")
            back_raw = info.get("answer", "")

        return Card(
            card_id=info["cardId"],
            front=clean_anki_text(front_raw),
            back=clean_anki_text(back_raw),
        )
