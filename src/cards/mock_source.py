"""
In-memory demo deck.

Lets the voice tutor run without Anki. Grading has no durable effect:
a graded card is only marked consumed so it drops out of the due list
until reset().
"""

from __future__ import annotations

from loguru import logger

from src.cards.base import CardSource
from src.cards.models import Card, CardId, DeckStats, Verdict

MOCK_DECK_NAME = "AWS Security"

MOCK_DECK: tuple[Card, ...] = (
    Card(
        card_id="c1",
        front="Amazon Detective",
        back=(
            "Amazon Detective simplifies the process of analyzing, investigating, and "
            "identifying the root cause of potential security issues or suspicious "
            "activities. It automatically collects log data from your AWS resources and "
            "uses machine learning, statistical analysis, and graph theory to generate "
            "visualizations that help you conduct faster and more efficient security "
            "investigations."
        ),
    ),
    Card(
        card_id="c2",
        front="AWS Fargate",
        back=(
            "AWS Fargate is a serverless compute engine for containers that works with "
            "both Amazon Elastic Container Service (ECS) and Amazon Elastic Kubernetes "
            "Service (EKS). Fargate removes the need to provision and manage servers, lets "
            "you specify and pay for resources per application, and improves security "
            "through application isolation by design."
        ),
    ),
    Card(
        card_id="c3",
        front="DynamoDB Consistency Models",
        back=(
            "DynamoDB supports two consistency models: Eventually Consistent and Strongly "
            "Consistent. Eventually Consistent reads are the default and maximize your read "
            "throughput, but might not reflect the results of a recently completed write. "
            "Strongly Consistent reads return a result that reflects all writes that "
            "received a successful response prior to the read."
        ),
    ),
)


class MockCardSource(CardSource):
    """Static deck that never fails."""

    kind = "mock"

    def __init__(self, cards: tuple[Card, ...] | list[Card] = MOCK_DECK, name: str = MOCK_DECK_NAME):
        self.name = name
        self._cards = tuple(cards)
        self._by_id = {card.card_id: card for card in self._cards}
        self._consumed: set[CardId] = set()

    async def list_due(self, deck_id: str | None = None) -> list[CardId]:
        return [card.card_id for card in self._cards if card.card_id not in self._consumed]

    async def fetch_details(self, card_ids: list[CardId]) -> list[Card]:
        return [self._by_id[cid] for cid in card_ids if cid in self._by_id]

    async def grade(self, card_id: CardId, verdict: Verdict) -> bool:
        logger.info("Demo deck grade: card={} verdict={}", card_id, verdict.value)
        if card_id not in self._by_id:
            return False
        self._consumed.add(card_id)
        return True

    async def deck_stats(self, deck_id: str | None = None) -> DeckStats:
        return DeckStats(
            name=self.name,
            total_cards=len(self._cards),
            remaining_cards=len(self._cards) - len(self._consumed),
        )

    def reset(self) -> None:
        self._consumed.clear()
