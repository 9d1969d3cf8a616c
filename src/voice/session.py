"""
Session state for the voice tutor.

SessionState is one owned value per study session. The orchestrator
replaces it (never mutates it in place across sessions) on connect and
on every start_study_session, so a stale async callback can tell it
belongs to a torn-down session by identity comparison.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from src.cards.base import CardSource
from src.cards.models import Card, CardId, Verdict
from src.voice.audio import Microphone
from src.voice.transport import Transport


class Phase(str, Enum):
    """Coarse connection phase."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_IDLE = "connected_idle"
    CONNECTED_STUDYING = "connected_studying"

    @property
    def is_connected(self) -> bool:
        return self in (Phase.CONNECTED_IDLE, Phase.CONNECTED_STUDYING)


@dataclass(frozen=True)
class MockBinding:
    """Study the built-in demo deck."""

    @property
    def label(self) -> str:
        return "demo deck"


@dataclass(frozen=True)
class RemoteBinding:
    """Study a named Anki deck."""

    deck_name: str

    @property
    def label(self) -> str:
        return f"Anki deck '{self.deck_name}'"


SourceBinding = Union[MockBinding, RemoteBinding]


def resolve_binding(deck_id: str | None, previous: SourceBinding | None) -> SourceBinding:
    """
    Pick the binding for a (re)started study session.

    An explicit deck always wins. Without one, a previous remote binding
    sticks; only a session that was never bound to Anki falls back to the
    demo deck.
    """
    if deck_id:
        return RemoteBinding(deck_id)
    if isinstance(previous, RemoteBinding):
        return previous
    return MockBinding()


@dataclass(frozen=True)
class GradedTurn:
    """A card whose grade is recorded but whose successor was not yet delivered."""

    card: Card
    verdict: Verdict
    status: str


@dataclass
class SessionState:
    """Everything owned by one live dialogue session."""

    transport: Transport
    microphone: Microphone
    binding: SourceBinding | None = None
    source: CardSource | None = None
    due_queue: list[CardId] = field(default_factory=list)
    current_card: Card | None = None
    # Set when advancing failed after a grade; the next tool call retries the advance
    graded_turn: GradedTurn | None = None
    # call_id -> tool name; name and arguments arrive in separate events
    pending_calls: dict[str, str] = field(default_factory=dict)
    session_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    @property
    def deck_id(self) -> str | None:
        return self.binding.deck_name if isinstance(self.binding, RemoteBinding) else None

    def successor(self, binding: SourceBinding, source: CardSource) -> "SessionState":
        """Fresh study state that inherits this session's transport and microphone."""
        return SessionState(
            transport=self.transport,
            microphone=self.microphone,
            binding=binding,
            source=source,
            pending_calls=dict(self.pending_calls),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view published to the presentation layer."""

    phase: Phase
    binding: SourceBinding | None
    current_card: Card | None
    verdict: Verdict | None
    queue_length: int
    error: str | None
    transcript: tuple[str, ...]
