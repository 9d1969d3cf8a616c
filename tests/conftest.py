"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
The fakes here stand in for the microphone, the realtime transport and
the Anki card source so orchestrator tests run without hardware or network.
"""
import asyncio
import json
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.cards.base import CardSource  # noqa: E402
from src.cards.mock_source import MockCardSource  # noqa: E402
from src.cards.models import Card, DeckStats  # noqa: E402
from src.core.errors import ConnectivityError  # noqa: E402
from src.voice import protocol  # noqa: E402
from src.voice.orchestrator import SessionOrchestrator  # noqa: E402
from src.voice.session import RemoteBinding  # noqa: E402
from src.voice.transport import Transport  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Fakes
# =============================================================================


class FakeMicrophone:
    """Microphone double that records open/close calls."""

    def __init__(self, open_error=None):
        self.open_error = open_error
        self.opened = False
        self.closed = False

    async def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def close(self):
        self.closed = True


class FakeTransport(Transport):
    """In-memory transport; tests push inbound events and inspect sent messages."""

    def __init__(self, connect_gate=None, connect_error=None, close_error=None):
        self.connect_gate = connect_gate
        self.connect_error = connect_error
        self.close_error = close_error
        self.sent = []
        self.connected = False
        self.closed = False
        self._inbound = asyncio.Queue()

    async def connect(self):
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def send(self, message):
        if self.closed:
            raise ConnectivityError("Fake transport closed")
        self.sent.append(message)

    async def events(self):
        while True:
            item = await self._inbound.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self):
        self.closed = True
        self._inbound.put_nowait(None)
        if self.close_error is not None:
            raise self.close_error

    # Test helpers

    def push(self, event):
        self._inbound.put_nowait(event)

    def drop(self, exc):
        self._inbound.put_nowait(exc)

    def sent_types(self):
        return [message["type"] for message in self.sent]

    def tool_outputs(self):
        """Decoded function_call_output payloads, in send order."""
        return [
            json.loads(message["item"]["output"])
            for message in self.sent
            if message["type"] == "conversation.item.create"
            and message["item"]["type"] == "function_call_output"
        ]

    def call_tool(self, call_id, verdict="correct", name=protocol.TOOL_NAME, arguments=None, announce=True):
        """Push the two events that make up one tool call."""
        if announce:
            self.push({
                "type": protocol.EVENT_OUTPUT_ITEM_ADDED,
                "item": {"type": "function_call", "call_id": call_id, "name": name},
            })
        if arguments is None:
            arguments = json.dumps({"user_response_quality": verdict, "feedback_text": "Nice."})
        self.push({
            "type": protocol.EVENT_FUNCTION_ARGS_DONE,
            "call_id": call_id,
            "arguments": arguments,
        })


class RecordingCardSource(CardSource):
    """Scriptable remote-style card source."""

    kind = "recording"

    def __init__(self, cards=(), due=None, name="Spanish"):
        self.name = name
        self.cards = {card.card_id: card for card in cards}
        self.due = list(due) if due is not None else [card.card_id for card in cards]
        self.grades = []
        self.grade_result = True
        self.fail_with = {}
        self.grade_gate = None
        self.grade_started = asyncio.Event()
        self.closed = False

    def _maybe_fail(self, method):
        if method in self.fail_with:
            raise self.fail_with[method]

    async def list_due(self, deck_id):
        self._maybe_fail("list_due")
        return list(self.due)

    async def fetch_details(self, card_ids):
        self._maybe_fail("fetch_details")
        return [self.cards[cid] for cid in card_ids if cid in self.cards]

    async def grade(self, card_id, verdict):
        self.grade_started.set()
        if self.grade_gate is not None:
            await self.grade_gate.wait()
        self._maybe_fail("grade")
        self.grades.append((card_id, verdict))
        return self.grade_result

    async def deck_stats(self, deck_id):
        self._maybe_fail("deck_stats")
        return DeckStats(name=deck_id or self.name, total_cards=len(self.cards), remaining_cards=len(self.due))

    async def close(self):
        self.closed = True


SPANISH_CARDS = (
    Card(card_id=101, front="hola", back="hello"),
    Card(card_id=102, front="adiós", back="goodbye"),
    Card(card_id=103, front="gracias", back="thank you"),
)


class Harness:
    """Orchestrator wired to fakes, with access to everything it created."""

    def __init__(self, settings):
        self.microphones = []
        self.transports = []
        self.sources = []
        self.mic_error = None
        self.transport_options = {}
        self.remote_cards = list(SPANISH_CARDS)
        self.remote_due = None
        self.remote_failures = {}
        self.orchestrator = SessionOrchestrator(
            microphone_factory=self._make_microphone,
            transport_factory=self._make_transport,
            source_factory=self._make_source,
            settings=settings,
        )

    def _make_microphone(self):
        microphone = FakeMicrophone(open_error=self.mic_error)
        self.microphones.append(microphone)
        return microphone

    def _make_transport(self, microphone):
        transport = FakeTransport(**self.transport_options)
        self.transports.append(transport)
        return transport

    def _make_source(self, binding):
        if isinstance(binding, RemoteBinding):
            source = RecordingCardSource(self.remote_cards, due=self.remote_due, name=binding.deck_name)
            source.fail_with = dict(self.remote_failures)
        else:
            source = MockCardSource()
        self.sources.append(source)
        return source

    @property
    def transport(self):
        return self.transports[-1]

    @property
    def microphone(self):
        return self.microphones[-1]

    @property
    def source(self):
        return self.sources[-1]


async def _wait_until(predicate, timeout=1.0):
    """Poll until predicate() is truthy; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def test_settings():
    """Settings with short timers so timing tests stay fast."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        verdict_display_seconds=0.05,
        connect_timeout_seconds=0.2,
        card_source_timeout_seconds=0.2,
        log_file=None,
    )


@pytest_asyncio.fixture
async def harness(test_settings):
    """Orchestrator with fake microphone, transport and card sources."""
    h = Harness(test_settings)
    yield h
    await h.orchestrator.close()


@pytest.fixture
def sample_card_info():
    """Provide a cardsInfo entry as returned by AnkiConnect."""
    return {
        "cardId": 1498938915662,
        "deckName": "Spanish",
        "modelName": "Basic",
        "fields": {
            "Back": {"value": "the cat<br>(masculine)", "order": 1},
            "Front": {"value": "<b>el gato</b>", "order": 0},
        },
        "question": "<style>.card{}</style>el gato",
        "answer": "el gato<hr id=answer>the cat",
    }


@pytest.fixture
def wait_until():
    """Async poller: await wait_until(lambda: condition)."""
    return _wait_until


@pytest.fixture
def spanish_source():
    """Recording card source holding three due Spanish cards."""
    return RecordingCardSource(SPANISH_CARDS)
