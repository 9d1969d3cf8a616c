"""
Voice study session orchestrator.

Owns the connection lifecycle, the card source binding, the due queue
and the current card, and services the dialogue agent's tool calls.

Concurrency model:
- One asyncio.Lock serializes connect, start_study_session and the
  handling of every inbound transport event, so two operations never
  interleave their mutations.
- A single consumer task reads the transport's event stream in arrival
  order; tool calls are therefore serviced one at a time, in order.
- disconnect() does not wait for the lock. It detaches the session
  synchronously, then tears it down. Work still in flight for the old
  session notices on its next await that it is no longer live and
  discards its results. The one exception is a connection attempt in
  progress: disconnect() cancels it and waits for the lock so the
  attempt's microphone and transport are released before it returns.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from loguru import logger

from config import Settings, get_settings
from src.cards.anki_source import AnkiCardSource
from src.cards.base import CardSource
from src.cards.mock_source import MockCardSource
from src.cards.models import Card, CardId, Verdict
from src.core.errors import (
    ConnectivityError,
    ProtocolError,
    SessionTimeoutError,
    StateError,
    TutorError,
)
from src.voice import protocol
from src.voice.audio import Microphone, Speaker
from src.voice.prompts import build_greeting, build_instructions, build_start_message
from src.voice.session import (
    GradedTurn,
    Phase,
    RemoteBinding,
    SessionSnapshot,
    SessionState,
    SourceBinding,
    resolve_binding,
)
from src.voice.transport import RealtimeTransport, Transport

T = TypeVar("T")

MicrophoneFactory = Callable[[], Microphone]
TransportFactory = Callable[[Microphone], Transport]
SourceFactory = Callable[[SourceBinding], CardSource]
Listener = Callable[[SessionSnapshot], None]


class _StaleSession(Exception):
    """Raised internally when work outlives the session it was started for."""


def default_source_factory(binding: SourceBinding) -> CardSource:
    if isinstance(binding, RemoteBinding):
        return AnkiCardSource()
    return MockCardSource()


def default_microphone_factory() -> Microphone:
    settings = get_settings()
    return Microphone(sample_rate=settings.audio_sample_rate, block_ms=settings.audio_block_ms)


def default_transport_factory(microphone: Microphone) -> Transport:
    settings = get_settings()
    if not settings.has_realtime_configured():
        raise ConnectivityError("OPENAI_API_KEY not configured")
    return RealtimeTransport(
        url=settings.get_realtime_endpoint(),
        api_key=settings.openai_api_key or "",
        microphone=microphone,
        speaker=Speaker(sample_rate=settings.audio_sample_rate),
    )


class SessionOrchestrator:
    """
    Drives one spoken flashcard session at a time.

    Presentation code calls connect(), start_study_session() and
    disconnect(), and observes state through snapshot() or listeners
    registered with add_listener().
    """

    def __init__(
        self,
        microphone_factory: MicrophoneFactory | None = None,
        transport_factory: TransportFactory | None = None,
        source_factory: SourceFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._microphone_factory = microphone_factory or default_microphone_factory
        self._transport_factory = transport_factory or default_transport_factory
        self._source_factory = source_factory or default_source_factory

        self._lock = asyncio.Lock()
        self._phase = Phase.DISCONNECTED
        self._session: SessionState | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        # In-flight transport handshake, cancellable by disconnect()
        self._connect_step: asyncio.Future[None] | None = None
        self._connect_cancelled = False

        self._verdict: Verdict | None = None
        self._verdict_timer: asyncio.TimerHandle | None = None
        self._error: str | None = None
        self._transcript: list[str] = []
        self._listeners: list[Listener] = []

    # ========================================
    # Observable State
    # ========================================

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def session(self) -> SessionState | None:
        return self._session

    @property
    def current_card(self) -> Card | None:
        return self._session.current_card if self._session else None

    @property
    def due_queue(self) -> tuple[CardId, ...]:
        return tuple(self._session.due_queue) if self._session else ()

    @property
    def binding(self) -> SourceBinding | None:
        return self._session.binding if self._session else None

    @property
    def verdict(self) -> Verdict | None:
        return self._verdict

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def transcript(self) -> tuple[str, ...]:
        return tuple(self._transcript)

    @property
    def is_finished(self) -> bool:
        """True once a study session has run out of cards."""
        session = self._session
        return (
            self._phase is Phase.CONNECTED_STUDYING
            and session is not None
            and session.current_card is None
            and not session.due_queue
        )

    def snapshot(self) -> SessionSnapshot:
        session = self._session
        return SessionSnapshot(
            phase=self._phase,
            binding=session.binding if session else None,
            current_card=session.current_card if session else None,
            verdict=self._verdict,
            queue_length=len(session.due_queue) if session else 0,
            error=self._error,
            transcript=tuple(self._transcript),
        )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def clear_transcript(self) -> None:
        self._transcript.clear()
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    def _log(self, line: str) -> None:
        self._transcript.append(line)
        logger.debug("[transcript] {}", line)
        self._notify()

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self._phase:
            logger.debug("Phase {} -> {}", self._phase.value, phase.value)
            self._phase = phase
            self._notify()

    def _record_error(self, exc: BaseException, context: str) -> None:
        self._error = str(exc)
        logger.error("{}: {}", context, exc)
        self._log(f"Error: {context}: {exc}")

    def _set_verdict(self, verdict: Verdict) -> None:
        # A new verdict replaces the old one and its timer
        if self._verdict_timer is not None:
            self._verdict_timer.cancel()
        self._verdict = verdict
        loop = asyncio.get_running_loop()
        self._verdict_timer = loop.call_later(self.settings.verdict_display_seconds, self._clear_verdict)
        self._log(f"[Evaluation] {verdict.value}")

    def _clear_verdict(self) -> None:
        self._verdict = None
        self._verdict_timer = None
        self._notify()

    # ========================================
    # Lifecycle
    # ========================================

    async def connect(self, greet: bool = True) -> None:
        """
        Acquire the microphone and open the dialogue transport.

        Args:
            greet: Ask the agent to say hello once connected

        Raises:
            StateError: A connection attempt is already in progress
            HardwareError: Microphone missing or denied
            ConnectivityError: Transport unreachable
            SessionTimeoutError: Transport handshake took too long
        """
        if self._phase is Phase.CONNECTING:
            raise StateError("A connection attempt is already in progress")
        async with self._lock:
            if self._phase.is_connected:
                logger.info("connect() ignored: already connected")
                return
            await self._connect_locked(greet)

    async def _connect_locked(self, greet: bool) -> None:
        self._set_phase(Phase.CONNECTING)
        self._error = None
        self._connect_cancelled = False
        self._log("Starting connection...")

        microphone: Microphone | None = None
        transport: Transport | None = None
        attached = False
        try:
            self._log("Requesting microphone...")
            microphone = self._microphone_factory()
            await microphone.open()
            self._check_connect_cancelled()
            self._log("Microphone access granted.")

            transport = self._transport_factory(microphone)
            self._log("Connecting session...")
            step = asyncio.ensure_future(transport.connect())
            self._connect_step = step
            try:
                await self._bounded(step, self.settings.connect_timeout_seconds, "Transport connect")
            except asyncio.CancelledError:
                if not self._connect_cancelled:
                    raise
            finally:
                self._connect_step = None
            self._check_connect_cancelled()
            self._log("Session connected!")

            if greet:
                await transport.send(protocol.response_create(self.settings.greeting_instructions))
                self._check_connect_cancelled()

            session = SessionState(transport=transport, microphone=microphone)
            self._session = session
            self._consumer = self._spawn(self._consume(session.transport), name=f"consumer-{session.session_id}")
            attached = True
            self._set_phase(Phase.CONNECTED_IDLE)
        except TutorError as exc:
            if not self._connect_cancelled:
                self._record_error(exc, "Connection failed")
            raise
        finally:
            if not attached:
                self._session = None
                self._set_phase(Phase.DISCONNECTED)
                await self._release(transport, microphone)

    async def start_study_session(self, deck_id: str | None = None) -> bool:
        """
        Start (or restart) studying a deck over the live voice session.

        Connects silently first when disconnected. Without deck_id, a
        previously bound Anki deck is kept; otherwise the demo deck is used.

        Returns:
            True if the study session started, False if it was aborted
        """
        if self._phase is Phase.CONNECTING:
            self._log("Error: cannot start studying while a connection attempt is in progress")
            return False

        async with self._lock:
            if self._session is None:
                self._log("Not connected; connecting before study...")
                try:
                    await self._connect_locked(greet=False)
                except TutorError:
                    self._log("Study session aborted: could not connect.")
                    return False

            session = self._session
            assert session is not None
            binding = resolve_binding(deck_id, session.binding)
            source = self._source_factory(binding)
            try:
                fresh = await self._prepare_study(session, binding, source)
            except _StaleSession:
                await source.close()
                return False
            except TutorError as exc:
                await source.close()
                self._record_error(exc, "Failed to start study session")
                return False

            if not self._owns(session.transport):
                await source.close()
                return False

            previous_source = session.source
            self._session = fresh
            self._set_phase(Phase.CONNECTED_STUDYING)
            if previous_source is not None and previous_source is not source:
                await previous_source.close()
            return True

    async def _prepare_study(
        self,
        session: SessionState,
        binding: SourceBinding,
        source: CardSource,
    ) -> SessionState:
        fresh = session.successor(binding, source)
        source.reset()
        deck_id = fresh.deck_id
        logger.info("Study source: {} ({})", source.kind, binding.label)

        stats = await self._source_call(source.deck_stats(deck_id))
        self._ensure_live(session)
        due = await self._source_call(source.list_due(deck_id))
        self._ensure_live(session)
        fresh.due_queue = list(due)
        first_card = await self._advance(fresh)

        greeting = build_greeting(stats)
        instructions = build_instructions(
            remote=isinstance(binding, RemoteBinding),
            deck=stats.name,
            greeting=greeting,
        )
        self._log(f"Starting Study Session ({binding.label}): {greeting}")

        transport = fresh.transport
        await transport.send(protocol.session_update(instructions, self.settings.transcription_model))
        await transport.send(protocol.user_message(build_start_message(greeting, first_card)))
        await transport.send(protocol.response_create())
        return fresh

    async def disconnect(self) -> None:
        """
        Tear down the voice session. No-op when nothing is connected.

        A connection attempt still in progress is cancelled; this returns
        once its microphone and transport are released. The microphone is
        released even if closing the transport fails.
        """
        session = self._session
        if session is None:
            if self._phase is Phase.CONNECTING:
                self._connect_cancelled = True
                if self._connect_step is not None:
                    self._connect_step.cancel()
                self._log("Connection attempt cancelled.")
                # The connect holds the lock until its cleanup is done
                async with self._lock:
                    pass
                return
            logger.debug("disconnect() with no active session")
            return

        self._session = None
        self._consumer = None
        self._set_phase(Phase.DISCONNECTED)
        try:
            await self._release_session(session)
        finally:
            self._log("Disconnected.")

    async def close(self) -> None:
        """Disconnect and wait for leftover background work."""
        await self.disconnect()
        if self._verdict_timer is not None:
            self._verdict_timer.cancel()
            self._verdict_timer = None
        pending = [task for task in self._background if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _release(self, transport: Transport | None, microphone: Microphone | None) -> None:
        try:
            if transport is not None:
                await transport.close()
        except TutorError as exc:
            self._log(f"Transport teardown failed: {exc}")
        finally:
            if microphone is not None:
                microphone.close()

    async def _release_session(self, session: SessionState) -> None:
        try:
            await self._release(session.transport, session.microphone)
        finally:
            if session.source is not None:
                await session.source.close()

    # ========================================
    # Event Consumption
    # ========================================

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _owns(self, transport: Transport) -> bool:
        return self._session is not None and self._session.transport is transport

    async def _consume(self, transport: Transport) -> None:
        """Single consumer loop over the transport's inbound stream."""
        try:
            async for event in transport.events():
                async with self._lock:
                    if not self._owns(transport):
                        return
                    try:
                        await self._handle_event(self._session, event)
                    except Exception as exc:  # pylint: disable=broad-except
                        logger.exception("Unhandled error while handling {}", event.get("type"))
                        self._log(f"Error: handling {event.get('type')}: {exc}")
        except ConnectivityError as exc:
            await self._on_transport_lost(transport, exc)
            return
        await self._on_transport_lost(transport, ConnectivityError("Transport closed by remote"))

    async def _on_transport_lost(self, transport: Transport, exc: TutorError) -> None:
        if not self._owns(transport):
            return
        session = self._session
        assert session is not None
        self._session = None
        self._consumer = None
        self._set_phase(Phase.DISCONNECTED)
        self._record_error(exc, "Transport failed")
        await self._release_session(session)

    async def _handle_event(self, session: SessionState, event: dict[str, Any]) -> None:
        kind = event.get("type")

        if kind in protocol.IGNORED_EVENTS:
            return

        if kind == protocol.EVENT_OUTPUT_ITEM_ADDED:
            item = event.get("item") or {}
            if item.get("type") == "function_call":
                session.pending_calls[item.get("call_id", "")] = item.get("name", "")
                self._log(f"[Tool Queued] {item.get('name')}")
        elif kind == protocol.EVENT_FUNCTION_ARGS_DONE:
            await self._service_tool_call(session, event)
        elif kind in protocol.AGENT_TRANSCRIPT_DONE_EVENTS:
            self._log(f"[Agent] {event.get('transcript', '')}")
        elif kind == protocol.EVENT_USER_TRANSCRIPT_DONE:
            self._log(f"[User] {event.get('transcript', '')}")
        elif kind == protocol.EVENT_ERROR:
            self._log(f"[Error] {json.dumps(event.get('error', event))}")
        else:
            logger.trace("Unhandled realtime event: {}", kind)

    # ========================================
    # Tool Calls
    # ========================================

    async def _service_tool_call(self, session: SessionState, event: dict[str, Any]) -> None:
        call_id = event.get("call_id") or ""
        name = session.pending_calls.pop(call_id, None)
        self._log(f"[Tool Executing] {name or 'unknown'} ({call_id})")

        try:
            arguments = protocol.parse_tool_arguments(call_id, name, event.get("arguments"))
            result = await self._grade_and_advance(session, arguments.user_response_quality)
        except _StaleSession:
            logger.debug("Discarding tool call {} from a closed session", call_id)
            return
        except ProtocolError as exc:
            self._log(f"[Protocol Error] {exc}")
            output = protocol.encode_tool_error(str(exc))
        except TutorError as exc:
            self._log(f"[Tool Error] {exc}")
            output = protocol.encode_tool_error(str(exc))
        except Exception as exc:  # pylint: disable=broad-except
            # The agent waits for a result no matter what failed
            logger.exception("Unexpected error servicing tool call {}", call_id)
            self._log(f"[Tool Error] internal error: {exc}")
            output = protocol.encode_tool_error(f"Internal error: {exc}")
        else:
            output = protocol.encode_tool_output(result)
            self._log(f"[Tool Result] {output}")

        if not self._owns(session.transport):
            return
        try:
            await session.transport.send(protocol.function_call_output(call_id, output))
            await session.transport.send(protocol.response_create())
        except ConnectivityError as exc:
            self._log(f"[Tool Error] could not deliver result for {call_id}: {exc}")

    async def _grade_and_advance(self, session: SessionState, verdict: Verdict) -> protocol.TurnResult:
        """
        Grade the current card, then advance to the next one.

        The answered card's back text is captured before advancing so
        feedback always refers to the card the learner just answered.
        If a previous call graded its card but could not advance, this call
        retries the advance for that card instead of grading anything.
        """
        if session.source is None:
            raise StateError("No study session in progress")

        turn = session.graded_turn
        if turn is not None:
            self._log(f"Retrying advance after card {turn.card.card_id}")
        elif session.current_card is not None:
            answered = session.current_card
            accepted = await self._source_call(session.source.grade(answered.card_id, verdict))
            self._ensure_live(session)
            status = protocol.STATUS_SUCCESS
            if not accepted:
                status = protocol.STATUS_NOT_RECORDED
                self._log(f"Grade for card {answered.card_id} was not recorded")
            turn = GradedTurn(card=answered, verdict=verdict, status=status)
            # Graded cards are never current again, even if advancing fails below
            session.graded_turn = turn
            session.current_card = None
        elif session.due_queue:
            raise StateError("No current card to grade; restart the study session")

        self._set_verdict(turn.verdict if turn is not None else verdict)
        next_card = await self._advance(session)
        session.graded_turn = None
        if turn is None:
            return protocol.TurnResult(status=protocol.STATUS_SUCCESS, answered_card_back=None, next_card=next_card)
        return protocol.TurnResult(status=turn.status, answered_card_back=turn.card.back, next_card=next_card)

    async def _advance(self, session: SessionState) -> Card | None:
        """
        Pop the queue head once its details are fetched and make it current.

        Ids the source no longer knows are dropped. Returns None when the
        queue is exhausted.
        """
        assert session.source is not None
        while session.due_queue:
            head = session.due_queue[0]
            cards = await self._source_call(session.source.fetch_details([head]))
            self._ensure_live(session)
            session.due_queue.pop(0)
            if cards:
                session.current_card = cards[0]
                self._notify()
                return cards[0]
            self._log(f"Card {head} has no details; skipping")

        session.current_card = None
        self._notify()
        return None

    # ========================================
    # Helpers
    # ========================================

    def _ensure_live(self, session: SessionState) -> None:
        if not self._owns(session.transport):
            raise _StaleSession()

    def _check_connect_cancelled(self) -> None:
        if self._connect_cancelled:
            raise StateError("Connection attempt cancelled by disconnect()")

    async def _source_call(self, coro: Awaitable[T]) -> T:
        return await self._bounded(coro, self.settings.card_source_timeout_seconds, "Card source call")

    @staticmethod
    async def _bounded(coro: Awaitable[T], timeout: float, what: str) -> T:
        try:
            return await asyncio.wait_for(coro, timeout)
        except SessionTimeoutError:
            raise
        except asyncio.TimeoutError:
            raise SessionTimeoutError(f"{what} timed out after {timeout}s") from None
