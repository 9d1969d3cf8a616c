"""
Transport to the realtime dialogue agent.

The orchestrator sees the transport as a capability with two sides:
send() for outbound protocol messages and events() for the inbound
stream. RealtimeTransport implements it over a websocket and keeps the
audio plumbing (microphone upload, speaker playback) to itself.
"""

from __future__ import annotations

import asyncio
import base64
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import suppress
from typing import Any

from loguru import logger
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake

from src.core.errors import ConnectivityError
from src.voice import protocol
from src.voice.audio import Microphone, Speaker


class Transport(ABC):
    """Duplex message channel to the dialogue agent."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish the session. Raises ConnectivityError on failure."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send one outbound protocol message."""

    @abstractmethod
    def events(self) -> AsyncIterator[dict[str, Any]]:
        """
        Inbound event stream.

        Ends normally after close(). Raises ConnectivityError if the
        connection drops while still in use.
        """

    @abstractmethod
    async def close(self) -> None:
        """Tear down the session. Safe to call more than once."""


class RealtimeTransport(Transport):
    """Websocket transport for the OpenAI realtime API."""

    def __init__(
        self,
        url: str,
        api_key: str,
        microphone: Microphone | None = None,
        speaker: Speaker | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.microphone = microphone
        self.speaker = speaker
        self._ws: ClientConnection | None = None
        self._pump: asyncio.Task[None] | None = None
        self._closing = False

    async def connect(self) -> None:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            self._ws = await connect(self.url, additional_headers=headers, max_size=None)
        except (OSError, InvalidHandshake) as exc:
            raise ConnectivityError(f"Realtime connect failed: {exc}") from exc

        if self.speaker is not None:
            self.speaker.open()
        if self.microphone is not None:
            self._pump = asyncio.create_task(self._pump_microphone(), name="mic-pump")
        logger.info("Realtime transport connected: {}", self.url)

    async def _pump_microphone(self) -> None:
        assert self.microphone is not None
        try:
            async for block in self.microphone.frames():
                await self.send(protocol.audio_append(base64.b64encode(block).decode("ascii")))
        except ConnectivityError as exc:
            # The event stream reports the drop; the pump just stops
            logger.debug("Microphone pump stopped: {}", exc)

    async def send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectivityError("Realtime transport is not connected")
        if message.get("type") != "input_audio_buffer.append":
            logger.debug("Realtime send: {}", message.get("type"))
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise ConnectivityError(f"Realtime connection closed: {exc}") from exc

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        if self._ws is None:
            raise ConnectivityError("Realtime transport is not connected")
        try:
            async for raw in self._ws:
                try:
                    event = json.loads(raw)
                except json.JSONDecodeError as exc:
                    logger.warning("Dropping non-JSON realtime event: {}", exc)
                    continue
                self._play(event)
                yield event
        except ConnectionClosedOK:
            return
        except ConnectionClosed as exc:
            if self._closing:
                return
            raise ConnectivityError(f"Realtime connection lost: {exc}") from exc

    def _play(self, event: dict[str, Any]) -> None:
        if self.speaker is None:
            return
        kind = event.get("type")
        if kind in ("response.audio.delta", "response.output_audio.delta"):
            self.speaker.play(base64.b64decode(event.get("delta", "")))
        elif kind == "input_audio_buffer.speech_started":
            self.speaker.flush()

    async def close(self) -> None:
        self._closing = True
        pump, self._pump = self._pump, None
        if pump is not None:
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump
        ws, self._ws = self._ws, None
        try:
            if ws is not None:
                await ws.close()
        finally:
            if self.speaker is not None:
                self.speaker.close()
        logger.info("Realtime transport closed")
