"""
Audio devices for the realtime transport.

Microphone capture and speaker playback over PortAudio (sounddevice).
Both use raw PCM16 mono at the configured sample rate, which is the
format the realtime agent expects on input and produces on output.

The microphone is the session's exclusive input capability: opening it
can fail with HardwareError, and close() is idempotent so callers can
release it unconditionally.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from src.core.errors import HardwareError


def _load_sounddevice() -> Any:
    # PortAudio is a system library; a missing one means no usable audio hardware
    try:
        import sounddevice
    except OSError as exc:
        raise HardwareError(f"Audio backend unavailable: {exc}") from exc
    return sounddevice


class Microphone:
    """PCM16 microphone capture delivering fixed-size blocks to asyncio."""

    def __init__(self, sample_rate: int = 24000, block_ms: int = 40, device: int | str | None = None):
        self.sample_rate = sample_rate
        self.block_size = int(sample_rate * block_ms / 1000)
        self.device = device
        self._stream: Any = None
        self._queue: asyncio.Queue[bytes | None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    async def open(self) -> None:
        """
        Acquire the input device and start capturing.

        Raises:
            HardwareError: No input device, or access denied
        """
        sd = _load_sounddevice()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        try:
            sd.query_devices(self.device, kind="input")
            self._stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                device=self.device,
                channels=1,
                dtype="int16",
                callback=self._on_audio,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            raise HardwareError(f"Microphone unavailable: {exc}") from exc

        logger.debug("Microphone open: rate={} block={}", self.sample_rate, self.block_size)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        # Runs on the PortAudio thread
        if status:
            logger.debug("Microphone status: {}", status)
        if self._loop is not None and self._queue is not None:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, bytes(indata))

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield captured blocks until the microphone is closed."""
        if self._queue is None:
            return
        while True:
            block = await self._queue.get()
            if block is None:
                return
            yield block

    def close(self) -> None:
        """Stop capture and release the device. Safe to call repeatedly."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            if self._loop is not None and self._queue is not None:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
            logger.debug("Microphone released")


class Speaker:
    """PCM16 playback fed with chunks as the agent streams them."""

    def __init__(self, sample_rate: int = 24000, device: int | str | None = None):
        self.sample_rate = sample_rate
        self.device = device
        self._stream: Any = None
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def open(self) -> None:
        sd = _load_sounddevice()
        try:
            self._stream = sd.RawOutputStream(
                samplerate=self.sample_rate,
                device=self.device,
                channels=1,
                dtype="int16",
                callback=self._fill,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            raise HardwareError(f"Speaker unavailable: {exc}") from exc

    def _fill(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        needed = len(outdata)
        with self._lock:
            chunk = bytes(self._buffer[:needed])
            del self._buffer[:needed]
        outdata[: len(chunk)] = chunk
        if len(chunk) < needed:
            outdata[len(chunk):] = b"\x00" * (needed - len(chunk))

    def play(self, pcm: bytes) -> None:
        with self._lock:
            self._buffer.extend(pcm)

    def flush(self) -> None:
        """Drop queued audio, e.g. when the learner interrupts."""
        with self._lock:
            self._buffer.clear()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
