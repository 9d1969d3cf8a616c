"""
AnkiConnect client for the voice tutor.

Async HTTP wrapper around the AnkiConnect API for:
- Listing decks
- Finding (due) cards in a deck
- Fetching card details in batches
- Submitting review answers

Based on AnkiConnect API v6.

Hardening:
- Connection check with cached result
- Configurable timeout, surfaced as SessionTimeoutError
- Network failures surfaced as ConnectivityError
- AnkiConnect error payloads surfaced as CardSourceError
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from loguru import logger

from config import get_settings
from src.anki.config import (
    ACTION_ANSWER_CARDS,
    ACTION_CARDS_INFO,
    ACTION_DECK_NAMES,
    ACTION_FIND_CARDS,
    ACTION_VERSION,
    deck_query,
)
from src.core.errors import CardSourceError, ConnectivityError, SessionTimeoutError


class AnkiClient:
    """
    Async wrapper around the AnkiConnect API.

    AnkiConnect must be installed in Anki and running on port 8765.
    See: https://foosoft.net/projects/anki-connect/
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        version: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize AnkiConnect client.

        Args:
            base_url: AnkiConnect URL (default from config)
            timeout: Request timeout in seconds (default from config)
            version: AnkiConnect API version (default from config)
            http_client: Pre-built client, mainly for tests
        """
        settings = get_settings()
        self.base_url = base_url or settings.anki_connect_url
        self.timeout = timeout if timeout is not None else settings.anki_timeout_seconds
        self.version = version or settings.anki_connect_version
        self._client = http_client
        self._last_connection_check = 0.0
        self._connection_available = False

        logger.debug(
            "Initialized AnkiConnect client: url={}, timeout={}s, version={}",
            self.base_url,
            self.timeout,
            self.version,
        )

    async def __aenter__(self) -> "AnkiClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ========================================
    # Core API Methods
    # ========================================

    async def _invoke(self, action: str, params: dict[str, Any] | None = None) -> Any:
        """
        Invoke an AnkiConnect API action.

        Args:
            action: AnkiConnect action name (e.g., "deckNames", "findCards")
            params: Action parameters

        Returns:
            Result from AnkiConnect API

        Raises:
            ConnectivityError: If AnkiConnect cannot be reached
            SessionTimeoutError: If the request timed out
            CardSourceError: If AnkiConnect returns an error
        """
        payload = {
            "action": action,
            "version": self.version,
            "params": params or {},
        }

        # Truncate large params for logging to avoid verbose output
        log_params = params
        if params:
            log_params = {}
            for k, v in params.items():
                if isinstance(v, list) and len(v) > 10:
                    log_params[k] = f"[{len(v)} items]"
                else:
                    log_params[k] = v
        logger.debug("AnkiConnect request: action={}, params={}", action, log_params)

        client = self._ensure_client()
        try:
            response = await client.post(self.base_url, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SessionTimeoutError(
                f"AnkiConnect timed out on '{action}'. "
                "Anki may have a modal dialog open."
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ConnectivityError(
                f"AnkiConnect returned HTTP {exc.response.status_code} for '{action}'"
            ) from exc
        except httpx.RequestError as exc:
            raise ConnectivityError(
                f"AnkiConnect unreachable at {self.base_url}: {exc}"
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise CardSourceError(f"AnkiConnect sent invalid JSON for '{action}'") from exc

        if data.get("error"):
            raise CardSourceError(f"AnkiConnect error: {data['error']}")

        return data.get("result")

    async def check_connection(self, cache_seconds: float = 30.0) -> bool:
        """
        Check if AnkiConnect is running and accessible.

        Uses cached result to avoid hammering Anki on repeated checks.

        Args:
            cache_seconds: Seconds to cache the connection status

        Returns:
            True if connection successful, False otherwise
        """
        now = time.monotonic()
        if self._last_connection_check and (now - self._last_connection_check) < cache_seconds:
            return self._connection_available

        try:
            version = await self._invoke(ACTION_VERSION)
            self._connection_available = True
            logger.debug("AnkiConnect version detected: {}", version)
        except ConnectivityError:
            self._connection_available = False
            logger.warning(
                "Anki not running or AnkiConnect not installed. "
                "Start Anki and ensure AnkiConnect addon is enabled."
            )
        except SessionTimeoutError:
            self._connection_available = False
            logger.warning(
                "AnkiConnect request timed out. "
                "Anki may have a modal dialog open (e.g., 'Check Database', 'Sync'). "
                "Close any dialogs and try again."
            )
        except CardSourceError as e:
            self._connection_available = False
            logger.warning("AnkiConnect error: {}", e)

        self._last_connection_check = now
        return self._connection_available

    def is_available(self) -> bool:
        """
        Quick check if Anki connection was recently verified.

        Use this for fast conditional logic without making a network call.
        """
        return self._connection_available

    # ========================================
    # Deck & Card Methods
    # ========================================

    async def deck_names(self) -> list[str]:
        """List all deck names."""
        return await self._invoke(ACTION_DECK_NAMES) or []

    async def find_cards(self, deck_name: str) -> list[int]:
        """Find every card id in a deck."""
        return await self._invoke(ACTION_FIND_CARDS, {"query": deck_query(deck_name)}) or []

    async def find_due_cards(self, deck_name: str) -> list[int]:
        """Find card ids in a deck that are due for review now."""
        query = deck_query(deck_name, due_only=True)
        return await self._invoke(ACTION_FIND_CARDS, {"query": query}) or []

    async def cards_info(self, card_ids: list[int]) -> list[dict[str, Any]]:
        """
        Fetch card details for a batch of ids.

        AnkiConnect answers with an empty dict for ids it does not know;
        those entries are dropped so the result never contains placeholders.
        """
        if not card_ids:
            return []
        cards = await self._invoke(ACTION_CARDS_INFO, {"cards": card_ids}) or []
        return [card for card in cards if card and card.get("cardId") is not None]

    async def answer_card(self, card_id: int, ease: int) -> bool:
        """
        Submit a review answer for one card.

        Args:
            card_id: Anki card id
            ease: 1 (Again) through 4 (Easy)

        Returns:
            True if Anki accepted the answer
        """
        result = await self._invoke(
            ACTION_ANSWER_CARDS,
            {"answers": [{"cardId": card_id, "ease": ease}]},
        )
        if isinstance(result, list):
            return bool(result) and bool(result[0])
        return bool(result)
