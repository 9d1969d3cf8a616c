"""
Error taxonomy for the voice tutor.

Every failure the orchestrator reports to the user maps to one of these
classes. They all derive from TutorError so callers can catch the family
at the CLI boundary.
"""

from __future__ import annotations


class TutorError(Exception):
    """Base class for all voice tutor failures."""


class HardwareError(TutorError):
    """Microphone missing or access denied. Fatal to connect, never retried."""


class ConnectivityError(TutorError):
    """Transport or card source unreachable."""


class CardSourceError(TutorError):
    """The card source answered, but reported a service-level error."""


class ProtocolError(TutorError):
    """Malformed or unexpected tool call from the dialogue agent."""

    def __init__(self, message: str, call_id: str | None = None) -> None:
        super().__init__(message)
        self.call_id = call_id


class StateError(TutorError):
    """Operation invoked in a phase where it is not valid."""


class SessionTimeoutError(TutorError, TimeoutError):
    """A bounded wait on the transport or card source expired."""
