"""Spoken study sessions over a realtime dialogue agent."""

from src.voice.orchestrator import SessionOrchestrator
from src.voice.protocol import END_OF_SESSION, TOOL_NAME
from src.voice.session import MockBinding, Phase, RemoteBinding, SessionSnapshot, SessionState
from src.voice.transport import RealtimeTransport, Transport

__all__ = [
    "SessionOrchestrator",
    "SessionState",
    "SessionSnapshot",
    "Phase",
    "MockBinding",
    "RemoteBinding",
    # Transport
    "Transport",
    "RealtimeTransport",
    # Protocol
    "TOOL_NAME",
    "END_OF_SESSION",
]
