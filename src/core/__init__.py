"""
Core Module - Shared error taxonomy.

All domain modules (src/anki/, src/cards/, src/voice/) raise and catch
the classes defined here rather than defining their own.
"""

from src.core.errors import (
    CardSourceError,
    ConnectivityError,
    HardwareError,
    ProtocolError,
    SessionTimeoutError,
    StateError,
    TutorError,
)

__all__ = [
    "TutorError",
    "HardwareError",
    "ConnectivityError",
    "CardSourceError",
    "ProtocolError",
    "StateError",
    "SessionTimeoutError",
]
