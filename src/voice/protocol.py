"""
Turn protocol codec.

Translates between the orchestrator's grade+advance operation and the
wire messages exchanged with the realtime dialogue agent:
- the single tool schema declared in session.update
- parsing of tool-call arguments
- encoding of tool results
- builders for every outbound message kind
- names of the inbound event kinds the orchestrator consumes
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from src.cards.models import Card, Verdict
from src.core.errors import ProtocolError

TOOL_NAME = "evaluate_and_move_next"

# The agent's instructions react to this literal, not to an absent value
END_OF_SESSION = "END OF SESSION"
END_OF_SESSION_CARD: dict[str, str] = {"front": END_OF_SESSION, "back": END_OF_SESSION}

STATUS_SUCCESS = "success"
STATUS_NOT_RECORDED = "grade_not_recorded"
STATUS_ERROR = "error"

# =============================================================================
# Inbound Event Types
# =============================================================================
EVENT_ERROR = "error"
EVENT_OUTPUT_ITEM_ADDED = "response.output_item.added"
EVENT_FUNCTION_ARGS_DONE = "response.function_call_arguments.done"
EVENT_USER_TRANSCRIPT_DONE = "conversation.item.input_audio_transcription.completed"
AGENT_TRANSCRIPT_DONE_EVENTS = frozenset({
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
})
# Streaming partials: acknowledged and dropped
IGNORED_EVENTS = frozenset({
    "response.audio.delta",
    "response.audio_transcript.delta",
    "response.output_audio.delta",
    "response.output_audio_transcript.delta",
    "response.function_call_arguments.delta",
    "response.text.delta",
    "response.output_text.delta",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "input_audio_buffer.committed",
    "conversation.item.input_audio_transcription.delta",
})


class EvaluateArguments(BaseModel):
    """Arguments of evaluate_and_move_next as sent by the agent."""

    model_config = ConfigDict(extra="ignore")

    user_response_quality: Verdict
    feedback_text: str


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one atomic grade+advance turn."""

    status: str
    answered_card_back: str | None
    next_card: Card | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "answered_card_back": self.answered_card_back,
            "next_card": self.next_card.to_dict() if self.next_card else dict(END_OF_SESSION_CARD),
        }


def tool_schema() -> dict[str, Any]:
    """The one tool declared to the agent in every session configuration."""
    return {
        "type": "function",
        "name": TOOL_NAME,
        "description": (
            "Grade the learner's answer to the current card and move to the next card. "
            "Returns the answered card's back text and the next card to ask about."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "user_response_quality": {
                    "type": "string",
                    "enum": [v.value for v in Verdict],
                    "description": "Whether the learner's spoken answer was correct.",
                },
                "feedback_text": {
                    "type": "string",
                    "description": "Short feedback you will say to the learner.",
                },
            },
            "required": ["user_response_quality", "feedback_text"],
        },
    }


def parse_tool_arguments(call_id: str, name: str | None, raw_arguments: str | None) -> EvaluateArguments:
    """
    Validate a completed tool call.

    Args:
        call_id: Call identifier from the arguments-done event
        name: Tool name recorded when the call was announced (None if never announced)
        raw_arguments: JSON argument string

    Returns:
        Parsed arguments

    Raises:
        ProtocolError: Unknown call id, unknown tool or invalid arguments
    """
    if name is None:
        raise ProtocolError(f"Arguments for unannounced call id {call_id}", call_id=call_id)
    if name != TOOL_NAME:
        raise ProtocolError(f"Unknown tool '{name}'", call_id=call_id)
    try:
        return EvaluateArguments.model_validate_json(raw_arguments or "")
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ProtocolError(f"Invalid {name} arguments: {details}", call_id=call_id) from exc


def encode_tool_output(result: TurnResult) -> str:
    return json.dumps(result.to_payload())


def encode_tool_error(message: str) -> str:
    return json.dumps({"status": STATUS_ERROR, "error": message})


# =============================================================================
# Outbound Message Builders
# =============================================================================

def session_update(instructions: str, transcription_model: str | None = None) -> dict[str, Any]:
    """session.update declaring the instructions and exactly one tool."""
    session: dict[str, Any] = {
        "instructions": instructions,
        "tools": [tool_schema()],
        "tool_choice": "auto",
    }
    if transcription_model:
        session["input_audio_transcription"] = {"model": transcription_model}
    return {"type": "session.update", "session": session}


def user_message(text: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def function_call_output(call_id: str, output: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {"type": "function_call_output", "call_id": call_id, "output": output},
    }


def response_create(instructions: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "response.create"}
    if instructions:
        message["response"] = {"instructions": instructions}
    return message


def audio_append(audio_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}
