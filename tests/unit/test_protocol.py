"""
Unit tests for the turn protocol codec.
"""

import json

import pytest

from src.cards.models import Card, Verdict
from src.core.errors import ProtocolError
from src.voice import protocol


class TestToolSchema:
    """Tests for the declared tool."""

    def test_single_tool_with_required_enum(self):
        """The schema requires an enumerated verdict and feedback text."""
        schema = protocol.tool_schema()
        params = schema["parameters"]

        assert schema["name"] == "evaluate_and_move_next"
        assert params["required"] == ["user_response_quality", "feedback_text"]
        assert params["properties"]["user_response_quality"]["enum"] == ["correct", "incorrect"]

    def test_session_update_declares_exactly_one_tool(self):
        """session.update carries instructions, one tool and transcription."""
        message = protocol.session_update("Be nice.", "whisper-1")

        assert message["type"] == "session.update"
        assert message["session"]["instructions"] == "Be nice."
        assert len(message["session"]["tools"]) == 1
        assert message["session"]["input_audio_transcription"] == {"model": "whisper-1"}

    def test_session_update_without_transcription(self):
        """Transcription is optional."""
        message = protocol.session_update("Be nice.")

        assert "input_audio_transcription" not in message["session"]


class TestParseToolArguments:
    """Tests for parse_tool_arguments()."""

    def test_valid(self):
        """Valid arguments parse into a Verdict and feedback."""
        args = protocol.parse_tool_arguments(
            "call_1",
            protocol.TOOL_NAME,
            '{"user_response_quality": "incorrect", "feedback_text": "Close!"}',
        )

        assert args.user_response_quality is Verdict.INCORRECT
        assert args.feedback_text == "Close!"

    def test_extra_fields_ignored(self):
        """Unknown argument keys do not fail the call."""
        args = protocol.parse_tool_arguments(
            "call_1",
            protocol.TOOL_NAME,
            '{"user_response_quality": "correct", "feedback_text": "", "confidence": 0.9}',
        )

        assert args.user_response_quality is Verdict.CORRECT

    @pytest.mark.parametrize(
        "raw",
        [
            '{"user_response_quality": "partially", "feedback_text": "x"}',
            '{"user_response_quality": "correct"}',
            "not json",
            None,
        ],
    )
    def test_invalid_arguments(self, raw):
        """Out-of-enum, missing or unparseable arguments are protocol errors."""
        with pytest.raises(ProtocolError) as exc_info:
            protocol.parse_tool_arguments("call_9", protocol.TOOL_NAME, raw)

        assert exc_info.value.call_id == "call_9"

    def test_unannounced_call(self):
        """A call id without a recorded name is rejected."""
        with pytest.raises(ProtocolError, match="unannounced call id call_7"):
            protocol.parse_tool_arguments("call_7", None, "{}")

    def test_unknown_tool(self):
        """Any other tool name is rejected."""
        with pytest.raises(ProtocolError, match="Unknown tool 'skip_card'"):
            protocol.parse_tool_arguments("call_1", "skip_card", "{}")


class TestEncoding:
    """Tests for tool result encoding and message builders."""

    def test_turn_result_with_next_card(self):
        """The next card is sent as front/back."""
        result = protocol.TurnResult(
            status=protocol.STATUS_SUCCESS,
            answered_card_back="hello",
            next_card=Card(card_id=2, front="adiós", back="goodbye"),
        )

        assert json.loads(protocol.encode_tool_output(result)) == {
            "status": "success",
            "answered_card_back": "hello",
            "next_card": {"front": "adiós", "back": "goodbye"},
        }

    def test_turn_result_end_of_session(self):
        """An exhausted queue is reported with the sentinel card, never null."""
        result = protocol.TurnResult(status=protocol.STATUS_SUCCESS, answered_card_back="x", next_card=None)

        assert result.to_payload()["next_card"] == {"front": "END OF SESSION", "back": "END OF SESSION"}

    def test_error_output(self):
        """Errors are encoded as an error-shaped tool result."""
        assert json.loads(protocol.encode_tool_error("boom")) == {"status": "error", "error": "boom"}

    def test_function_call_output(self):
        """Tool results are sent as conversation items bound to the call id."""
        message = protocol.function_call_output("call_1", "{}")

        assert message == {
            "type": "conversation.item.create",
            "item": {"type": "function_call_output", "call_id": "call_1", "output": "{}"},
        }

    def test_response_create(self):
        """response.create optionally carries instructions."""
        assert protocol.response_create() == {"type": "response.create"}
        assert protocol.response_create("Say hi")["response"] == {"instructions": "Say hi"}

    def test_user_message(self):
        """User text is sent as an input_text message."""
        message = protocol.user_message("Start session.")

        assert message["item"]["role"] == "user"
        assert message["item"]["content"] == [{"type": "input_text", "text": "Start session."}]
