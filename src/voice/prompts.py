"""
Instruction text for the spoken tutor.

Remote (Anki) and demo sessions get distinct system instructions. Both
describe the same single-tool protocol: ask, listen, then call
evaluate_and_move_next once per answer.
"""

from __future__ import annotations

from datetime import datetime

from src.cards.models import Card, DeckStats
from src.voice.protocol import END_OF_SESSION, TOOL_NAME

_PROTOCOL_STEPS = f"""
TASK:
1. Ask the learner about the FRONT of the current card. Never read the BACK aloud before they answer.
2. Listen to the spoken answer.
3. Call {TOOL_NAME} exactly once with user_response_quality "correct" or "incorrect" and short feedback_text.
4. Give the feedback, using answered_card_back from the tool result to explain the right answer.
5. Ask about next_card from the tool result.
6. If next_card.front is "{END_OF_SESSION}", congratulate the learner and end the session. Do not call the tool again.
"""

ANKI_INSTRUCTIONS = """
ROLE: You are a spoken Anki tutor reviewing the learner's own deck "{deck}".
LANGUAGE: English ONLY.
The cards are real review cards; grading is recorded in Anki, so be fair but not pedantic:
accept answers that capture the key idea even if the wording differs.
{steps}
START GREETING: "{greeting}"
"""

DEMO_INSTRUCTIONS = """
ROLE: You are a friendly spoken flashcard tutor running a demo deck ("{deck}").
LANGUAGE: English ONLY.
This is a practice run; nothing is saved. Keep questions short and encouraging.
{steps}
START GREETING: "{greeting}"
"""


def time_of_day(now: datetime | None = None) -> str:
    hour = (now or datetime.now()).hour
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def build_greeting(stats: DeckStats, now: datetime | None = None) -> str:
    """Greeting line read to the learner at the start of a session."""
    return (
        f"Good {time_of_day(now)}! We are studying {stats.name}. "
        f"{stats.remaining_cards} cards remaining."
    )


def build_instructions(remote: bool, deck: str, greeting: str) -> str:
    template = ANKI_INSTRUCTIONS if remote else DEMO_INSTRUCTIONS
    return template.format(deck=deck, greeting=greeting, steps=_PROTOCOL_STEPS).strip()


def build_start_message(greeting: str, first_card: Card | None) -> str:
    """Initial user-authored message that kicks off the session."""
    if first_card is None:
        card_text = f'FRONT: "{END_OF_SESSION}" BACK: "{END_OF_SESSION}"'
    else:
        card_text = f'FRONT: "{first_card.front}" BACK: "{first_card.back}"'
    return f"Start session. Greeting: {greeting} First card: {card_text}"
