"""
Text cleaning for Anki card content.

Anki fields are HTML. The dialogue agent reads card text aloud, so
markup, media references and entities are stripped while block
boundaries become newlines (natural pauses for speech).
"""

from __future__ import annotations

import html
import re

_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_IMG_RE = re.compile(r"<img[^>]*>", re.IGNORECASE)
_SOUND_RE = re.compile(r"\[sound:[^\]]*\]", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"</div>|</p>|<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_EXCESS_NEWLINES_RE = re.compile(r"\n\s*\n\s*\n")


def clean_anki_text(raw_html: str | None) -> str:
    """
    Convert an Anki field value to plain, speakable text.

    Args:
        raw_html: Field value as stored in Anki

    Returns:
        Text without tags or media, at most one blank line in a row
    """
    if not raw_html:
        return ""

    text = _STYLE_RE.sub("", raw_html)
    text = _SCRIPT_RE.sub("", text)
    text = _IMG_RE.sub("", text)
    text = _SOUND_RE.sub("", text)
    text = _BLOCK_END_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    # &nbsp; unescapes to U+00A0, which TTS engines read inconsistently
    text = html.unescape(text).replace("\xa0", " ")
    text = _EXCESS_NEWLINES_RE.sub("\n\n", text)
    return text.strip()
