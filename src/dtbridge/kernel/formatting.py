"""
Outbound content formatting for DingTalk.

DingTalk renders two kinds of robot text: plain `text` and `markdown`.
Content is classified with a handful of cheap regex checks; anything that
looks like markdown is sent as markdown with a short title derived from the
first line.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Literal, Optional, Tuple

MessageFormat = Literal["text", "markdown"]

DEFAULT_TITLE = "消息"
TITLE_MAX_CHARS = 20

# Robot API message keys (msgKey)
MSG_KEY_TEXT = "sampleText"
MSG_KEY_MARKDOWN = "sampleMarkdown"

_MARKDOWN_PATTERNS = (
    re.compile(r"^#{1,6}\s", re.M),  # heading
    re.compile(r"\*\*.+?\*\*"),  # bold
    re.compile(r"\[.+?\]\(.+?\)"),  # link
    re.compile(r"^\s*[-*]\s", re.M),  # unordered list
    re.compile(r"^\s*\d+\.\s", re.M),  # ordered list
    re.compile(r"^>", re.M),  # blockquote
    re.compile(r"```[\s\S]*?```"),  # fenced code
    re.compile(r"`[^`]+`"),  # inline code
)

_HEADING_PREFIX = re.compile(r"^#+\s*")


def detect_format(content: str) -> MessageFormat:
    """Return "markdown" if any markdown marker is present, else "text"."""
    text = content or ""
    if any(p.search(text) for p in _MARKDOWN_PATTERNS):
        return "markdown"
    return "text"


def derive_title(content: str) -> str:
    """First line without heading markers, capped at 20 chars."""
    first_line = (content or "").split("\n")[0]
    title = _HEADING_PREFIX.sub("", first_line)[:TITLE_MAX_CHARS]
    return title or DEFAULT_TITLE


def _resolve(content: str, force_format: Optional[MessageFormat]) -> MessageFormat:
    return force_format or detect_format(content)


def build_message_body(content: str, force_format: Optional[MessageFormat] = None) -> Dict[str, Any]:
    """Session webhook body for `content`."""
    if _resolve(content, force_format) == "markdown":
        return {
            "msgtype": "markdown",
            "markdown": {
                "title": derive_title(content),
                "text": content,
            },
        }
    return {
        "msgtype": "text",
        "text": {"content": content},
    }


def build_msg_param(
    content: str,
    force_format: Optional[MessageFormat] = None,
) -> Tuple[str, Dict[str, Any]]:
    """Robot API (msgKey, msgParam) pair for `content`."""
    if _resolve(content, force_format) == "markdown":
        return MSG_KEY_MARKDOWN, {"title": derive_title(content), "text": content}
    return MSG_KEY_TEXT, {"content": content}
