"""Minimal inline markup transform for chat message display.

Converts a small markdown subset into Rich console markup so the same
function can render committed messages and the streaming buffer:

* ``**bold**`` -> ``[b]bold[/b]``
* ``*italic*`` -> ``[i]italic[/i]``
* ```code``` (inline) -> ``[reverse]code[/reverse]``
* fenced blocks -> body wrapped in ``[dim]...[/dim]``, inner text untouched

Newlines are kept as-is; Rich renders them as line breaks. Text that Rich
would read as a markup tag is escaped, nothing else is altered.
"""

from __future__ import annotations

import re

from rich.markup import escape

LINE_BREAK = "\n"
BOLD_TAG = "b"
ITALIC_TAG = "i"
INLINE_CODE_TAG = "reverse"
CODE_BLOCK_TAG = "dim"

# An unterminated fence swallows the rest of the text, which keeps a
# half-streamed code block stable while chunks arrive.
_FENCE_RE = re.compile(r"```(?:[^\n`]*\n)?(.*?)(?:```|\Z)", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_BOLD_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_ITALIC_RE = re.compile(r"(?<![*\w])\*(?=[^\s*])([^*\n]+?)(?<=\S)\*(?![*\w])")


def _wrap(tag: str, text: str) -> str:
    return f"[{tag}]{text}[/{tag}]"


def _literal(text: str, *, before_tag: bool = True) -> str:
    """Escape ``text`` so Rich shows it verbatim.

    Trailing backslashes are doubled when a tag follows, otherwise they would
    escape that tag.
    """
    body = text.rstrip("\\")
    trailing = len(text) - len(body)
    return escape(body) + "\\" * (trailing * 2 if before_tag else trailing)


def _render_prose(text: str, *, before_tag: bool = True) -> str:
    """Render bold, italic and inline code within a non-fenced segment."""
    parts: list[str] = []
    position = 0
    for match in _INLINE_CODE_RE.finditer(text):
        parts.append(_render_emphasis(text[position : match.start()]))
        parts.append(_wrap(INLINE_CODE_TAG, _literal(match.group(1))))
        position = match.end()
    parts.append(_render_emphasis(text[position:], before_tag=before_tag))
    return "".join(parts)


def _render_emphasis(text: str, *, before_tag: bool = True) -> str:
    parts: list[str] = []
    position = 0
    for match in _BOLD_RE.finditer(text):
        parts.append(_render_italic(text[position : match.start()]))
        parts.append(_wrap(BOLD_TAG, _render_italic(match.group(1))))
        position = match.end()
    parts.append(_render_italic(text[position:], before_tag=before_tag))
    return "".join(parts)


def _render_italic(text: str, *, before_tag: bool = True) -> str:
    parts: list[str] = []
    position = 0
    for match in _ITALIC_RE.finditer(text):
        parts.append(_literal(text[position : match.start()]))
        parts.append(_wrap(ITALIC_TAG, _literal(match.group(1))))
        position = match.end()
    parts.append(_literal(text[position:], before_tag=before_tag))
    return "".join(parts)


def render_markup(text: str) -> str:
    """Return Rich markup for ``text``."""
    if not text:
        return ""
    rendered: list[str] = []
    position = 0
    for match in _FENCE_RE.finditer(text):
        rendered.append(_render_prose(text[position : match.start()]))
        body = match.group(1).rstrip(LINE_BREAK)
        rendered.append(_wrap(CODE_BLOCK_TAG, _literal(body)))
        position = match.end()
    rendered.append(_render_prose(text[position:], before_tag=False))
    return "".join(rendered)
