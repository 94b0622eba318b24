"""Markdown rendering for chat text and debate rules.

Raw HTML in user text is never passed through: markdown-it escapes it when the
``html`` option is off, so the fragment can be inserted into the page as is.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts chat markdown into HTML fragments."""

    enable_html: bool = False
    _md: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._md = MarkdownIt("commonmark", {"html": self.enable_html, "linkify": False})
        # Headings and images have no place in a chat bubble.
        self._md.disable(["heading", "lheading", "image"])

    def render_fragment(self, text: str) -> str:
        if not text:
            return ""
        return self._md.render(text).strip()


renderer = MarkdownRenderer()
