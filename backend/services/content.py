"""Rich-text sanitizing and plain-text normalization for authored content."""

from __future__ import annotations

import html

import nh3

# Tags the rich editor can produce; mention anchors keep their identity
# attributes so they survive sanitizing.
ALLOWED_TAGS = {
    "p",
    "br",
    "strong",
    "em",
    "u",
    "s",
    "ul",
    "ol",
    "li",
    "a",
    "blockquote",
    "h2",
    "h3",
    "code",
    "pre",
}
ALLOWED_ATTRIBUTES = {"a": {"href", "target", "class", "data-id", "data-type", "data-label"}}


def sanitize_rich_html(content: str) -> str:
    """Sanitize editor HTML to the allowed rich-text subset."""
    return nh3.clean(
        content,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        url_schemes={"http", "https", "mailto"},
    ).strip()


def html_to_text(content: str) -> str:
    """Visible text of an HTML fragment."""
    return html.unescape(nh3.clean(content, tags=set())).strip()


def normalize_plain_text(content: str | None) -> str:
    return (content or "").strip()
