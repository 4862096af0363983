"""HTML to plain text helpers for Graph payloads that carry markup."""

import html as html_lib
import re

_BREAK_TAGS = re.compile(r"(?i)<br[^>]*>|<p[^>]*>|</p>")
_TAGS = re.compile(r"<[^>]+>")
_SPACES = re.compile(r"\s+")


def normalize_spaces(value: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return _SPACES.sub(" ", value).strip()


def strip_html(value: str) -> str:
    """Remove tags and unescape entities, keeping paragraph breaks as spaces."""
    if not value:
        return ""
    text = _BREAK_TAGS.sub("\n", value)
    text = _TAGS.sub(" ", text)
    text = html_lib.unescape(text).replace("\xa0", " ")
    return normalize_spaces(text)
