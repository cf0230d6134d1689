"""Text preprocessing for case documents.

Pure functions that turn raw judgment HTML into plain text suitable for the
encoder.  Tokenization itself lives in :mod:`vsearch.services.tokenizer`.
"""

from __future__ import annotations

import html
import re

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_INLINE_SPACE_RE = re.compile(r"[ \t\r\f\v　\xa0]+")
_MULTI_NEWLINE_RE = re.compile(r"\n{2,}")


# ---------------------------------------------------------------------------
# HTML stripping
# ---------------------------------------------------------------------------


def strip_html(raw_html: str) -> str:
    """Extract the text nodes of an HTML document, one per line.

    Steps:
      1. Drop ``<script>``/``<style>`` blocks and comments.
      2. Replace every tag with a newline so adjacent text nodes stay apart.
      3. Unescape HTML entities (``&nbsp;``, ``&lt;`` ...).
      4. Clean whitespace with :func:`clean_text`.
    """
    if not raw_html:
        return ""

    text = _SCRIPT_STYLE_RE.sub("", raw_html)
    text = _COMMENT_RE.sub("", text)
    text = _HTML_TAG_RE.sub("\n", text)
    text = html.unescape(text)
    return clean_text(text)


def clean_text(text: str) -> str:
    """Collapse runs of inline whitespace and blank lines, strip each line.

    Full-width (``\\u3000``) and non-breaking spaces count as whitespace since
    both are common in Chinese court documents.
    """
    if not text:
        return ""

    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    text = "\n".join(line for line in lines if line)
    return _MULTI_NEWLINE_RE.sub("\n", text).strip()


def is_blank(text: object) -> bool:
    """True when *text* is not a string or holds nothing but whitespace."""
    return not isinstance(text, str) or not text.strip()
