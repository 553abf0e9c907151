"""
Markup cleanup for text pulled out of feed XML.

Feed fields arrive in three shapes: plain text, CDATA-wrapped HTML, and
entity-escaped HTML. ``clean_text`` reduces all of them to collapsed plain text.
"""

from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup


_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_TAG_RE = re.compile(r"</?[a-zA-Z!][^>]*>")
_WS_RE = re.compile(r"\s+")


def unwrap_cdata(text: str) -> str:
    return _CDATA_RE.sub(lambda m: m.group(1), text)


def clean_text(raw: str | None) -> str:
    """Decode entities, strip markup and collapse whitespace.

    Escaped markup (``&lt;p&gt;``) becomes real markup after the first pass
    and is stripped by a second one.
    """
    if not raw:
        return ""
    text = unwrap_cdata(raw)
    if "<" in text or "&" in text:
        text = _strip_bs4(text)
        if _TAG_RE.search(text):
            text = _strip_bs4(text)
    return _WS_RE.sub(" ", text).strip()


def clean_attribute(raw: str | None) -> str:
    """Decode entities in an attribute or URL value."""
    if not raw:
        return ""
    return html.unescape(unwrap_cdata(raw)).strip()


def _strip_bs4(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator=" ")
