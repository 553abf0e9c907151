"""
Tolerant RSS/Atom parser.

Feeds in the wild are frequently malformed (unbalanced namespaces, odd
casing, stray markup), so this module scans the text with tag-scoped regular
expressions instead of validating it as XML. Supported shapes:
- RSS 2.0: <rss><channel>...<item>...</item></channel></rss>
- RSS 1.0 / RDF: <rdf:RDF><channel>...</channel><item>...</item></rdf:RDF>
- Atom: <feed>...<entry>...</entry></feed>

Unknown tags are ignored and the first matching tag wins.
"""

from __future__ import annotations

from functools import lru_cache
import logging
import re

from ..core.types import Enclosure, FeedDocument, FeedItem
from ..errors import ParseError
from .markup import clean_attribute, clean_text, unwrap_cdata

logger = logging.getLogger(__name__)


CHANNEL_RE = re.compile(r"<channel(?:\s[^>]*)?>(.*?)</channel\s*>", re.IGNORECASE | re.DOTALL)
FEED_RE = re.compile(r"<feed(?:\s[^>]*)?>(.*?)(?:</feed\s*>|$)", re.IGNORECASE | re.DOTALL)
ITEM_RE = re.compile(r"<item(?:\s[^>]*)?>(.*?)</item\s*>", re.IGNORECASE | re.DOTALL)
ENTRY_RE = re.compile(r"<entry(?:\s[^>]*)?>(.*?)</entry\s*>", re.IGNORECASE | re.DOTALL)
ITEM_START_RE = re.compile(r"<item[\s>]", re.IGNORECASE)
ENTRY_START_RE = re.compile(r"<entry[\s>]", re.IGNORECASE)
RSS_CATEGORY_RE = re.compile(r"<category(?:\s[^>]*)?>(.*?)</category\s*>", re.IGNORECASE | re.DOTALL)
ATOM_CATEGORY_RE = re.compile(r"<category\s[^>]*?term=[\"']([^\"']*)[\"'][^>]*>", re.IGNORECASE)
ENCLOSURE_RE = re.compile(r"<enclosure(\s[^>]*?)/?>", re.IGNORECASE)
LINK_HREF_RE = re.compile(r"<link\s[^>]*?href=[\"']([^\"']*)[\"'][^>]*>", re.IGNORECASE)
AUTHOR_BLOCK_RE = re.compile(r"<author(?:\s[^>]*)?>(.*?)</author\s*>", re.IGNORECASE | re.DOTALL)
RDF_ABOUT_RE = re.compile(r"^<item\s[^>]*?rdf:about=[\"']([^\"']*)[\"']", re.IGNORECASE)

_ATOM_MARKERS = (re.compile(r"<feed[\s>]", re.IGNORECASE), ENTRY_START_RE)
_RSS_MARKER_RE = re.compile(r"<(?:rss|channel)[\s>]", re.IGNORECASE)
_RDF_MARKER_RE = re.compile(r"<rdf:rdf[\s>]|<rdf[\s>]", re.IGNORECASE)


def parse_feed(raw_text: str) -> FeedDocument:
    """Parse RSS 2.0, RSS 1.0/RDF or Atom text into a FeedDocument.

    Format detection is by marker presence: a <feed> together with an
    <entry> is Atom; <rss> or <channel> is RSS; RDF markers are treated as
    RSS. A bare Atom <feed> without entries is still Atom.

    Args:
        raw_text: The feed body as fetched

    Returns:
        An immutable FeedDocument. A feed with zero items is valid.

    Raises:
        ParseError: If the text is not XML-like, has an empty or missing
            channel/feed element, or matches no supported shape
    """
    if raw_text is None:
        raise ParseError("Invalid XML: empty document")
    text = raw_text.lstrip("\ufeff").strip()
    if not text.startswith("<"):
        raise ParseError("Invalid XML: document does not start with XML declaration or tag")

    if all(marker.search(text) for marker in _ATOM_MARKERS):
        return _parse_atom(text)
    if _RSS_MARKER_RE.search(text) or _RDF_MARKER_RE.search(text):
        return _parse_rss(text)
    if _ATOM_MARKERS[0].search(text):
        return _parse_atom(text)

    raise ParseError("Unsupported feed format")


def _parse_rss(xml: str) -> FeedDocument:
    channel_match = CHANNEL_RE.search(xml)
    if not channel_match:
        raise ParseError("Invalid RSS feed: no channel element found")
    channel_xml = channel_match.group(1)
    if not channel_xml.strip():
        raise ParseError("Invalid RSS feed: channel element is empty")

    # Channel metadata comes from the text before the first item.
    first_item = ITEM_START_RE.search(channel_xml)
    header = channel_xml[: first_item.start()] if first_item else channel_xml

    title = clean_text(extract_tag(header, "title")) or "Untitled Feed"
    description = clean_text(extract_tag(header, "description")) or None
    link = clean_attribute(extract_tag(header, "link")) or None
    last_updated = (
        clean_text(extract_tag(header, "lastBuildDate"))
        or clean_text(extract_tag(header, "pubDate"))
        or clean_text(extract_tag(header, "dc:date"))
        or None
    )

    items: list[FeedItem] = []
    # RDF places items beside the channel, so scan the whole document.
    for match in ITEM_RE.finditer(xml):
        items.append(_parse_rss_item(match.group(0), match.group(1), len(items)))

    logger.debug("Parsed RSS feed %r with %d items", title, len(items))
    return FeedDocument(
        title=title,
        format="rss",
        items=tuple(items),
        description=description,
        link=link,
        last_updated=last_updated,
    )


def _parse_rss_item(item_tag: str, item_xml: str, position: int) -> FeedItem:
    title = clean_text(extract_tag(item_xml, "title"))
    link = clean_attribute(extract_tag(item_xml, "link"))
    guid = clean_attribute(extract_tag(item_xml, "guid"))
    about_match = RDF_ABOUT_RE.match(item_tag)
    about = clean_attribute(about_match.group(1)) if about_match else ""
    description = clean_text(extract_tag(item_xml, "description"))
    content = clean_text(extract_tag(item_xml, "content:encoded") or extract_tag(item_xml, "encoded"))
    published = clean_text(
        extract_tag(item_xml, "pubDate") or extract_tag(item_xml, "dc:date") or extract_tag(item_xml, "published")
    )
    author = clean_text(
        extract_tag(item_xml, "author") or extract_tag(item_xml, "dc:creator") or extract_tag(item_xml, "creator")
    )

    categories: list[str] = []
    for cat_match in RSS_CATEGORY_RE.finditer(item_xml):
        category = clean_text(cat_match.group(1))
        if category:
            categories.append(category)
    for subject in _extract_all(item_xml, "dc:subject"):
        if subject and subject not in categories:
            categories.append(subject)

    enclosure = None
    enclosure_match = ENCLOSURE_RE.search(item_xml)
    if enclosure_match:
        attrs = enclosure_match.group(1)
        length = extract_attribute(attrs, "length")
        enclosure = Enclosure(
            url=clean_attribute(extract_attribute(attrs, "url")),
            type=extract_attribute(attrs, "type") or None,
            length=int(length) if length.isdigit() else None,
        )

    return FeedItem(
        id=guid or link or about or f"rss-item-{position}",
        title=title,
        link=link or about,
        description=description or None,
        full_content=content or None,
        published_at=published or None,
        author=author or None,
        categories=tuple(categories),
        enclosure=enclosure,
    )


def _parse_atom(xml: str) -> FeedDocument:
    feed_match = FEED_RE.search(xml)
    if not feed_match or not feed_match.group(1).strip():
        raise ParseError("Invalid Atom feed: no feed element found")
    feed_xml = feed_match.group(1)

    first_entry = ENTRY_START_RE.search(feed_xml)
    header = feed_xml[: first_entry.start()] if first_entry else feed_xml

    title = clean_text(extract_tag(header, "title")) or "Untitled Feed"
    subtitle = clean_text(extract_tag(header, "subtitle"))
    link = _atom_link(header)
    updated = clean_text(extract_tag(header, "updated"))

    items: list[FeedItem] = []
    for match in ENTRY_RE.finditer(feed_xml):
        items.append(_parse_atom_entry(match.group(1), len(items)))

    logger.debug("Parsed Atom feed %r with %d entries", title, len(items))
    return FeedDocument(
        title=title,
        format="atom",
        items=tuple(items),
        description=subtitle or None,
        link=link or None,
        last_updated=updated or None,
    )


def _parse_atom_entry(entry_xml: str, position: int) -> FeedItem:
    title = clean_text(extract_tag(entry_xml, "title"))
    link = _atom_link(entry_xml)
    entry_id = clean_attribute(extract_tag(entry_xml, "id"))
    summary = clean_text(extract_tag(entry_xml, "summary"))
    content = clean_text(extract_tag(entry_xml, "content"))
    published = clean_text(extract_tag(entry_xml, "published") or extract_tag(entry_xml, "updated"))

    author = ""
    author_match = AUTHOR_BLOCK_RE.search(entry_xml)
    if author_match:
        author = clean_text(extract_tag(author_match.group(1), "name")) or clean_text(author_match.group(1))

    categories = [clean_attribute(m.group(1)) for m in ATOM_CATEGORY_RE.finditer(entry_xml) if m.group(1)]

    enclosure = None
    for link_match in re.finditer(r"<link\s[^>]*>", entry_xml, re.IGNORECASE):
        attrs = link_match.group(0)
        if extract_attribute(attrs, "rel").lower() == "enclosure":
            length = extract_attribute(attrs, "length")
            enclosure = Enclosure(
                url=clean_attribute(extract_attribute(attrs, "href")),
                type=extract_attribute(attrs, "type") or None,
                length=int(length) if length.isdigit() else None,
            )
            break

    return FeedItem(
        id=entry_id or link or f"atom-entry-{position}",
        title=title,
        link=link,
        description=summary or None,
        full_content=content or None,
        published_at=published or None,
        author=author or None,
        categories=tuple(categories),
        enclosure=enclosure,
    )


def _atom_link(xml: str) -> str:
    """Prefer rel="alternate" (or no rel); fall back to the first href."""
    first = ""
    for match in LINK_HREF_RE.finditer(xml):
        tag = match.group(0)
        href = clean_attribute(match.group(1))
        rel = extract_attribute(tag, "rel").lower()
        if rel in ("", "alternate"):
            return href
        if not first and rel != "enclosure":
            first = href
    return first


@lru_cache(maxsize=None)
def _tag_patterns(tag_name: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    name = re.escape(tag_name)
    return (
        re.compile(
            rf"<{name}(?:\s[^>]*)?>\s*<!\[CDATA\[(.*?)\]\]>\s*</{name}\s*>",
            re.IGNORECASE | re.DOTALL,
        ),
        re.compile(rf"<{name}(?:\s[^>]*)?>(.*?)</{name}\s*>", re.IGNORECASE | re.DOTALL),
    )


def extract_tag(xml: str, tag_name: str) -> str:
    """Return the raw inner text of the first ``tag_name`` element.

    CDATA-wrapped values are unwrapped. Returns an empty string when the tag
    is absent or self-closing.
    """
    for pattern in _tag_patterns(tag_name):
        match = pattern.search(xml)
        if match:
            return match.group(1).strip()
    return ""


def _extract_all(xml: str, tag_name: str) -> list[str]:
    _, plain = _tag_patterns(tag_name)
    return [clean_text(unwrap_cdata(m.group(1))) for m in plain.finditer(xml)]


def extract_attribute(tag: str, attr_name: str) -> str:
    match = re.search(rf"(?<![\w:-]){re.escape(attr_name)}=[\"']([^\"']*)[\"']", tag, re.IGNORECASE)
    return match.group(1) if match else ""
