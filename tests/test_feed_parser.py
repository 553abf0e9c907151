"""Tests for the tolerant RSS/Atom parser."""

from __future__ import annotations

import pytest

from reply_queue.errors import ParseError
from reply_queue.feed.parser import extract_tag, parse_feed


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Engineering &amp; Ops</title>
    <link>https://blog.example.com</link>
    <description><![CDATA[Notes on <b>shipping</b> software]]></description>
    <lastBuildDate>Mon, 06 Jan 2025 10:00:00 GMT</lastBuildDate>
    <item>
      <title><![CDATA[Scaling <em>queues</em>]]></title>
      <link>https://blog.example.com/queues</link>
      <guid isPermaLink="false">post-1</guid>
      <description>&lt;p&gt;Backpressure in practice&lt;/p&gt;</description>
      <content:encoded><![CDATA[<p>Full <strong>article</strong> body</p><script>alert(1)</script>]]></content:encoded>
      <pubDate>Mon, 06 Jan 2025 09:00:00 GMT</pubDate>
      <dc:creator>Jane Doe</dc:creator>
      <category>Distributed Systems</category>
      <category><![CDATA[Queues]]></category>
      <enclosure url="https://cdn.example.com/ep1.mp3" type="audio/mpeg" length="1234"/>
    </item>
    <item>
      <title>No guid here</title>
      <link>https://blog.example.com/no-guid</link>
    </item>
    <item>
      <title>Nothing to identify me</title>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Blog</title>
  <subtitle>Short essays</subtitle>
  <link rel="self" href="https://atom.example.com/feed.xml"/>
  <link href="https://atom.example.com/"/>
  <updated>2025-01-06T10:00:00Z</updated>
  <entry>
    <title>First entry</title>
    <link rel="alternate" href="https://atom.example.com/first"/>
    <link rel="enclosure" type="image/png" href="https://atom.example.com/cover.png" length="99"/>
    <id>urn:uuid:1</id>
    <published>2025-01-05T10:00:00Z</published>
    <summary>Summary text</summary>
    <content type="html">&lt;p&gt;Content &amp;amp; more&lt;/p&gt;</content>
    <author><name>Alex</name></author>
    <category term="python"/>
    <category term="testing"/>
  </entry>
  <entry>
    <title>Second entry</title>
    <link href="https://atom.example.com/second"/>
  </entry>
</feed>
"""

RDF_FEED = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://rdf.example.com/">
    <title>RDF Blog</title>
    <link>https://rdf.example.com/</link>
  </channel>
  <item rdf:about="https://rdf.example.com/one">
    <title>One</title>
    <dc:subject>semantics</dc:subject>
    <dc:date>2025-01-01</dc:date>
  </item>
  <item rdf:about="https://rdf.example.com/two">
    <title>Two</title>
  </item>
</rdf:RDF>
"""


def test_parses_rss_channel_metadata():
    feed = parse_feed(RSS_FEED)

    assert feed.format == "rss"
    assert feed.title == "Engineering & Ops"
    assert feed.link == "https://blog.example.com"
    assert feed.description == "Notes on shipping software"
    assert feed.last_updated == "Mon, 06 Jan 2025 10:00:00 GMT"


def test_parses_rss_item_fields():
    item = parse_feed(RSS_FEED).items[0]

    assert item.id == "post-1"
    assert item.title == "Scaling queues"
    assert item.link == "https://blog.example.com/queues"
    assert item.description == "Backpressure in practice"
    assert item.full_content == "Full article body"
    assert item.author == "Jane Doe"
    assert item.published_at == "Mon, 06 Jan 2025 09:00:00 GMT"
    assert item.categories == ("Distributed Systems", "Queues")
    assert item.enclosure is not None
    assert item.enclosure.url == "https://cdn.example.com/ep1.mp3"
    assert item.enclosure.type == "audio/mpeg"
    assert item.enclosure.length == 1234


def test_rss_item_id_falls_back_to_link_then_position():
    items = parse_feed(RSS_FEED).items

    assert len(items) == 3
    assert items[1].id == "https://blog.example.com/no-guid"
    assert items[2].id == "rss-item-2"
    assert all(item.id for item in items)


def test_parses_atom_feed():
    feed = parse_feed(ATOM_FEED)

    assert feed.format == "atom"
    assert feed.title == "Atom Blog"
    assert feed.description == "Short essays"
    assert feed.link == "https://atom.example.com/"
    assert len(feed.items) == 2

    first = feed.items[0]
    assert first.id == "urn:uuid:1"
    assert first.link == "https://atom.example.com/first"
    assert first.description == "Summary text"
    assert first.full_content == "Content & more"
    assert first.author == "Alex"
    assert first.categories == ("python", "testing")
    assert first.enclosure is not None
    assert first.enclosure.url == "https://atom.example.com/cover.png"
    assert feed.items[1].id == "https://atom.example.com/second"


def test_parses_rdf_items_outside_channel():
    feed = parse_feed(RDF_FEED)

    assert feed.format == "rss"
    assert feed.title == "RDF Blog"
    assert [item.id for item in feed.items] == ["https://rdf.example.com/one", "https://rdf.example.com/two"]
    assert feed.items[0].categories == ("semantics",)
    assert feed.items[0].published_at == "2025-01-01"


def test_item_count_matches_item_tags():
    items = "".join(f"<item><title>T{i}</title></item>" for i in range(7))
    feed = parse_feed(f"<rss><channel><title>Many</title>{items}</channel></rss>")

    assert len(feed.items) == 7


def test_zero_items_is_valid():
    feed = parse_feed("<rss><channel><title>Quiet Blog</title></channel></rss>")

    assert feed.title == "Quiet Blog"
    assert feed.items == ()


def test_byte_order_mark_is_ignored():
    feed = parse_feed("\ufeff<rss><channel><title>BOM</title></channel></rss>")

    assert feed.title == "BOM"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "not xml at all",
        "<rss><channel>   </channel></rss>",
        "<html><body>hello</body></html>",
    ],
)
def test_rejects_unrecognizable_input(text):
    with pytest.raises(ParseError):
        parse_feed(text)


def test_feedburner_namespace_does_not_look_like_atom():
    text = (
        '<rss xmlns:feedburner="http://rssnamespace.org/feedburner/ext/1.0"><channel>'
        "<title>FB</title><feedburner:info uri='x'/><item><title>A</title></item>"
        "</channel></rss>"
    )

    feed = parse_feed(text)

    assert feed.format == "rss"
    assert len(feed.items) == 1


def test_extract_tag_unwraps_cdata_and_ignores_missing():
    assert extract_tag("<title><![CDATA[ Hi <b>there</b> ]]></title>", "title") == "Hi <b>there</b>"
    assert extract_tag("<link/>", "link") == ""
