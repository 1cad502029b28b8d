from __future__ import annotations

from typing import AsyncIterator, Callable, Dict

from feedhub.services.feeds.base import FeedReader, FeedRecord
from feedhub.services.feeds.csv_feed import parse_csv
from feedhub.services.feeds.json_feed import parse_json
from feedhub.services.feeds.xml_feed import parse_xml

ParserFactory = Callable[..., AsyncIterator[FeedRecord]]

_PARSERS: Dict[str, ParserFactory] = {
    "csv": lambda chunks, **_: parse_csv(chunks),
    "json": lambda chunks, **_: parse_json(chunks),
    "xml": lambda chunks, *, xml_max_bytes, **_: parse_xml(chunks, max_bytes=xml_max_bytes),
}


def open_feed(feed_format: str, chunks: AsyncIterator[bytes], *, xml_max_bytes: int) -> FeedReader:
    key = (feed_format or "").lower().strip()
    if key not in _PARSERS:
        raise KeyError(f"No feed parser registered for format={feed_format}")
    return FeedReader(_PARSERS[key](chunks, xml_max_bytes=xml_max_bytes), feed_format=key)
