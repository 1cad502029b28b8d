from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, AsyncIterator

from feedhub.services.feeds.base import FeedRecord
from feedhub.services.ingest_errors import FeedParseError, FeedTooLargeError

# Common product-list locations, relative to the document root.
CANDIDATE_PATHS: tuple[tuple[str, ...], ...] = (
    ("products", "product"),
    ("productfeed", "product"),
    ("rss", "channel", "item"),
    ("items", "item"),
    ("catalog", "product"),
)


def local_name(tag: str) -> str:
    # "{http://ns}product" -> "product", "g:price" -> "price"
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    return tag


def element_to_value(el: ET.Element) -> Any:
    """
    Convert an element to plain Python data.

    Leaf elements without attributes become their stripped text. Otherwise
    a dict of attributes and children; repeated children collapse into a
    list, and text next to children/attributes is kept under "#text".
    """
    children = list(el)
    text = (el.text or "").strip()

    if not children and not el.attrib:
        return text

    out: dict[str, Any] = {}
    for k, v in el.attrib.items():
        out[local_name(k)] = v

    for child in children:
        key = local_name(child.tag)
        value = element_to_value(child)
        if key in out:
            existing = out[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                out[key] = [existing, value]
        else:
            out[key] = value

    if text:
        out["#text"] = text
    return out


def _at_path(doc: Any, path: tuple[str, ...]) -> Any:
    cur = doc
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def find_first_list(value: Any) -> list | None:
    """Depth-first search for the first list anywhere in the document."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for v in value.values():
            found = find_first_list(v)
            if found is not None:
                return found
    return None


def locate_items(doc: dict[str, Any]) -> list[Any]:
    for path in CANDIDATE_PATHS:
        found = _at_path(doc, path)
        if found is None:
            continue
        # a single <product> is not turned into a list by element_to_value
        return found if isinstance(found, list) else [found]
    return find_first_list(doc) or []


async def parse_xml(chunks: AsyncIterator[bytes], *, max_bytes: int) -> AsyncIterator[FeedRecord]:
    """
    Product elements of an XML feed.

    XML is parsed as a whole document, so the feed is buffered up to
    `max_bytes`; larger feeds fail with FeedTooLargeError before parsing.
    """
    parts: list[bytes] = []
    size = 0
    async for chunk in chunks:
        size += len(chunk)
        if size > max_bytes:
            raise FeedTooLargeError(
                f"XML feed exceeds maximum size of {max_bytes} bytes; use CSV or JSON for large feeds"
            )
        parts.append(chunk)

    raw = b"".join(parts)
    if not raw.strip():
        raise FeedParseError("invalid XML feed: document is empty")

    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise FeedParseError(f"invalid XML feed: {e}") from e

    doc = {local_name(root.tag): element_to_value(root)}
    for i, item in enumerate(locate_items(doc), start=1):
        if isinstance(item, dict):
            yield FeedRecord(index=i, data=item)
        else:
            yield FeedRecord(index=i, data={"value": item}, error="XML item has no fields")
