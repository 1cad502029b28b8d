from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

FeedFormat = Literal["csv", "json", "xml"]


def _path_part(hint: str) -> str:
    # URLs: ignore query string / fragment ("feed.csv?token=...")
    if "://" in hint:
        return urlparse(hint).path
    return hint.split("?", 1)[0]


def detect_feed_format(filename_hint: str | None = None, content_type: str | None = None) -> FeedFormat:
    """
    Classify a feed from its file name / URL and HTTP content type.

    Checked in order csv, json, xml. Anything unrecognized is treated as JSON.
    """
    h = _path_part((filename_hint or "").strip().lower())
    ct = (content_type or "").lower()

    if h.endswith(".csv") or "text/csv" in ct:
        return "csv"
    if h.endswith(".json") or "application/json" in ct or "ndjson" in ct:
        return "json"
    if h.endswith(".xml") or "application/xml" in ct or "text/xml" in ct:
        return "xml"
    return "json"
