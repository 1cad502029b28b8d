from __future__ import annotations

import codecs
import json
from typing import AsyncIterator

from feedhub.services.feeds.base import FeedRecord
from feedhub.services.ingest_errors import FeedParseError

_WS = " \t\r\n"


def _skip_ws(buf: str, pos: int) -> int:
    while pos < len(buf) and buf[pos] in _WS:
        pos += 1
    return pos


async def parse_json(chunks: AsyncIterator[bytes]) -> AsyncIterator[FeedRecord]:
    """
    Elements of a top-level JSON array, one at a time.

    Only the element currently being decoded is buffered. A top-level value
    that is not an array, trailing data after it, or an array that never
    closes is a FeedParseError. Array elements that are not objects are
    emitted as errored records.
    """
    decoder = json.JSONDecoder()
    text_decoder = codecs.getincrementaldecoder("utf-8-sig")()
    buf = ""
    state = "start"  # start -> value/sep ... -> end
    first = True
    index = 0
    eof = False

    it = chunks.__aiter__()
    while True:
        if not eof:
            try:
                chunk = await it.__anext__()
            except StopAsyncIteration:
                eof = True
                chunk = b""
            try:
                buf += text_decoder.decode(chunk, final=eof)
            except UnicodeDecodeError as e:
                raise FeedParseError(f"invalid JSON feed: not valid UTF-8 ({e.reason})") from e

        pos = 0
        while True:
            pos = _skip_ws(buf, pos)
            if pos >= len(buf):
                break

            if state == "start":
                if buf[pos] != "[":
                    raise FeedParseError("invalid JSON feed: top-level value must be an array")
                pos += 1
                state = "value"
                continue

            if state == "sep":
                ch = buf[pos]
                if ch == ",":
                    pos += 1
                    state = "value"
                    continue
                if ch == "]":
                    pos += 1
                    state = "end"
                    continue
                raise FeedParseError(f"invalid JSON feed: expected ',' or ']' after element {index}")

            if state == "value":
                if buf[pos] == "]" and first:
                    pos += 1
                    state = "end"
                    continue
                try:
                    value, end = decoder.raw_decode(buf, pos)
                except json.JSONDecodeError as e:
                    if eof:
                        raise FeedParseError(f"invalid JSON feed: {e.msg} at element {index + 1}") from e
                    break  # need more bytes
                # a number at the very end of the buffer may still be growing
                if end >= len(buf) and not eof:
                    break
                pos = end
                first = False
                state = "sep"
                index += 1
                if isinstance(value, dict):
                    yield FeedRecord(index=index, data=value)
                else:
                    yield FeedRecord(
                        index=index,
                        data={"value": value},
                        error=f"array element is {type(value).__name__}, expected object",
                    )
                continue

            # state == "end"
            raise FeedParseError("invalid JSON feed: unexpected data after top-level array")

        buf = buf[pos:]

        if eof:
            if state == "start":
                raise FeedParseError("invalid JSON feed: document is empty")
            if state != "end":
                raise FeedParseError("invalid JSON feed: unterminated top-level array")
            return
