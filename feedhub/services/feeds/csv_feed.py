from __future__ import annotations

import codecs
import csv
from typing import AsyncIterator

from feedhub.services.feeds.base import FeedRecord


def _ends_in_quotes(line: str, in_quotes: bool, delimiter: str) -> bool:
    """
    Quote state after `line`, following csv's rules: a quote only opens a
    quoted field at the start of a field, and "" inside one is an escape.
    """
    if '"' not in line:
        return in_quotes

    field_start = not in_quotes
    just_closed = False
    for ch in line:
        if in_quotes:
            if ch == '"':
                in_quotes = False
                just_closed = True
            continue
        if ch == '"' and (field_start or just_closed):
            in_quotes = True
        field_start = ch == delimiter
        just_closed = False
    return in_quotes


class _RecordSplitter:
    """
    Cuts decoded text into complete CSV records.

    A record may span several physical lines when a quoted field contains a
    newline; it is only handed out once its closing quote has been seen.
    """

    def __init__(self, delimiter: str = ","):
        self._delimiter = delimiter
        self._partial = ""  # current physical line, not yet terminated
        self._pending = ""  # complete lines of an unfinished record
        self._in_quotes = False

    def feed(self, text: str) -> list[str]:
        out: list[str] = []
        pieces = text.split("\n")
        for piece in pieces[:-1]:
            line = self._partial + piece + "\n"
            self._partial = ""
            self._in_quotes = _ends_in_quotes(line, self._in_quotes, self._delimiter)
            self._pending += line
            if not self._in_quotes:
                out.append(self._pending)
                self._pending = ""
        self._partial += pieces[-1]
        return out

    def finish(self) -> list[str]:
        rest = self._pending + self._partial
        self._pending = self._partial = ""
        return [rest] if rest.strip() else []


def _header(row: list[str]) -> list[str]:
    return [(name or "").strip() or f"column_{i + 1}" for i, name in enumerate(row)]


async def parse_csv(chunks: AsyncIterator[bytes], *, delimiter: str = ",") -> AsyncIterator[FeedRecord]:
    """
    Header-driven CSV rows as FeedRecords.

    The byte-order mark and blank lines are skipped. A row whose column count
    differs from the header is still emitted (with what could be read) but
    flagged with an error, so one ragged row never stops the stream.
    """
    decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
    splitter = _RecordSplitter(delimiter)
    header: list[str] | None = None
    index = 0

    async for records in _complete_records(chunks, decoder, splitter):
        for row in csv.reader(records, delimiter=delimiter):
            if not any(cell.strip() for cell in row):
                continue
            if header is None:
                header = _header(row)
                continue

            index += 1
            if len(row) != len(header):
                data = dict(zip(header, row))
                if len(row) > len(header):
                    data["_extra"] = row[len(header):]
                yield FeedRecord(
                    index=index,
                    data=data,
                    error=f"column_count_mismatch: expected {len(header)} columns, got {len(row)}",
                )
                continue

            yield FeedRecord(index=index, data=dict(zip(header, row)))


async def _complete_records(chunks: AsyncIterator[bytes], decoder, splitter: _RecordSplitter) -> AsyncIterator[list[str]]:
    async for chunk in chunks:
        records = splitter.feed(decoder.decode(chunk))
        if records:
            yield records
    records = splitter.feed(decoder.decode(b"", final=True)) + splitter.finish()
    if records:
        yield records
