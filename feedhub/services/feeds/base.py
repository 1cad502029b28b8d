from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator


@dataclass(frozen=True)
class FeedRecord:
    """
    One source row/element as the parser saw it.

    `index` is 1-based within the feed. `error` is set when the parser could
    read the item but found it unusable (e.g. CSV column count mismatch);
    such records are reported as item errors, not processed.
    """
    index: int
    data: dict[str, Any]
    error: str | None = None


class FeedReader:
    """
    Shared consumption contract for all feed parsers.

    Iterating pulls one record at a time from the parser. While paused no
    further record is pulled, so the parser (and the byte stream behind it)
    stays idle until resume() is called.
    """

    def __init__(self, records: AsyncIterator[FeedRecord], *, feed_format: str):
        self.feed_format = feed_format
        self._records = records
        self._running = asyncio.Event()
        self._running.set()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def __aiter__(self) -> "FeedReader":
        return self

    async def __anext__(self) -> FeedRecord:
        await self._running.wait()
        return await self._records.__anext__()

    async def aclose(self) -> None:
        aclose = getattr(self._records, "aclose", None)
        if aclose is not None:
            await aclose()
