from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import anyio
import httpx

from feedhub.core.config import settings
from feedhub.services.ingest_errors import FeedFetchError

log = logging.getLogger(__name__)


async def iter_bytes(data: bytes, *, chunk_size: int | None = None) -> AsyncIterator[bytes]:
    size = chunk_size or settings.feed_chunk_size
    for i in range(0, len(data), size):
        yield data[i:i + size]


async def iter_file(path: str | Path, *, chunk_size: int | None = None) -> AsyncIterator[bytes]:
    size = chunk_size or settings.feed_chunk_size
    async with await anyio.open_file(path, "rb") as f:
        while True:
            chunk = await f.read(size)
            if not chunk:
                break
            yield chunk


@dataclass
class RemoteFeed:
    url: str
    content_type: str | None
    chunks: AsyncIterator[bytes]


async def _body_chunks(resp: httpx.Response, url: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.aiter_bytes(settings.feed_chunk_size):
            yield chunk
    except httpx.HTTPError as e:
        raise FeedFetchError(f"feed download interrupted: {url}: {e}") from e


@asynccontextmanager
async def open_url_feed(
    url: str,
    *,
    username: str | None = None,
    password: str | None = None,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float | None = None,
) -> AsyncIterator[RemoteFeed]:
    """
    Stream a supplier feed over HTTP(S).

    The response body is read lazily as the consumer iterates `chunks`, so a
    paused ingestion also stops reading from the socket. Non-2xx responses and
    transport failures raise FeedFetchError.
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds or settings.feed_fetch_timeout_seconds),
            follow_redirects=True,
        )
    auth = httpx.BasicAuth(username, password or "") if username else None

    try:
        try:
            async with client.stream("GET", url, auth=auth) as resp:
                if not (200 <= resp.status_code < 300):
                    raise FeedFetchError(f"feed download failed: HTTP {resp.status_code} from {url}")
                log.info("feed download started url=%s content_type=%s", url, resp.headers.get("content-type"))
                yield RemoteFeed(
                    url=url,
                    content_type=resp.headers.get("content-type"),
                    chunks=_body_chunks(resp, url),
                )
        except httpx.TimeoutException as e:
            raise FeedFetchError(f"feed download timed out: {url}") from e
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            raise FeedFetchError(f"feed download failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
