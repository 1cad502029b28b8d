from __future__ import annotations
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import urlparse

import anyio


class LocalObjectStore:
    """Feed uploads parked on disk until the worker picks them up."""

    def __init__(self, base_dir: str):
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    async def put_stream(self, *, key: str, chunks: AsyncIterator[bytes]) -> tuple[str, int]:
        """Write chunks to `key` as they arrive. Returns (uri, bytes written)."""
        path = self.base / key
        path.parent.mkdir(parents=True, exist_ok=True)
        size = 0
        async with await anyio.open_file(path, "wb") as f:
            async for chunk in chunks:
                await f.write(chunk)
                size += len(chunk)
        return f"file://{path.as_posix()}", size

    def resolve_path(self, uri: str) -> Path:
        """
        Resolve a storage URI to a local filesystem path.

        Supports:
          - file:///absolute/path
          - absolute filesystem paths
          - relative keys (resolved under self.base)
        """
        parsed = urlparse(uri)

        if parsed.scheme == "file":
            return Path(parsed.path)

        if parsed.scheme == "":
            p = Path(uri)
            if p.is_absolute():
                return p
            return self.base / p

        raise ValueError(f"Unsupported storage scheme: {parsed.scheme}")

    def delete(self, uri: str) -> None:
        self.resolve_path(uri).unlink(missing_ok=True)
