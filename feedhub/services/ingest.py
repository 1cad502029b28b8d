from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncIterator, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.core.config import settings
from feedhub.models.custom_field import CustomField
from feedhub.models.field_mapping import FieldMapping
from feedhub.models.ingestion_run import IngestionRun
from feedhub.services.batch_persister import BatchPersister
from feedhub.services.feed_source import iter_file, open_url_feed
from feedhub.services.feeds.base import FeedRecord
from feedhub.services.feeds.detect import detect_feed_format
from feedhub.services.feeds.registry import open_feed
from feedhub.services.field_mapping import load_custom_fields, load_field_mappings, map_item_fields
from feedhub.services.ingest_errors import FeedFetchError, FeedParseError, IngestError, ItemError, MissingIdentifierError
from feedhub.services.ingest_runs import RunTracker, get_run_status, start_run
from feedhub.services.normalize import normalize_item, scalar_text

log = logging.getLogger(__name__)


def resolve_identifier(raw: dict, external_id: str | None, uid_source_key: str | None) -> str | None:
    """
    The product's uid within its supplier, or None when one has to be allocated.

    With a configured uid_source_key the identifier must come from that raw
    key; a record without it cannot be matched to earlier runs.
    """
    if uid_source_key:
        wanted = uid_source_key.strip().lower()
        for k, v in raw.items():
            if str(k).strip().lower() == wanted:
                s = scalar_text(v)
                if s is not None:
                    return s
                break
        raise MissingIdentifierError(f"missing identifier: no value for '{uid_source_key}'")
    return external_id


def _process_record(
    rec: FeedRecord,
    persister: BatchPersister,
    *,
    custom_fields: Sequence[CustomField],
    mappings: Sequence[FieldMapping],
    uid_source_key: str | None,
) -> None:
    if rec.error:
        persister.add_error(rec.index, "invalid_record", rec.error, rec.data)
        return
    try:
        item = normalize_item(rec.data)
        uid = resolve_identifier(rec.data, item.external_id, uid_source_key)
        fields = map_item_fields(item, custom_fields, mappings)
    except ItemError as e:
        persister.add_error(rec.index, e.code, e.message, rec.data)
        return
    persister.add(rec.index, uid, fields)


async def _mark_failed(db: AsyncSession, tracker: RunTracker, message: str) -> None:
    await db.rollback()
    await db.refresh(tracker.run)
    if tracker.finished:
        # cancelled or reaped by someone else in the meantime
        return
    await tracker.fail(db, message)
    await db.commit()


async def create_ingestion_run(
    db: AsyncSession,
    *,
    workspace_id: str,
    supplier_id: str,
    feed_format: str | None = None,
    source_file: str | None = None,
) -> IngestionRun:
    return await start_run(
        db,
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        feed_format=feed_format,
        source_file=source_file,
    )


async def run_ingestion(
    db: AsyncSession,
    *,
    run: IngestionRun,
    chunks: AsyncIterator[bytes],
    feed_format: str,
    uid_source_key: str | None = None,
    batch_size: int | None = None,
) -> IngestionRun:
    """
    Stream a feed into products_mapped for an already created run.

    Item problems are recorded as feed errors and skipped. IngestError
    subclasses fail the run (rows from earlier batches stay committed) and are
    not re-raised: the outcome is on the run. Anything else fails the run with
    an internal_error message and propagates.
    """
    tracker = RunTracker(run)
    run.feed_format = feed_format
    await db.commit()

    custom_fields = await load_custom_fields(db, run.workspace_id)
    mappings = await load_field_mappings(db, run.workspace_id, run.supplier_id)

    persister = BatchPersister(db, tracker, batch_size=batch_size)
    reader = None

    try:
        try:
            reader = open_feed(feed_format, chunks, xml_max_bytes=settings.xml_max_bytes)
        except KeyError:
            raise FeedParseError(f"unsupported feed format: {feed_format}") from None

        async for rec in reader:
            _process_record(
                rec,
                persister,
                custom_fields=custom_fields,
                mappings=mappings,
                uid_source_key=uid_source_key,
            )
            if persister.full:
                reader.pause()
                await persister.flush()
                if await tracker.stopped_elsewhere(db):
                    log.info("ingestion stopped run_id=%s status=%s", run.id, run.status)
                    return run
                reader.resume()

        await persister.flush()
        # no-op when a cancel or the reaper got there first
        await tracker.complete(db)
        await db.commit()
    except IngestError as e:
        await _mark_failed(db, tracker, e.message)
    except Exception as e:
        log.exception("ingestion crashed run_id=%s", run.id)
        await _mark_failed(db, tracker, f"internal_error: {e.__class__.__name__}: {e}")
        raise
    finally:
        if reader is not None:
            await reader.aclose()

    return run


async def start_ingestion(
    db: AsyncSession,
    *,
    workspace_id: str,
    supplier_id: str,
    chunks: AsyncIterator[bytes],
    filename_hint: str | None = None,
    content_type: str | None = None,
    feed_format: str | None = None,
    uid_source_key: str | None = None,
    batch_size: int | None = None,
) -> IngestionRun:
    """Create a run and ingest `chunks` into it before returning."""
    fmt = feed_format or detect_feed_format(filename_hint, content_type)
    run = await create_ingestion_run(
        db,
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        feed_format=fmt,
        source_file=filename_hint,
    )
    return await run_ingestion(
        db,
        run=run,
        chunks=chunks,
        feed_format=fmt,
        uid_source_key=uid_source_key,
        batch_size=batch_size,
    )


async def ingest_from_url(
    db: AsyncSession,
    *,
    workspace_id: str,
    supplier_id: str,
    url: str,
    username: str | None = None,
    password: str | None = None,
    feed_format: str | None = None,
    uid_source_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> IngestionRun:
    run = await create_ingestion_run(
        db,
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        feed_format=feed_format,
        source_file=url,
    )
    await db.commit()

    try:
        async with open_url_feed(url, username=username, password=password, client=client) as feed:
            fmt = feed_format or detect_feed_format(url, feed.content_type)
            return await run_ingestion(
                db,
                run=run,
                chunks=feed.chunks,
                feed_format=fmt,
                uid_source_key=uid_source_key,
            )
    except FeedFetchError as e:
        await _mark_failed(db, RunTracker(run), e.message)
        return run


async def ingest_stored_file(
    db: AsyncSession,
    *,
    run_id: str,
    path: str | Path,
    uid_source_key: str | None = None,
) -> IngestionRun:
    """Worker side of an async ingestion: the run exists, the feed was stored by the API."""
    run = await get_run_status(db, run_id)
    if run.status != "running":
        log.info("skipping stored feed run_id=%s status=%s", run_id, run.status)
        return run
    fmt = run.feed_format or detect_feed_format(run.source_file or str(path))
    return await run_ingestion(
        db,
        run=run,
        chunks=iter_file(path),
        feed_format=fmt,
        uid_source_key=uid_source_key,
    )
