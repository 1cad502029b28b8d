from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.api.v1.endpoints.ingest_runs import run_out
from feedhub.core.config import settings
from feedhub.core.db import get_db
from feedhub.schemas.ingest import IngestRunOut, IngestUrlRequest
from feedhub.services.feeds.detect import detect_feed_format
from feedhub.services.ingest import create_ingestion_run, ingest_from_url, start_ingestion
from feedhub.services.ingest_dispatcher import enqueue_ingestion
from feedhub.services.ingest_runs import RunTracker
from feedhub.services.storage import LocalObjectStore

router = APIRouter()

FeedFormatParam = Literal["csv", "json", "xml"]


@router.post("/workspaces/{workspace_id}/suppliers/{supplier_id}/ingest", response_model=IngestRunOut)
async def ingest_feed(
    workspace_id: str,
    supplier_id: str,
    request: Request,
    mode: Literal["sync", "async"] = Query(default="sync"),
    filename: str | None = Query(default=None, description="original file name, used for format detection"),
    feed_format: FeedFormatParam | None = Query(default=None),
    uid_source_key: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """
    Ingest the raw request body as a supplier feed.

    mode=sync streams the body straight into the pipeline and answers with the
    finished run. mode=async stores the body, queues the run for the worker and
    answers 202 with the run in status "running".
    """
    content_type = request.headers.get("content-type")

    if mode == "sync":
        run = await start_ingestion(
            db,
            workspace_id=workspace_id,
            supplier_id=supplier_id,
            chunks=request.stream(),
            filename_hint=filename,
            content_type=content_type,
            feed_format=feed_format,
            uid_source_key=uid_source_key,
        )
        return run_out(run)

    fmt = feed_format or detect_feed_format(filename, content_type)
    run = await create_ingestion_run(
        db,
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        feed_format=fmt,
        source_file=filename,
    )
    await db.commit()

    store = LocalObjectStore(settings.feed_storage_dir)
    feed_uri, size = await store.put_stream(key=f"{run.id}.{fmt}", chunks=request.stream())
    if size == 0:
        store.delete(feed_uri)
        await RunTracker(run).fail(db, "feed body is empty")
        await db.commit()
        raise HTTPException(status_code=422, detail="Feed body is empty")

    await enqueue_ingestion(db, run=run, feed_uri=feed_uri, uid_source_key=uid_source_key)
    return JSONResponse(status_code=202, content=run_out(run).model_dump())


@router.post("/workspaces/{workspace_id}/suppliers/{supplier_id}/ingest-url", response_model=IngestRunOut)
async def ingest_feed_url(
    workspace_id: str,
    supplier_id: str,
    body: IngestUrlRequest,
    db: AsyncSession = Depends(get_db),
):
    if not body.url.lower().startswith(("http://", "https://")):
        raise HTTPException(status_code=422, detail="Feed URL must be http(s)")

    run = await ingest_from_url(
        db,
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        url=body.url,
        username=body.username,
        password=body.password,
        feed_format=body.feed_format,
        uid_source_key=body.uid_source_key,
    )
    return run_out(run)
