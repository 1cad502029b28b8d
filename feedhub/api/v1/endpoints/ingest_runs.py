from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.core.db import get_db
from feedhub.models.ingestion_run import IngestionRun
from feedhub.schemas.ingest import FeedErrorOut, IngestRunOut
from feedhub.services.ingest_runs import (
    RunAlreadyFinalized,
    RunNotFound,
    cancel_run,
    get_run_status,
    list_feed_errors,
)

router = APIRouter()


def run_out(r: IngestionRun) -> IngestRunOut:
    return IngestRunOut(
        id=r.id,
        workspace_id=r.workspace_id,
        supplier_id=r.supplier_id,
        status=r.status,
        feed_format=r.feed_format,
        source_file=r.source_file,
        items_total=r.items_total or 0,
        items_processed=r.items_processed or 0,
        items_success=r.items_success or 0,
        items_errors=r.items_errors or 0,
        error_message=r.error_message,
        started_at=str(r.started_at) if r.started_at else None,
        completed_at=str(r.completed_at) if r.completed_at else None,
        duration_ms=r.duration_ms,
    )


@router.get("/ingest-runs/{run_id}", response_model=IngestRunOut)
async def get_ingest_run(run_id: str, db: AsyncSession = Depends(get_db)):
    try:
        run = await get_run_status(db, run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Ingestion run not found")
    return run_out(run)


@router.get("/ingest-runs/{run_id}/errors", response_model=list[FeedErrorOut])
async def get_ingest_run_errors(
    run_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        rows = await list_feed_errors(db, run_id, limit=limit, offset=offset)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Ingestion run not found")
    return [
        FeedErrorOut(
            id=e.id,
            item_index=e.item_index,
            code=e.code,
            message=e.message,
            raw=e.raw,
            created_at=str(e.created_at),
        )
        for e in rows
    ]


@router.post("/ingest-runs/{run_id}/cancel", response_model=IngestRunOut)
async def cancel_ingest_run(run_id: str, db: AsyncSession = Depends(get_db)):
    try:
        run = await cancel_run(db, run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Ingestion run not found")
    except RunAlreadyFinalized as e:
        raise HTTPException(status_code=409, detail=str(e))
    await db.commit()
    return run_out(run)
