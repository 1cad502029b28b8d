from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.core.db import get_db
from feedhub.schemas.deduplication import (
    DeduplicationRunRequest,
    DeduplicationRunResponse,
    DeduplicationStatsOut,
)
from feedhub.services.deduplication import RuleNotFound, get_deduplication_stats, run_deduplication

router = APIRouter()


@router.post("/workspaces/{workspace_id}/deduplication/run", response_model=DeduplicationRunResponse)
async def run_workspace_deduplication(
    workspace_id: str,
    body: DeduplicationRunRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    # callers serialize runs per workspace; overlapping runs can interleave their replace
    rule_id = body.rule_id if body else None
    try:
        result = await run_deduplication(db, workspace_id, rule_id)
    except RuleNotFound:
        raise HTTPException(status_code=404, detail="Deduplication rule not found")

    await db.commit()
    return DeduplicationRunResponse(
        stats=DeduplicationStatsOut(**result.stats),
        conflicts=result.conflicts,
    )


@router.get("/workspaces/{workspace_id}/deduplication/stats", response_model=DeduplicationStatsOut)
async def workspace_deduplication_stats(workspace_id: str, db: AsyncSession = Depends(get_db)):
    return DeduplicationStatsOut(**await get_deduplication_stats(db, workspace_id))
