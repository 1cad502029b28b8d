from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.models.feed_error import FeedError
from feedhub.models.ingestion_run import IngestionRun

log = logging.getLogger(__name__)


class RunNotFound(Exception):
    pass


class RunAlreadyFinalized(Exception):
    def __init__(self, run_id: str, status: str):
        super().__init__(f"ingestion run {run_id} is already {status}")
        self.run_id = run_id
        self.status = status


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _duration_ms(started_at: datetime | None, ended_at: datetime) -> int | None:
    if started_at is None:
        return None
    if started_at.tzinfo is None:
        # SQLite hands back naive UTC timestamps
        started_at = started_at.replace(tzinfo=timezone.utc)
    return max(0, int((ended_at - started_at).total_seconds() * 1000))


class RunTracker:
    """
    Lifecycle of one IngestionRun as seen by the pipeline.

    Counters are only changed through add_counts(). Finalizing is a
    conditional UPDATE on status = 'running', so a run cancelled or reaped
    by another session is never overwritten; complete()/fail()/cancel()
    return False in that case and the tracked run is reloaded.
    """

    def __init__(self, run: IngestionRun):
        self.run = run

    @property
    def finished(self) -> bool:
        return self.run.status != "running"

    def add_counts(self, *, total: int = 0, success: int = 0, errors: int = 0) -> None:
        r = self.run
        r.items_total = (r.items_total or 0) + total
        r.items_success = (r.items_success or 0) + success
        r.items_errors = (r.items_errors or 0) + errors
        r.items_processed = r.items_success + r.items_errors

    async def _finalize(self, db: AsyncSession, status: str, error_message: str | None = None) -> bool:
        if self.finished:
            raise RunAlreadyFinalized(self.run.id, self.run.status)

        completed_at = _now()
        res = await db.execute(
            update(IngestionRun)
            .where(IngestionRun.id == self.run.id, IngestionRun.status == "running")
            .values(
                status=status,
                error_message=error_message,
                completed_at=completed_at,
                duration_ms=_duration_ms(self.run.started_at, completed_at),
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(self.run)
        if not res.rowcount:
            log.warning(
                "ingestion run finalized elsewhere run_id=%s status=%s wanted=%s",
                self.run.id, self.run.status, status,
            )
            return False
        return True

    async def complete(self, db: AsyncSession) -> bool:
        if not await self._finalize(db, "completed"):
            return False
        log.info(
            "ingestion completed run_id=%s total=%s success=%s errors=%s duration_ms=%s",
            self.run.id, self.run.items_total, self.run.items_success, self.run.items_errors, self.run.duration_ms,
        )
        return True

    async def fail(self, db: AsyncSession, message: str) -> bool:
        if not await self._finalize(db, "failed", message):
            return False
        log.warning("ingestion failed run_id=%s error=%s", self.run.id, message)
        return True

    async def cancel(self, db: AsyncSession) -> bool:
        if not await self._finalize(db, "cancelled"):
            return False
        log.info("ingestion cancelled run_id=%s", self.run.id)
        return True

    async def stopped_elsewhere(self, db: AsyncSession) -> bool:
        """True if another session cancelled or failed this run since it started."""
        status = (await db.execute(
            select(IngestionRun.status).where(IngestionRun.id == self.run.id)
        )).scalar_one()
        if status != "running":
            await db.refresh(self.run)
            return True
        return False


async def start_run(
    db: AsyncSession,
    *,
    workspace_id: str,
    supplier_id: str,
    feed_format: str | None = None,
    source_file: str | None = None,
) -> IngestionRun:
    run = IngestionRun(
        workspace_id=workspace_id,
        supplier_id=supplier_id,
        status="running",
        feed_format=feed_format,
        source_file=source_file,
        started_at=_now(),
        items_total=0,
        items_processed=0,
        items_success=0,
        items_errors=0,
    )
    db.add(run)
    await db.flush()
    log.info("ingestion started run_id=%s workspace_id=%s supplier_id=%s", run.id, workspace_id, supplier_id)
    return run


async def get_run_status(db: AsyncSession, run_id: str) -> IngestionRun:
    run = (await db.execute(select(IngestionRun).where(IngestionRun.id == run_id))).scalar_one_or_none()
    if run is None:
        raise RunNotFound(run_id)
    return run


async def cancel_run(db: AsyncSession, run_id: str) -> IngestionRun:
    """
    Mark a running run cancelled. The pipeline notices at its next batch
    boundary and stops; rows already flushed stay.
    """
    run = await get_run_status(db, run_id)
    if run.status != "running":
        raise RunAlreadyFinalized(run.id, run.status)
    if not await RunTracker(run).cancel(db):
        raise RunAlreadyFinalized(run.id, run.status)
    return run


async def list_feed_errors(
    db: AsyncSession,
    run_id: str,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[FeedError]:
    await get_run_status(db, run_id)
    rows = await db.execute(
        select(FeedError)
        .where(FeedError.ingestion_id == run_id)
        .order_by(FeedError.item_index.asc(), FeedError.created_at.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(rows.scalars().all())


async def fail_stale_runs(db: AsyncSession, *, older_than: timedelta) -> list[str]:
    """
    Fail runs stuck in "running" (worker died mid-feed). Rows already flushed
    stay; the feed has to be ingested again.
    """
    cutoff = _now() - older_than
    runs = (await db.execute(
        select(IngestionRun)
        .where(IngestionRun.status == "running", IngestionRun.started_at < cutoff)
        .with_for_update(skip_locked=True)
    )).scalars().all()

    for run in runs:
        run.status = "failed"
        run.error_message = f"stale: no completion within {int(older_than.total_seconds() // 60)} minutes"
        run.completed_at = _now()
        run.duration_ms = _duration_ms(run.started_at, run.completed_at)
    await db.flush()
    return [r.id for r in runs]
