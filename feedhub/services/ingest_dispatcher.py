from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.models.ingestion_run import IngestionRun
from feedhub.services.ingest_runs import RunTracker
from worker.celery_app import celery

log = logging.getLogger(__name__)


async def enqueue_ingestion(
    db: AsyncSession,
    *,
    run: IngestionRun,
    feed_uri: str,
    uid_source_key: str | None = None,
) -> bool:
    """
    Hand a stored feed to the worker. The run must already be committed so the
    worker can load it.

    If the broker refuses the task the run is failed right away instead of
    staying "running" forever.
    """
    try:
        celery.send_task(
            "worker.tasks.run_ingestion",
            args=[run.id, feed_uri, uid_source_key],
            queue="ingest",
        )
    except Exception as e:
        log.exception("enqueue failed run_id=%s", run.id)
        await RunTracker(run).fail(db, f"enqueue failed: {type(e).__name__}: {e}")
        await db.commit()
        return False

    log.info("ingestion enqueued run_id=%s feed_uri=%s", run.id, feed_uri)
    return True
