import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from feedhub.core.config import settings
import feedhub.models  # noqa: F401  # ensures Models are registered
from feedhub.services.deduplication import run_deduplication as dedup_workspace
from feedhub.services.ingest import ingest_stored_file
from feedhub.services.storage import LocalObjectStore

log = logging.getLogger(__name__)


async def _run_ingestion(run_id: str, feed_uri: str, uid_source_key: str | None) -> None:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    store = LocalObjectStore(settings.feed_storage_dir)

    try:
        async with Session() as db:
            run = await ingest_stored_file(
                db,
                run_id=run_id,
                path=store.resolve_path(feed_uri),
                uid_source_key=uid_source_key,
            )
            log.info("ingestion task done run_id=%s status=%s", run.id, run.status)
    finally:
        await engine.dispose()

    # uploaded copy is only needed for the run itself
    store.delete(feed_uri)


async def _run_deduplication(workspace_id: str, rule_id: str | None) -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with Session() as db:
            result = await dedup_workspace(db, workspace_id, rule_id)
            await db.commit()
            return result.stats
    finally:
        await engine.dispose()


@celery.task(name="worker.tasks.run_ingestion")
def run_ingestion(run_id: str, feed_uri: str, uid_source_key: str | None = None) -> None:
    asyncio.run(_run_ingestion(run_id, feed_uri, uid_source_key))


@celery.task(name="worker.tasks.run_deduplication")
def run_deduplication(workspace_id: str, rule_id: str | None = None) -> dict:
    return asyncio.run(_run_deduplication(workspace_id, rule_id))
