import asyncio
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from feedhub.core.config import settings
from feedhub.services.ingest_runs import fail_stale_runs


log = logging.getLogger(__name__)


async def _tick() -> int:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with Session() as db:
            ids = await fail_stale_runs(db, older_than=timedelta(minutes=settings.stale_run_minutes))
            await db.commit()
    finally:
        await engine.dispose()

    if ids:
        log.warning("reaper: failed %d stale runs: %s", len(ids), ", ".join(ids))
    return len(ids)


async def main():
    logging.basicConfig(level=logging.INFO)
    log.info("reaper: started stale_run_minutes=%s", settings.stale_run_minutes)
    while True:
        try:
            await _tick()
        except Exception:
            log.exception("reaper: tick crashed")
        await asyncio.sleep(settings.reaper_poll_seconds)


if __name__ == "__main__":
    asyncio.run(main())
