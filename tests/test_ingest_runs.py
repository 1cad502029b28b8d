from datetime import datetime, timedelta, timezone

import pytest

from feedhub.models.feed_error import FeedError
from feedhub.services.ingest_runs import (
    RunAlreadyFinalized,
    RunNotFound,
    RunTracker,
    cancel_run,
    fail_stale_runs,
    get_run_status,
    list_feed_errors,
    start_run,
)


@pytest.mark.asyncio
async def test_tracker_counts_and_single_finalization(db_session):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1", feed_format="csv")
    tracker = RunTracker(run)

    tracker.add_counts(total=3, success=2, errors=1)
    tracker.add_counts(total=2, success=2)
    assert (run.items_total, run.items_processed, run.items_success, run.items_errors) == (5, 5, 4, 1)

    assert await tracker.complete(db_session)
    await db_session.commit()
    assert run.status == "completed"
    assert run.completed_at is not None
    assert run.duration_ms >= 0

    with pytest.raises(RunAlreadyFinalized):
        await tracker.fail(db_session, "late failure")
    with pytest.raises(RunAlreadyFinalized):
        await cancel_run(db_session, run.id)


@pytest.mark.asyncio
async def test_cancel_running_run(db_session):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    await db_session.commit()

    cancelled = await cancel_run(db_session, run.id)
    await db_session.commit()

    assert cancelled.status == "cancelled"
    assert cancelled.completed_at is not None
    assert (await get_run_status(db_session, run.id)).status == "cancelled"
    assert await RunTracker(run).stopped_elsewhere(db_session)

    with pytest.raises(RunNotFound):
        await get_run_status(db_session, "run_missing")


@pytest.mark.asyncio
async def test_list_feed_errors_pages_in_item_order(db_session):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    db_session.add_all([
        FeedError(ingestion_id=run.id, workspace_id="ws_a", supplier_id="sup_1", item_index=i, code="invalid_record", message=f"row {i}")
        for i in (3, 1, 2)
    ])
    await db_session.commit()

    page = await list_feed_errors(db_session, run.id, limit=2)
    assert [e.item_index for e in page] == [1, 2]
    page = await list_feed_errors(db_session, run.id, limit=2, offset=2)
    assert [e.item_index for e in page] == [3]

    with pytest.raises(RunNotFound):
        await list_feed_errors(db_session, "run_missing")


@pytest.mark.asyncio
async def test_fail_stale_runs(db_session):
    stale = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    stale.started_at = datetime.now(timezone.utc) - timedelta(hours=3)
    fresh = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_2")
    done = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_3")
    done.started_at = datetime.now(timezone.utc) - timedelta(hours=3)
    await db_session.flush()
    await RunTracker(done).complete(db_session)
    await db_session.commit()

    failed = await fail_stale_runs(db_session, older_than=timedelta(minutes=60))
    await db_session.commit()

    assert failed == [stale.id]
    assert stale.status == "failed"
    assert stale.error_message.startswith("stale")
    assert fresh.status == "running"
    assert done.status == "completed"
    assert done.duration_ms >= 3 * 3600 * 1000


@pytest.mark.asyncio
async def test_duration_counts_from_started_at(db_session):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    run.started_at = datetime.now(timezone.utc) - timedelta(seconds=5)
    await db_session.commit()

    assert await RunTracker(run).complete(db_session)
    await db_session.commit()
    assert run.duration_ms >= 5000

    other = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_2")
    other.started_at = datetime.now(timezone.utc) - timedelta(seconds=5)
    await db_session.commit()

    cancelled = await cancel_run(db_session, other.id)
    assert cancelled.duration_ms >= 5000


@pytest.mark.asyncio
async def test_finalize_does_not_overwrite_other_session(db_session, session_factory):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    await db_session.commit()
    tracker = RunTracker(run)

    async with session_factory() as other:
        await cancel_run(other, run.id)
        await other.commit()

    assert not await tracker.complete(db_session)
    await db_session.commit()
    assert run.status == "cancelled"
    assert tracker.finished

    async with session_factory() as fresh:
        assert (await get_run_status(fresh, run.id)).status == "cancelled"


@pytest.mark.asyncio
async def test_reaped_run_stays_failed(db_session, session_factory):
    run = await start_run(db_session, workspace_id="ws_a", supplier_id="sup_1")
    await db_session.commit()
    tracker = RunTracker(run)

    async with session_factory() as other:
        assert await fail_stale_runs(other, older_than=timedelta(seconds=-60)) == [run.id]
        await other.commit()

    assert not await tracker.fail(db_session, "late failure")
    await db_session.commit()
    assert run.status == "failed"
    assert run.error_message.startswith("stale")
