from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from feedhub.core.config import settings
from feedhub.core.db import dialect_insert
from feedhub.models.base import gen_id
from feedhub.models.feed_error import FeedError
from feedhub.models.mapped_product import MappedProduct
from feedhub.services.ingest_errors import BatchFlushError
from feedhub.services.ingest_runs import RunTracker
from feedhub.services.uid_allocator import allocate_uids

log = logging.getLogger(__name__)


@dataclass
class PendingRow:
    index: int
    uid: str | None
    fields: dict[str, Any]


def raw_snapshot(raw: Any, *, max_chars: int) -> str:
    try:
        s = json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = repr(raw)
    return s[:max_chars]


class BatchPersister:
    """
    Collects mapped rows and item errors for one run and writes them in batches.

    flush() is the only place that touches the database: uids for rows without
    an identifier are allocated in one call, rows are upserted on
    (workspace_id, supplier_id, uid) overwriting fields, feed errors are
    inserted, run counters updated and the transaction committed.
    """

    def __init__(
        self,
        db: AsyncSession,
        tracker: RunTracker,
        *,
        batch_size: int | None = None,
        raw_max_chars: int | None = None,
    ):
        self.db = db
        self.tracker = tracker
        self.batch_size = batch_size or settings.ingest_batch_size
        self.raw_max_chars = raw_max_chars or settings.feed_error_raw_max_chars

        run = tracker.run
        self.workspace_id = run.workspace_id
        self.supplier_id = run.supplier_id

        self._rows: list[PendingRow] = []
        self._errors: list[dict[str, Any]] = []
        self.flushes = 0

    @property
    def full(self) -> bool:
        return len(self._rows) + len(self._errors) >= self.batch_size

    def add(self, index: int, uid: str | None, fields: dict[str, Any]) -> None:
        self._rows.append(PendingRow(index=index, uid=uid, fields=fields))

    def add_error(self, index: int | None, code: str, message: str, raw: Any = None) -> None:
        self._errors.append({
            "item_index": index,
            "code": code,
            "message": message,
            "raw": raw_snapshot(raw, max_chars=self.raw_max_chars) if raw is not None else None,
        })

    async def _upsert(self, rows: list[PendingRow]) -> None:
        missing = [r for r in rows if r.uid is None]
        if missing:
            uids = await allocate_uids(self.db, self.workspace_id, len(missing))
            for r, uid in zip(missing, uids):
                r.uid = str(uid)

        # ON CONFLICT cannot touch the same row twice in one statement
        by_uid: dict[str, PendingRow] = {}
        for r in rows:
            by_uid[r.uid] = r

        run = self.tracker.run
        values = [
            {
                "id": gen_id("mpd"),
                "workspace_id": self.workspace_id,
                "supplier_id": self.supplier_id,
                "uid": r.uid,
                "fields": r.fields,
                "ingestion_id": run.id,
                "source_file": run.source_file,
                "is_active": True,
            }
            for r in by_uid.values()
        ]

        stmt = dialect_insert(self.db, MappedProduct).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MappedProduct.workspace_id, MappedProduct.supplier_id, MappedProduct.uid],
            set_={
                "fields": stmt.excluded.fields,
                "ingestion_id": stmt.excluded.ingestion_id,
                "source_file": stmt.excluded.source_file,
                "updated_at": func.now(),
            },
        )
        await self.db.execute(stmt)

    async def flush(self) -> None:
        if not self._rows and not self._errors:
            return

        rows, self._rows = self._rows, []
        errors, self._errors = self._errors, []
        run = self.tracker.run

        try:
            if rows:
                await self._upsert(rows)
            if errors:
                self.db.add_all([
                    FeedError(
                        ingestion_id=run.id,
                        workspace_id=self.workspace_id,
                        supplier_id=self.supplier_id,
                        **e,
                    )
                    for e in errors
                ])
            self.tracker.add_counts(total=len(rows) + len(errors), success=len(rows), errors=len(errors))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            await self.db.refresh(run)
            log.exception("batch flush failed run_id=%s rows=%s errors=%s", run.id, len(rows), len(errors))
            raise BatchFlushError(f"batch flush failed: {e.__class__.__name__}: {e}") from e

        self.flushes += 1
        log.debug(
            "batch flushed run_id=%s rows=%s errors=%s processed=%s",
            run.id, len(rows), len(errors), run.items_processed,
        )
