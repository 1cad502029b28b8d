from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from feedhub.core.db import dialect_insert
from feedhub.models.mapped_product import MappedProduct
from feedhub.models.uid_counter import WorkspaceUidCounter

log = logging.getLogger(__name__)


class ProductNotFound(Exception):
    pass


async def _advance(db: AsyncSession, workspace_id: str, n: int) -> int:
    """
    Move the workspace counter forward by n and return the new last_uid.

    One INSERT .. ON CONFLICT DO UPDATE .. RETURNING statement: the row lock
    taken by the update serializes concurrent callers, so two callers can never
    read the same value.
    """
    stmt = dialect_insert(db, WorkspaceUidCounter).values(
        workspace_id=workspace_id,
        last_uid=n,
        updated_at=func.now(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[WorkspaceUidCounter.workspace_id],
        set_={
            "last_uid": WorkspaceUidCounter.last_uid + n,
            "updated_at": func.now(),
        },
    ).returning(WorkspaceUidCounter.last_uid)

    res = await db.execute(stmt)
    return int(res.scalar_one())


async def allocate_uid(db: AsyncSession, workspace_id: str) -> int:
    return await _advance(db, workspace_id, 1)


async def allocate_uids(db: AsyncSession, workspace_id: str, n: int) -> list[int]:
    """Contiguous block of n new uids, in ascending order. n <= 0 leaves the counter alone."""
    if n <= 0:
        return []
    last = await _advance(db, workspace_id, n)
    return list(range(last - n + 1, last + 1))


async def current_uid(db: AsyncSession, workspace_id: str) -> int:
    res = await db.execute(
        select(WorkspaceUidCounter.last_uid).where(WorkspaceUidCounter.workspace_id == workspace_id)
    )
    return int(res.scalar_one_or_none() or 0)


async def reset_uid_counter(db: AsyncSession, workspace_id: str) -> None:
    """
    Administrative reset back to 0.

    Products that still carry allocated uids will collide with newly issued
    ones; callers are expected to clear the workspace first.
    """
    await db.execute(
        update(WorkspaceUidCounter)
        .where(WorkspaceUidCounter.workspace_id == workspace_id)
        .values(last_uid=0, updated_at=func.now())
    )
    log.warning("uid counter reset workspace_id=%s", workspace_id)


async def deactivate_product(db: AsyncSession, *, workspace_id: str, supplier_id: str, uid: str) -> MappedProduct:
    """Soft delete. The row (and its uid) stays, so the uid is never reissued."""
    res = await db.execute(
        select(MappedProduct).where(
            MappedProduct.workspace_id == workspace_id,
            MappedProduct.supplier_id == supplier_id,
            MappedProduct.uid == str(uid),
        )
    )
    product = res.scalar_one_or_none()
    if product is None:
        raise ProductNotFound(f"product {supplier_id}/{uid} not found in workspace {workspace_id}")

    product.is_active = False
    await db.flush()
    return product
