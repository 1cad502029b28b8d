from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.core.db import get_db
from feedhub.schemas.uid_counter import ProductStateOut, UidCounterOut
from feedhub.services.uid_allocator import ProductNotFound, current_uid, deactivate_product, reset_uid_counter

router = APIRouter()


@router.get("/workspaces/{workspace_id}/uid-counter", response_model=UidCounterOut)
async def get_uid_counter(workspace_id: str, db: AsyncSession = Depends(get_db)):
    return UidCounterOut(workspace_id=workspace_id, last_uid=await current_uid(db, workspace_id))


@router.post("/workspaces/{workspace_id}/uid-counter/reset", response_model=UidCounterOut)
async def reset_workspace_uid_counter(workspace_id: str, db: AsyncSession = Depends(get_db)):
    await reset_uid_counter(db, workspace_id)
    await db.commit()
    return UidCounterOut(workspace_id=workspace_id, last_uid=0)


@router.post(
    "/workspaces/{workspace_id}/suppliers/{supplier_id}/products/{uid}/deactivate",
    response_model=ProductStateOut,
)
async def deactivate_supplier_product(
    workspace_id: str,
    supplier_id: str,
    uid: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        p = await deactivate_product(db, workspace_id=workspace_id, supplier_id=supplier_id, uid=uid)
    except ProductNotFound:
        raise HTTPException(status_code=404, detail="Product not found")
    await db.commit()
    return ProductStateOut(workspace_id=p.workspace_id, supplier_id=p.supplier_id, uid=p.uid, is_active=p.is_active)
