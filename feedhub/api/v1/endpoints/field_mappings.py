from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.core.db import get_db
from feedhub.schemas.field_mapping import (
    FieldMappingOut,
    ReplaceFieldMappingsRequest,
    SuggestFieldMappingsRequest,
)
from feedhub.services.field_mapping import (
    InvalidFieldMappings,
    load_custom_fields,
    load_field_mappings,
    replace_field_mappings,
    suggest_field_mappings,
)

router = APIRouter()


def _out(m) -> FieldMappingOut:
    return FieldMappingOut(
        id=getattr(m, "id", None),
        source_key=m.source_key,
        field_key=m.field_key,
        transform_type=m.transform_type,
        transform_config=m.transform_config or {},
    )


@router.get("/workspaces/{workspace_id}/suppliers/{supplier_id}/field-mappings", response_model=list[FieldMappingOut])
async def get_field_mappings(workspace_id: str, supplier_id: str, db: AsyncSession = Depends(get_db)):
    rows = await load_field_mappings(db, workspace_id, supplier_id)
    return [_out(m) for m in rows]


@router.put("/workspaces/{workspace_id}/suppliers/{supplier_id}/field-mappings", response_model=list[FieldMappingOut])
async def put_field_mappings(
    workspace_id: str,
    supplier_id: str,
    body: ReplaceFieldMappingsRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        rows = await replace_field_mappings(
            db,
            workspace_id=workspace_id,
            supplier_id=supplier_id,
            rules=body.mappings,
        )
    except InvalidFieldMappings as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})

    await db.commit()
    return [_out(m) for m in rows]


@router.post(
    "/workspaces/{workspace_id}/suppliers/{supplier_id}/field-mappings/suggest",
    response_model=list[FieldMappingOut],
)
async def suggest_mappings(
    workspace_id: str,
    supplier_id: str,
    body: SuggestFieldMappingsRequest,
    db: AsyncSession = Depends(get_db),
):
    custom_fields = await load_custom_fields(db, workspace_id)
    return [_out(s) for s in suggest_field_mappings(custom_fields, body.sample_records)]
