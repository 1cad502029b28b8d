from pydantic import BaseModel


class UidCounterOut(BaseModel):
    workspace_id: str
    last_uid: int


class ProductStateOut(BaseModel):
    workspace_id: str
    supplier_id: str
    uid: str
    is_active: bool
