from typing import Literal

from pydantic import BaseModel


class IngestRunOut(BaseModel):
    id: str
    workspace_id: str
    supplier_id: str
    status: str
    feed_format: str | None
    source_file: str | None

    items_total: int
    items_processed: int
    items_success: int
    items_errors: int

    error_message: str | None
    started_at: str | None
    completed_at: str | None
    duration_ms: int | None


class IngestUrlRequest(BaseModel):
    url: str
    # basic auth for the supplier's feed host
    username: str | None = None
    password: str | None = None

    feed_format: Literal["csv", "json", "xml"] | None = None
    uid_source_key: str | None = None


class FeedErrorOut(BaseModel):
    id: str
    item_index: int | None
    code: str | None
    message: str
    raw: str | None
    created_at: str
