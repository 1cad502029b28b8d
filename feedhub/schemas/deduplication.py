from typing import Any

from pydantic import BaseModel, Field


class DeduplicationRunRequest(BaseModel):
    # use this rule instead of the workspace's active one
    rule_id: str | None = None


class DeduplicationStatsOut(BaseModel):
    total_products: int
    unique_products: int
    conflicts_resolved: int
    duplicates_removed: int
    coverage_percentage: int
    dropped_without_match_value: int | None = None
    rule_id: str | None = None


class DeduplicationRunResponse(BaseModel):
    stats: DeduplicationStatsOut
    conflicts: list[dict[str, Any]] = Field(default_factory=list)
