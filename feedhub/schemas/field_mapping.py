from typing import Any, Literal

from pydantic import BaseModel, Field

TransformType = Literal[
    "direct", "trim", "lowercase", "uppercase",
    "concat", "replace", "extract_number", "extract_currency",
]


class FieldMappingIn(BaseModel):
    source_key: str
    field_key: str
    transform_type: TransformType = "direct"
    transform_config: dict[str, Any] = Field(default_factory=dict)


class FieldMappingOut(FieldMappingIn):
    id: str | None = None


class ReplaceFieldMappingsRequest(BaseModel):
    mappings: list[FieldMappingIn] = Field(default_factory=list)


class SuggestFieldMappingsRequest(BaseModel):
    # a few source records as parsed from the supplier feed
    sample_records: list[dict[str, Any]] = Field(default_factory=list)
