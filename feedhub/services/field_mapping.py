from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Protocol, Sequence

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.models.custom_field import CustomField
from feedhub.models.field_mapping import TRANSFORM_TYPES, FieldMapping
from feedhub.services.ingest_errors import MappingError
from feedhub.services.normalize import NormalizedItem, parse_number, scalar_text

log = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y"}
_FALSE = {"0", "false", "no", "n"}
_NUMBER_TEXT_RE = re.compile(r"[\d.,]+")
_CURRENCY_CODE_RE = re.compile(r"\b([A-Z]{3})\b")
_CURRENCY_SYMBOLS = {"€": "EUR", "$": "USD", "£": "GBP", "¥": "JPY", "₺": "TRY"}

_datetime_adapter = TypeAdapter(datetime)
_date_adapter = TypeAdapter(date)

# field key -> other source keys commonly used for it
FIELD_VARIATIONS: dict[str, tuple[str, ...]] = {
    "title": ("name", "product_name", "product_title", "item_name"),
    "description": ("desc", "product_description", "long_description", "details"),
    "price": ("cost", "amount", "sale_price", "regular_price", "list_price"),
    "sku": ("id", "product_id", "item_id", "code", "product_code"),
    "ean": ("gtin", "barcode", "upc", "isbn"),
    "brand": ("manufacturer", "maker", "company"),
    "category": ("cat", "category_name", "type", "classification"),
    "quantity": ("qty", "stock", "inventory", "available"),
    "image_url": ("image", "img", "picture", "photo", "thumbnail"),
}


class InvalidFieldMappings(Exception):
    def __init__(self, errors: list[dict[str, Any]]):
        super().__init__("invalid field mappings")
        self.errors = errors


class FieldDef(Protocol):
    key: str
    datatype: str


class RuleDef(Protocol):
    source_key: str
    field_key: str
    transform_type: str
    transform_config: dict


@dataclass(frozen=True)
class MappingRule:
    source_key: str
    field_key: str
    transform_type: str = "direct"
    transform_config: dict[str, Any] = field(default_factory=dict)


# ---- coercion ----

def _coerce_date(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    s = scalar_text(value)
    if s is None:
        return None
    try:
        return _datetime_adapter.validate_python(s).isoformat()
    except ValidationError:
        pass
    try:
        return _date_adapter.validate_python(s).isoformat()
    except ValidationError:
        return None


def coerce_value(value: Any, datatype: str) -> Any:
    """
    Convert a source value to a custom field datatype.

    Never raises: anything that cannot be converted becomes None.
    """
    if value is None:
        return None

    if datatype == "number":
        if isinstance(value, dict) and "amount" in value:
            value = value["amount"]
        return parse_number(value)

    if datatype == "bool":
        if isinstance(value, bool):
            return value
        s = (scalar_text(value) or "").lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
        return None

    if datatype == "date":
        return _coerce_date(value)

    if datatype == "json":
        if isinstance(value, (dict, list, int, float, bool)):
            return value
        try:
            return json.loads(str(value))
        except ValueError:
            return None

    # text (and unknown datatypes)
    if isinstance(value, (dict, list)):
        if isinstance(value, dict) and set(value) == {"#text"}:
            return scalar_text(value)
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---- transforms ----

def _lookup(data: dict[str, Any], key: str) -> tuple[bool, Any]:
    k = key.strip().lower()
    for src_key, v in data.items():
        if str(src_key).strip().lower() == k:
            return True, v
    return False, None


def _number_from_text(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    s = scalar_text(value)
    if s is None or not _NUMBER_TEXT_RE.search(s):
        return None
    return parse_number(s)


def _currency_from_text(value: Any) -> str | None:
    s = scalar_text(value) or ""
    m = _CURRENCY_CODE_RE.search(s)
    if m:
        return m.group(1)
    for symbol, code in _CURRENCY_SYMBOLS.items():
        if symbol in s:
            return code
    return None


def apply_transform(value: Any, transform_type: str, config: dict[str, Any] | None, raw: dict[str, Any]) -> Any:
    config = config or {}

    if transform_type == "concat":
        # reads several source keys, not just the mapped one
        parts = []
        for key in config.get("fields") or []:
            _, v = _lookup(raw, str(key))
            parts.append(scalar_text(v) or "")
        return str(config.get("separator", " ")).join(parts)

    if value is None:
        return None
    if isinstance(value, dict) and "#text" in value:
        value = value["#text"]

    if transform_type in ("trim", "lowercase", "uppercase"):
        if not isinstance(value, str):
            return value
        if transform_type == "trim":
            return value.strip()
        return value.lower() if transform_type == "lowercase" else value.upper()

    if transform_type == "replace":
        result = str(value)
        for pattern, repl in (config.get("replacements") or {}).items():
            try:
                result = re.sub(pattern, str(repl), result)
            except re.error as e:
                raise MappingError(f"replace transform: invalid pattern {pattern!r}: {e}") from e
        return result

    if transform_type == "extract_number":
        return _number_from_text(value)

    if transform_type == "extract_currency":
        amount = _number_from_text(value)
        if amount is None:
            return None
        return {
            "amount": amount,
            "currency": config.get("currency") or _currency_from_text(value) or "USD",
        }

    # direct
    return value


# ---- mapping ----

def map_item_fields(
    item: NormalizedItem,
    custom_fields: Sequence[FieldDef],
    mappings: Sequence[RuleDef],
) -> dict[str, Any]:
    """
    Build the custom field values for one product.

    Explicit mapping rules run first (source key looked up in the raw record,
    then in the normalized attributes). Fields still unset are matched by their
    own key. Values that fail coercion are stored as None; fields with nothing
    to match are left out.
    """
    defs = {f.key: f for f in custom_fields}
    raw = item.raw
    attrs = item.attributes()
    out: dict[str, Any] = {}

    for rule in mappings:
        target = defs.get(rule.field_key)
        if target is None:
            continue

        if rule.transform_type == "concat":
            present, value = True, None
        else:
            present, value = _lookup(raw, rule.source_key)
            if not present:
                present, value = _lookup(attrs, rule.source_key)
        if not present:
            continue

        transformed = apply_transform(value, rule.transform_type, rule.transform_config, raw)
        out[target.key] = coerce_value(transformed, target.datatype)

    for f in custom_fields:
        if f.key in out:
            continue
        present, value = _lookup(attrs, f.key)
        if not present or value is None:
            present, value = _lookup(raw, f.key)
        if present:
            out[f.key] = coerce_value(value, f.datatype)

    return out


# ---- validation / suggestions ----

def validate_field_mapping(rule: RuleDef) -> list[str]:
    errors: list[str] = []
    config = rule.transform_config or {}

    if not (rule.source_key or "").strip():
        errors.append("source_key is required")
    if not (rule.field_key or "").strip():
        errors.append("field_key is required")
    if rule.transform_type not in TRANSFORM_TYPES:
        errors.append(f"unknown transform_type: {rule.transform_type}")

    if rule.transform_type == "concat":
        if not isinstance(config.get("fields"), list):
            errors.append("concat transform requires a fields list")
    elif rule.transform_type == "replace":
        replacements = config.get("replacements")
        if not isinstance(replacements, dict):
            errors.append("replace transform requires a replacements object")
        else:
            for pattern in replacements:
                try:
                    re.compile(pattern)
                except re.error as e:
                    errors.append(f"replace transform: invalid pattern {pattern!r}: {e}")
    elif rule.transform_type == "extract_currency":
        if not config.get("currency"):
            errors.append("extract_currency transform requires a currency code")

    return errors


def suggest_field_mappings(
    custom_fields: Sequence[FieldDef],
    sample_records: Iterable[dict[str, Any]],
) -> list[MappingRule]:
    source_keys: set[str] = set()
    for rec in sample_records:
        source_keys.update(str(k).lower() for k in rec.keys())

    out: list[MappingRule] = []
    for f in custom_fields:
        key = f.key.lower()
        if key in source_keys:
            out.append(MappingRule(source_key=key, field_key=f.key))
            continue
        for variation in FIELD_VARIATIONS.get(key, ()):
            if variation in source_keys:
                out.append(MappingRule(source_key=variation, field_key=f.key))
                break
    return out


# ---- persistence ----

async def load_custom_fields(db: AsyncSession, workspace_id: str) -> list[CustomField]:
    rows = await db.execute(
        select(CustomField)
        .where(CustomField.workspace_id == workspace_id)
        .order_by(CustomField.sort_order.asc(), CustomField.key.asc())
    )
    return list(rows.scalars().all())


async def load_field_mappings(db: AsyncSession, workspace_id: str, supplier_id: str) -> list[FieldMapping]:
    rows = await db.execute(
        select(FieldMapping)
        .where(FieldMapping.workspace_id == workspace_id, FieldMapping.supplier_id == supplier_id)
        .order_by(FieldMapping.position.asc())
    )
    return list(rows.scalars().all())


async def replace_field_mappings(
    db: AsyncSession,
    *,
    workspace_id: str,
    supplier_id: str,
    rules: Sequence[RuleDef],
) -> list[FieldMapping]:
    """Swap the supplier's whole rule set (delete, then insert). Nothing is written if any rule is invalid."""
    field_keys = {f.key for f in await load_custom_fields(db, workspace_id)}

    errors: list[dict[str, Any]] = []
    for i, rule in enumerate(rules):
        problems = validate_field_mapping(rule)
        if rule.field_key and rule.field_key not in field_keys:
            problems.append(f"unknown custom field: {rule.field_key}")
        if problems:
            errors.append({"index": i, "source_key": rule.source_key, "errors": problems})
    if errors:
        raise InvalidFieldMappings(errors)

    await db.execute(
        delete(FieldMapping).where(
            FieldMapping.workspace_id == workspace_id,
            FieldMapping.supplier_id == supplier_id,
        )
    )

    rows = [
        FieldMapping(
            workspace_id=workspace_id,
            supplier_id=supplier_id,
            source_key=rule.source_key.strip(),
            field_key=rule.field_key,
            transform_type=rule.transform_type,
            transform_config=dict(rule.transform_config or {}),
            position=i,
        )
        for i, rule in enumerate(rules)
    ]
    db.add_all(rows)
    await db.flush()

    log.info(
        "field mappings replaced workspace_id=%s supplier_id=%s count=%s",
        workspace_id, supplier_id, len(rows),
    )
    return rows


