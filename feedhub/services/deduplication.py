from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feedhub.models.deduplication_rule import DeduplicationRule
from feedhub.models.final_product import FinalProduct
from feedhub.models.mapped_product import MappedProduct
from feedhub.services.normalize import parse_number, scalar_text

log = logging.getLogger(__name__)

# winners that did not have to compete
UNCONTESTED_REASONS = ("unique", "no_deduplication")


class RuleNotFound(Exception):
    pass


@dataclass
class Selection:
    winner: MappedProduct
    reason: str
    details: str
    excluded: dict[str, str] = field(default_factory=dict)  # product id -> why


@dataclass
class DeduplicationResult:
    stats: dict[str, Any]
    conflicts: list[dict[str, Any]]


def _number(value: Any) -> float | None:
    if isinstance(value, dict) and "amount" in value:
        value = value["amount"]
    return parse_number(value)


def price_of(p: MappedProduct) -> float | None:
    return _number((p.fields or {}).get("price"))


def quantity_of(p: MappedProduct) -> float | None:
    return _number((p.fields or {}).get("quantity"))


def match_value(p: MappedProduct, match_key: str) -> str | None:
    return scalar_text((p.fields or {}).get(match_key))


def exclusion_reason(p: MappedProduct, rules: dict[str, Any]) -> str | None:
    fields = p.fields or {}
    price = price_of(p)

    min_price = rules.get("min_price")
    if min_price is not None and price is not None and price < float(min_price):
        return f"price {price} below min_price {min_price}"
    max_price = rules.get("max_price")
    if max_price is not None and price is not None and price > float(max_price):
        return f"price {price} above max_price {max_price}"

    if rules.get("exclude_out_of_stock") and (quantity_of(p) or 0) <= 0:
        return "out of stock"

    category = (scalar_text(fields.get("category")) or "").lower()
    for blocked in rules.get("category_blacklist") or []:
        if blocked and str(blocked).lower() in category:
            return f"category matches blacklist entry '{blocked}'"

    title = (scalar_text(fields.get("title")) or "").lower()
    for keyword in rules.get("keyword_blacklist") or []:
        if keyword and str(keyword).lower() in title:
            return f"title matches blacklisted keyword '{keyword}'"

    return None


def select_winner(group: Sequence[MappedProduct], rule: DeduplicationRule) -> Selection:
    """
    Pick one record out of a group sharing a match value.

    `group` must be in source order; every tie is resolved in favour of the
    earlier record.
    """
    excluded: dict[str, str] = {}
    for p in group:
        why = exclusion_reason(p, rule.exclusion_rules or {})
        if why:
            excluded[p.id] = why
    eligible = [p for p in group if p.id not in excluded]

    if not eligible:
        return Selection(group[0], "all_excluded", "all candidates excluded by rules, kept first in source order", excluded)

    policy = rule.selection_policy
    if policy == "lowest_price":
        def _price_key(p: MappedProduct) -> float:
            price = price_of(p)
            return math.inf if price is None else price

        winner = min(eligible, key=_price_key)
        return Selection(winner, "lowest_price", f"lowest price: {price_of(winner)}", excluded)

    if policy == "preferred_supplier":
        for supplier_id in rule.preferred_suppliers or []:
            for p in eligible:
                if p.supplier_id == supplier_id:
                    return Selection(p, "preferred_supplier", f"preferred supplier: {supplier_id}", excluded)
        return Selection(
            eligible[0], "preferred_supplier_fallback", "no preferred supplier present, kept first available", excluded
        )

    if policy == "highest_stock":
        winner = max(eligible, key=lambda p: quantity_of(p) or 0)
        return Selection(winner, "highest_stock", f"highest stock: {quantity_of(winner) or 0}", excluded)

    return Selection(eligible[0], "first_available", "first available in source order", excluded)


async def get_active_rule(db: AsyncSession, workspace_id: str, rule_id: str | None = None) -> DeduplicationRule | None:
    """
    The one rule applied in a run. An explicit rule_id is used even if inactive;
    otherwise the active rule with the highest priority (newest on ties).
    """
    if rule_id:
        rule = (await db.execute(
            select(DeduplicationRule).where(
                DeduplicationRule.id == rule_id,
                DeduplicationRule.workspace_id == workspace_id,
            )
        )).scalar_one_or_none()
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    return (await db.execute(
        select(DeduplicationRule)
        .where(DeduplicationRule.workspace_id == workspace_id, DeduplicationRule.is_active.is_(True))
        .order_by(DeduplicationRule.priority.desc(), DeduplicationRule.created_at.desc())
        .limit(1)
    )).scalar_one_or_none()


def _candidate(p: MappedProduct, excluded: dict[str, str]) -> dict[str, Any]:
    fields = p.fields or {}
    return {
        "supplier_id": p.supplier_id,
        "uid": p.uid,
        "title": scalar_text(fields.get("title")),
        "price": price_of(p),
        "currency": scalar_text(fields.get("currency")),
        "quantity": quantity_of(p),
        "category": scalar_text(fields.get("category")),
        "excluded": excluded.get(p.id),
    }


def _final(workspace_id: str, value: str, winner: MappedProduct, reason: str, others: Sequence[MappedProduct]) -> FinalProduct:
    return FinalProduct(
        workspace_id=workspace_id,
        match_value=value,
        winning_supplier_id=winner.supplier_id,
        winning_uid=winner.uid,
        winning_reason=reason,
        fields=dict(winner.fields or {}),
        other_suppliers=[{"supplier_id": o.supplier_id, "uid": o.uid} for o in others],
    )


def _coverage(unique: int, total: int) -> int:
    return round(unique / total * 100) if total else 0


async def run_deduplication(db: AsyncSession, workspace_id: str, rule_id: str | None = None) -> DeduplicationResult:
    """
    Rebuild products_final for a workspace from its active mapped products.

    The delete and the inserts happen in the caller's transaction; nothing is
    committed here. Runs for the same workspace must not overlap.
    """
    rule = await get_active_rule(db, workspace_id, rule_id)

    products = list((await db.execute(
        select(MappedProduct)
        .where(MappedProduct.workspace_id == workspace_id, MappedProduct.is_active.is_(True))
        .order_by(MappedProduct.created_at.asc(), MappedProduct.supplier_id.asc(), MappedProduct.uid.asc())
    )).scalars().all())

    finals: list[FinalProduct] = []
    conflicts: list[dict[str, Any]] = []
    dropped = 0
    duplicates_removed = 0

    if rule is None:
        for p in products:
            finals.append(_final(workspace_id, f"{p.supplier_id}/{p.uid}", p, "no_deduplication", []))
    else:
        groups: dict[str, list[MappedProduct]] = {}
        for p in products:
            value = match_value(p, rule.match_key)
            if value is None:
                dropped += 1
                continue
            groups.setdefault(value, []).append(p)

        for value, group in groups.items():
            if len(group) == 1:
                finals.append(_final(workspace_id, value, group[0], "unique", []))
                continue

            sel = select_winner(group, rule)
            others = [p for p in group if p is not sel.winner]
            finals.append(_final(workspace_id, value, sel.winner, sel.reason, others))
            duplicates_removed += len(others)
            conflicts.append({
                "match_value": value,
                "candidates": [_candidate(p, sel.excluded) for p in group],
                "winning_supplier_id": sel.winner.supplier_id,
                "winning_uid": sel.winner.uid,
                "winning_reason": sel.reason,
                "details": sel.details,
            })

    await db.execute(delete(FinalProduct).where(FinalProduct.workspace_id == workspace_id))
    db.add_all(finals)
    await db.flush()

    stats = {
        "total_products": len(products),
        "unique_products": len(finals),
        "conflicts_resolved": len(conflicts),
        "duplicates_removed": duplicates_removed,
        "dropped_without_match_value": dropped,
        "coverage_percentage": _coverage(len(finals), len(products)),
        "rule_id": rule.id if rule else None,
    }
    log.info("deduplication finished workspace_id=%s stats=%s", workspace_id, stats)
    return DeduplicationResult(stats=stats, conflicts=conflicts)


async def get_deduplication_stats(db: AsyncSession, workspace_id: str) -> dict[str, Any]:
    """Stats of the current products_final contents, without re-running anything."""
    total = (await db.execute(
        select(func.count()).select_from(MappedProduct).where(
            MappedProduct.workspace_id == workspace_id,
            MappedProduct.is_active.is_(True),
        )
    )).scalar_one()
    unique = (await db.execute(
        select(func.count()).select_from(FinalProduct).where(FinalProduct.workspace_id == workspace_id)
    )).scalar_one()
    conflicts = (await db.execute(
        select(func.count()).select_from(FinalProduct).where(
            FinalProduct.workspace_id == workspace_id,
            FinalProduct.winning_reason.not_in(UNCONTESTED_REASONS),
        )
    )).scalar_one()

    return {
        "total_products": total,
        "unique_products": unique,
        "conflicts_resolved": conflicts,
        "duplicates_removed": max(0, total - unique),
        "coverage_percentage": _coverage(unique, total),
    }
