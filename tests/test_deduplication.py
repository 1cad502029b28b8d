from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from feedhub.models.deduplication_rule import DeduplicationRule
from feedhub.models.final_product import FinalProduct
from feedhub.models.mapped_product import MappedProduct
from feedhub.services.deduplication import (
    RuleNotFound,
    exclusion_reason,
    get_active_rule,
    get_deduplication_stats,
    run_deduplication,
    select_winner,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _product(supplier_id, uid, minute=0, *, active=True, **fields):
    return MappedProduct(
        id=f"mpd_{supplier_id}_{uid}",
        workspace_id="ws_a",
        supplier_id=supplier_id,
        uid=uid,
        fields=fields,
        is_active=active,
        created_at=T0 + timedelta(minutes=minute),
        updated_at=T0 + timedelta(minutes=minute),
    )


def _rule(policy="lowest_price", *, match_key="ean", preferred=None, exclusions=None, priority=0, active=True, name="rule"):
    return DeduplicationRule(
        workspace_id="ws_a",
        name=name,
        match_key=match_key,
        selection_policy=policy,
        preferred_suppliers=preferred or [],
        exclusion_rules=exclusions or {},
        is_active=active,
        priority=priority,
    )


async def _finals(db):
    rows = await db.execute(
        select(FinalProduct).where(FinalProduct.workspace_id == "ws_a").order_by(FinalProduct.match_value)
    )
    return list(rows.scalars().all())


def test_exclusion_reasons():
    rules = {
        "min_price": 5,
        "max_price": 100,
        "exclude_out_of_stock": True,
        "category_blacklist": ["Refurb"],
        "keyword_blacklist": ["replica"],
    }
    ok = _product("a", "1", price="10.00", quantity=2, category="Tools", title="Drill")
    assert exclusion_reason(ok, rules) is None

    assert "min_price" in exclusion_reason(_product("a", "1", price="4,99", quantity=2), rules)
    assert "max_price" in exclusion_reason(_product("a", "1", price=120, quantity=2), rules)
    assert exclusion_reason(_product("a", "1", price=10), rules) == "out of stock"
    assert "blacklist" in exclusion_reason(_product("a", "1", price=10, quantity=1, category="refurb phones"), rules)
    assert "keyword" in exclusion_reason(_product("a", "1", price=10, quantity=1, title="Replica watch"), rules)
    # no price: price limits do not apply
    assert exclusion_reason(_product("a", "1", quantity=1), {"min_price": 5}) is None


def test_lowest_price_tie_keeps_earlier_record():
    group = [
        _product("sup_a", "1", 0, price=9.0),
        _product("sup_b", "2", 1, price=9.0),
        _product("sup_c", "3", 2),
    ]
    sel = select_winner(group, _rule("lowest_price"))
    assert sel.winner.supplier_id == "sup_a"
    assert sel.reason == "lowest_price"


def test_preferred_supplier_and_fallback():
    group = [_product("sup_a", "1", 0), _product("sup_b", "2", 1)]

    sel = select_winner(group, _rule("preferred_supplier", preferred=["sup_c", "sup_b"]))
    assert (sel.winner.supplier_id, sel.reason) == ("sup_b", "preferred_supplier")

    sel = select_winner(group, _rule("preferred_supplier", preferred=["sup_z"]))
    assert (sel.winner.supplier_id, sel.reason) == ("sup_a", "preferred_supplier_fallback")


def test_highest_stock_and_first_available():
    group = [_product("sup_a", "1", 0, quantity="3"), _product("sup_b", "2", 1, quantity=7)]
    sel = select_winner(group, _rule("highest_stock"))
    assert (sel.winner.supplier_id, sel.reason) == ("sup_b", "highest_stock")

    sel = select_winner(group, _rule("first_available"))
    assert (sel.winner.supplier_id, sel.reason) == ("sup_a", "first_available")


def test_all_candidates_excluded():
    group = [_product("sup_a", "1", 0, quantity=0), _product("sup_b", "2", 1, quantity=0)]
    sel = select_winner(group, _rule("highest_stock", exclusions={"exclude_out_of_stock": True}))
    assert sel.winner.supplier_id == "sup_a"
    assert sel.reason == "all_excluded"
    assert set(sel.excluded) == {"mpd_sup_a_1", "mpd_sup_b_2"}


@pytest.mark.asyncio
async def test_lowest_price_wins(db_session):
    db_session.add_all([
        _product("sup_a", "1", 0, ean="E1", price="10.00", title="Widget"),
        _product("sup_b", "7", 1, ean="E1", price="8,50", title="Widget"),
        _product("sup_c", "2", 2, ean="E1", price={"amount": 9.0, "currency": "EUR"}),
        _product("sup_a", "3", 3, ean="E2", price="1.00"),
    ])
    db_session.add(_rule("lowest_price"))
    await db_session.commit()

    result = await run_deduplication(db_session, "ws_a")
    await db_session.commit()

    finals = await _finals(db_session)
    assert [(f.match_value, f.winning_supplier_id, f.winning_reason) for f in finals] == [
        ("E1", "sup_b", "lowest_price"),
        ("E2", "sup_a", "unique"),
    ]
    assert finals[0].fields["price"] == "8,50"
    assert finals[0].other_suppliers == [{"supplier_id": "sup_a", "uid": "1"}, {"supplier_id": "sup_c", "uid": "2"}]

    stats = result.stats
    assert stats["total_products"] == 4
    assert stats["unique_products"] == 2
    assert stats["conflicts_resolved"] == 1
    assert stats["duplicates_removed"] == 2
    assert stats["coverage_percentage"] == 50

    conflict = result.conflicts[0]
    assert conflict["match_value"] == "E1"
    assert [c["price"] for c in conflict["candidates"]] == [10.0, 8.5, 9.0]


@pytest.mark.asyncio
async def test_min_price_exclusion_changes_winner(db_session):
    db_session.add_all([
        _product("sup_a", "1", 0, ean="E1", price="10.00"),
        _product("sup_b", "1", 1, ean="E1", price="8.50"),
    ])
    db_session.add(_rule("lowest_price", exclusions={"min_price": 9.00}))
    await db_session.commit()

    result = await run_deduplication(db_session, "ws_a")

    finals = await _finals(db_session)
    assert finals[0].winning_supplier_id == "sup_a"
    assert "min_price" in result.conflicts[0]["candidates"][1]["excluded"]


@pytest.mark.asyncio
async def test_no_rule_passes_everything_through(db_session):
    db_session.add_all([
        _product("sup_a", "1", 0, ean="E1"),
        _product("sup_b", "1", 1, ean="E1"),
        _product("sup_b", "2", 2, active=False, ean="E1"),
    ])
    db_session.add(_rule(active=False))
    await db_session.commit()

    result = await run_deduplication(db_session, "ws_a")

    finals = await _finals(db_session)
    assert [(f.match_value, f.winning_reason) for f in finals] == [
        ("sup_a/1", "no_deduplication"),
        ("sup_b/1", "no_deduplication"),
    ]
    assert result.stats["rule_id"] is None
    assert result.stats["total_products"] == 2
    assert result.conflicts == []


@pytest.mark.asyncio
async def test_products_without_match_value_are_dropped(db_session):
    db_session.add_all([
        _product("sup_a", "1", 0, ean="E1"),
        _product("sup_b", "1", 1, title="no ean"),
        _product("sup_c", "1", 2, ean="  "),
    ])
    db_session.add(_rule())
    await db_session.commit()

    result = await run_deduplication(db_session, "ws_a")

    assert result.stats["dropped_without_match_value"] == 2
    assert [f.match_value for f in await _finals(db_session)] == ["E1"]


@pytest.mark.asyncio
async def test_rerun_replaces_previous_result(db_session):
    db_session.add_all([
        _product("sup_a", "1", 0, ean="E1", price=5),
        _product("sup_b", "1", 1, ean="E1", price=4),
    ])
    db_session.add(_rule())
    await db_session.commit()

    await run_deduplication(db_session, "ws_a")
    await db_session.commit()
    first = [(f.match_value, f.winning_supplier_id) for f in await _finals(db_session)]

    await run_deduplication(db_session, "ws_a")
    await db_session.commit()
    second = [(f.match_value, f.winning_supplier_id) for f in await _finals(db_session)]

    assert first == second == [("E1", "sup_b")]

    stats = await get_deduplication_stats(db_session, "ws_a")
    assert stats == {
        "total_products": 2,
        "unique_products": 1,
        "conflicts_resolved": 1,
        "duplicates_removed": 1,
        "coverage_percentage": 50,
    }


@pytest.mark.asyncio
async def test_rule_selection(db_session):
    low = _rule("first_available", priority=1, name="low")
    high = _rule("highest_stock", priority=5, name="high")
    off = _rule("preferred_supplier", priority=10, active=False, name="off")
    db_session.add_all([low, high, off])
    await db_session.commit()

    assert (await get_active_rule(db_session, "ws_a")).name == "high"
    assert (await get_active_rule(db_session, "ws_a", off.id)).name == "off"
    assert await get_active_rule(db_session, "ws_b") is None

    with pytest.raises(RuleNotFound):
        await get_active_rule(db_session, "ws_a", "ddr_missing")
    with pytest.raises(RuleNotFound):
        await get_active_rule(db_session, "ws_b", high.id)
