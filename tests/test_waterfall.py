from dataclasses import replace

import pytest

from mint_engine.database import DiscountTier, SegmentKind
from mint_engine.errors import (
    CurrencyOverflowError,
    ExceedsMaxSacrificeError,
    ExceedsMaxUnitsError,
    InvalidQuantityError,
)
from mint_engine.pricing import calculate_mint_cost, expand_serial_groups

from .conftest import HOLDER_COLLECTION

T = HOLDER_COLLECTION


def quote(economics, tiers, quantity, contributions=(), sacrifice=0, wl=0, usage=None):
    return calculate_mint_cost(quantity, contributions, sacrifice, wl, tiers, usage or {}, economics)


# --- Reference scenarios -------------------------------------------------------


def test_full_price_without_discounts(economics, tiers):
    q = quote(economics, tiers, 3)
    assert q.totals == {"HBAR": 3000, "LAZY": 150}
    assert q.blended_discount_percent == 0
    assert q.holder_slots_consumed == 0
    assert q.wl_slots_consumed == 0


def test_whitelist_only(economics, tiers):
    q = quote(economics, tiers, 3, wl=5)
    assert q.totals == {"HBAR": 2700, "LAZY": 135}
    assert q.blended_discount_percent == 10
    assert q.wl_slots_consumed == 3


def test_single_holder_slot(economics, tiers):
    q = quote(economics, tiers, 2, [(T, 3)])
    assert q.totals == {"HBAR": 1500, "LAZY": 75}
    assert q.blended_discount_percent == 25
    assert q.holder_slots_consumed == 2


def test_holder_stacks_with_whitelist_per_slot_rounding(economics, tiers):
    q = quote(economics, tiers, 4, [(T, 1), (T, 2)], wl=5)
    # 97 + 32, not 130
    assert q.totals == {"HBAR": 2600, "LAZY": 129}
    assert q.blended_discount_percent == 35
    assert q.holder_slots_consumed == 4
    assert q.wl_slots_consumed == 4


def test_whitelist_runs_out_mid_slot(economics, tiers):
    q = quote(economics, tiers, 10, [(T, 1), (T, 2)], wl=5)
    assert q.totals == {"HBAR": 8000, "LAZY": 399}
    assert q.blended_discount_percent == 20
    assert q.holder_slots_consumed == 6
    assert q.wl_slots_consumed == 5

    kinds = [(s.kind, s.units, s.discount_percent) for s in q.segments]
    assert kinds == [
        (SegmentKind.HOLDER_WL, 3, 35),
        (SegmentKind.HOLDER_WL, 2, 35),
        (SegmentKind.HOLDER, 1, 25),
        (SegmentKind.FULL_PRICE, 4, 0),
    ]
    assert [s.costs["LAZY"] for s in q.segments] == [97, 65, 37, 200]


def test_sacrifice_is_exclusive(economics, tiers):
    q = quote(economics, tiers, 3, sacrifice=3, wl=5)
    assert q.totals == {"HBAR": 2100, "LAZY": 105}
    assert q.blended_discount_percent == 30
    assert q.holder_slots_consumed == 0
    assert q.wl_slots_consumed == 0


# --- Contribution handling -----------------------------------------------------


def test_contributions_used_in_caller_order(economics):
    tiers = {
        "0.0.1001": DiscountTier("0.0.1001", 10, 1),
        "0.0.1002": DiscountTier("0.0.1002", 50, 1),
    }
    q = quote(economics, tiers, 1, [("0.0.1001", 1), ("0.0.1002", 1)])
    assert q.segments[0].collection_id == "0.0.1001"
    assert q.totals["HBAR"] == 900


def test_unknown_and_removed_tiers_are_skipped(economics, tier):
    tiers = {"0.0.2002": DiscountTier("0.0.2002", 0, 5)}
    q = quote(economics, tiers, 2, [("0.0.2002", 1), (T, 1)])
    assert q.totals == {"HBAR": 2000, "LAZY": 100}
    assert q.holder_slots_consumed == 0


def test_exhausted_serial_is_skipped(economics, tiers):
    q = quote(economics, tiers, 2, [(T, 1), (T, 2)], usage={(T, 1): 3})
    assert q.holder_slots_consumed == 2
    assert q.serial_usage() == {(T, 2): 2}


def test_duplicate_entries_never_overdraw_a_serial(economics, tiers):
    q = quote(economics, tiers, 5, [(T, 1), (T, 1)], usage={(T, 1): 1})
    assert q.holder_slots_consumed == 2
    assert q.serial_usage() == {(T, 1): 2}
    assert q.totals["HBAR"] == 1500 + 3000


def test_combined_discount_capped_at_100(economics):
    tiers = {T: DiscountTier(T, 95, 1)}
    q = quote(economics, tiers, 1, [(T, 1)], wl=1)
    assert q.totals == {"HBAR": 0, "LAZY": 0}
    assert q.blended_discount_percent == 100


def test_expand_serial_groups_keeps_order():
    contributions = expand_serial_groups(["0.0.1001", "0.0.1002"], [[3, 1], [7]])
    assert contributions == [("0.0.1001", 3), ("0.0.1001", 1), ("0.0.1002", 7)]


def test_expand_serial_groups_rejects_mismatch():
    with pytest.raises(ValueError):
        expand_serial_groups(["0.0.1001"], [[1], [2]])


# --- Limits ------------------------------------------------------------------------


@pytest.mark.parametrize("quantity", [0, -1])
def test_quantity_must_be_positive(economics, tiers, quantity):
    with pytest.raises(InvalidQuantityError):
        quote(economics, tiers, quantity)


def test_quantity_above_cap(economics, tiers):
    with pytest.raises(ExceedsMaxUnitsError) as exc:
        quote(economics, tiers, 51)
    assert exc.value.max_units == 50


def test_zero_cap_means_unlimited(economics, tiers):
    q = quote(replace(economics, max_units_per_tx=0), tiers, 500)
    assert q.totals["HBAR"] == 500_000


@pytest.mark.parametrize("quantity,sacrifice", [(3, 4), (20, 11)])
def test_sacrifice_above_limit(economics, tiers, quantity, sacrifice):
    with pytest.raises(ExceedsMaxSacrificeError):
        quote(economics, tiers, quantity, sacrifice=sacrifice)


def test_negative_wl_slots_rejected(economics, tiers):
    with pytest.raises(InvalidQuantityError):
        quote(economics, tiers, 1, wl=-1)


def test_overflow_is_fatal(economics, tiers):
    huge = replace(economics, base_prices={"HBAR": 2**62, "LAZY": 1})
    with pytest.raises(CurrencyOverflowError):
        quote(huge, tiers, 3)


# --- Properties ---------------------------------------------------------------------


def test_totals_monotonic_in_quantity(economics, tiers):
    previous = {"HBAR": 0, "LAZY": 0}
    for quantity in range(1, 21):
        q = quote(economics, tiers, quantity, [(T, 1), (T, 2)], wl=5)
        for currency, total in q.totals.items():
            assert total >= previous[currency]
        previous = q.totals


@pytest.mark.parametrize("quantity,sacrifice,wl", [(1, 0, 0), (6, 2, 1), (10, 0, 5), (12, 3, 20), (9, 0, 2)])
def test_stacking_bound_and_conservation(economics, tiers, quantity, sacrifice, wl):
    q = quote(economics, tiers, quantity, [(T, 1), (T, 2)], sacrifice=sacrifice, wl=wl)

    cap = tiers[T].discount_percent + economics.wl_discount_percent
    assert all(s.discount_percent <= cap for s in q.segments)

    wl_units = sum(s.units for s in q.segments if s.kind in (SegmentKind.HOLDER_WL, SegmentKind.WHITELIST))
    assert wl_units == q.wl_slots_consumed <= wl

    other = sum(
        s.units for s in q.segments
        if s.kind in (SegmentKind.SACRIFICE, SegmentKind.WHITELIST, SegmentKind.FULL_PRICE)
    )
    assert q.holder_slots_consumed + other == quantity
    assert sum(s.units for s in q.segments) == quantity


def test_per_slot_rounding_differs_from_batch_rounding(economics):
    one_slot = {T: DiscountTier(T, 25, 2)}
    two_slots = {T: DiscountTier(T, 25, 1)}

    batched = quote(economics, one_slot, 2, [(T, 1)])
    split = quote(economics, two_slots, 2, [(T, 1), (T, 2)])

    # 50 * 2 * 75 // 100 = 75 vs 2 * (50 * 75 // 100) = 74
    assert batched.totals["LAZY"] == 75
    assert split.totals["LAZY"] == 74
    assert batched.totals["HBAR"] == split.totals["HBAR"] == 1500


def test_calculation_is_pure(economics, tiers):
    usage = {(T, 1): 1}
    first = quote(economics, tiers, 4, [(T, 1)], wl=2, usage=usage)
    second = quote(economics, tiers, 4, [(T, 1)], wl=2, usage=usage)
    assert first == second
    assert usage == {(T, 1): 1}
