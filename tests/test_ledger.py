import json
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from mint_engine.database import Database, DiscountTier, EconomicsConfig, MintTiming, MintRecord
from mint_engine.errors import ConcurrentModificationError, InvalidConfigurationError
from mint_engine.security import AuditLogger, AuditEventType

from .conftest import HOLDER_COLLECTION, MINTER, T0


def test_fresh_ledger_seeds_defaults(db, economics):
    assert db.get_economics() == economics
    assert db.get_timing().paused is False


def test_existing_ledger_keeps_stored_settings(db, db_path, economics):
    db.save_economics(replace(economics, wl_discount_percent=20))
    reopened = Database(db_path, default_economics=economics, default_timing=MintTiming())
    assert reopened.get_economics().wl_discount_percent == 20
    assert reopened.get_timing().paused is False


def test_unconfigured_economics(tmp_path):
    db = Database(str(tmp_path / "empty.db"))
    with pytest.raises(InvalidConfigurationError):
        db.get_economics()
    assert db.get_timing() == MintTiming()


def test_currency_order_round_trips(db, economics):
    prices = {"LAZY": 50, "HBAR": 1000, "SAUCE": 7}
    db.save_economics(replace(economics, base_prices=prices))
    assert db.get_economics().currencies == ("LAZY", "HBAR", "SAUCE")


@pytest.mark.parametrize("changes", [
    {"base_prices": {"HBAR": 1000}},
    {"wl_discount_percent": 101},
    {"burn_percentage": -1},
    {"max_units_per_tx": -5},
    {"wl_slots_per_purchase": 0},
    {"burn_currency": "USDC"},
])
def test_invalid_economics_rejected(db, economics, changes):
    with pytest.raises(InvalidConfigurationError):
        db.save_economics(replace(economics, **changes))
    assert db.get_economics() == economics


def test_timing_round_trips(db):
    timing = MintTiming(start_time=T0, paused=True, refund_window_seconds=7200, refund_percentage=50, wl_only=True)
    db.save_timing(timing)
    assert db.get_timing() == timing


def test_invalid_timing_rejected(db):
    with pytest.raises(InvalidConfigurationError):
        db.save_timing(MintTiming(refund_percentage=120))


def test_removed_tier_reads_as_absent(db):
    db.save_tier(DiscountTier(HOLDER_COLLECTION, 0, 3))
    assert db.get_tier(HOLDER_COLLECTION) is None
    assert db.get_tier_record(HOLDER_COLLECTION).max_uses_per_unit == 3
    assert db.list_tiers() == []
    assert len(db.list_tiers(active_only=False)) == 1


def test_unknown_account_has_no_slots(db):
    assert db.get_whitelist_slots("0.0.9999") == 0
    assert db.get_wallet_mint_count("0.0.9999") == 0


def test_snapshot_reads_requested_rows(db, tier):
    db.save_tier(tier)
    db.add_whitelist_slots(MINTER, 4)
    with db.exclusive_transaction() as conn:
        db.apply_serial_usage(conn, HOLDER_COLLECTION, 1, 0, 2)

    snapshot = db.load_snapshot(MINTER, [(HOLDER_COLLECTION, 1), (HOLDER_COLLECTION, 2), ("0.0.2002", 1)])
    assert snapshot.tiers == {HOLDER_COLLECTION: tier}
    assert snapshot.usage == {(HOLDER_COLLECTION, 1): 2, (HOLDER_COLLECTION, 2): 0, ("0.0.2002", 1): 0}
    assert snapshot.wl_slots == 4


def test_serial_usage_compare_and_set(db):
    with db.exclusive_transaction() as conn:
        db.apply_serial_usage(conn, HOLDER_COLLECTION, 1, 0, 2)
    with db.exclusive_transaction() as conn:
        db.apply_serial_usage(conn, HOLDER_COLLECTION, 1, 2, 1)
    assert db.get_serial_usage(HOLDER_COLLECTION, 1) == 3

    with pytest.raises(ConcurrentModificationError):
        with db.exclusive_transaction() as conn:
            db.apply_serial_usage(conn, HOLDER_COLLECTION, 1, 2, 1)
    with pytest.raises(ConcurrentModificationError):
        with db.exclusive_transaction() as conn:
            db.apply_serial_usage(conn, HOLDER_COLLECTION, 1, 0, 1)
    assert db.get_serial_usage(HOLDER_COLLECTION, 1) == 3


def test_whitelist_debit_compare_and_set(db):
    db.add_whitelist_slots(MINTER, 5)
    with pytest.raises(ConcurrentModificationError):
        with db.exclusive_transaction() as conn:
            db.apply_whitelist_debit(conn, MINTER, 4, 2)
    with db.exclusive_transaction() as conn:
        db.apply_whitelist_debit(conn, MINTER, 5, 2)
    assert db.get_whitelist_slots(MINTER) == 3


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.exclusive_transaction() as conn:
            db.add_whitelist_slots(MINTER, 5, conn=conn)
            raise RuntimeError("boom")
    assert db.get_whitelist_slots(MINTER) == 0


def test_busy_ledger_raises_concurrent_modification(db, db_path):
    impatient = Database(db_path, lock_timeout=0.1)
    blocker = db.connect()
    blocker.execute("BEGIN EXCLUSIVE")
    try:
        with pytest.raises(ConcurrentModificationError):
            with impatient.exclusive_transaction():
                pass
    finally:
        blocker.rollback()
        blocker.close()


def test_mint_records_round_trip(db):
    record = MintRecord(unit_id=42, account_id=MINTER, payment={"HBAR": 650, "LAZY": 32}, minted_at=T0)
    with db.exclusive_transaction() as conn:
        db.save_mint_records(conn, [record])

    assert db.get_mint_record(42) == record
    assert db.get_account_mint_records(MINTER) == [record]
    assert db.get_mint_record(43) is None

    refunded_at = T0 + timedelta(minutes=5)
    with db.exclusive_transaction() as conn:
        db.mark_refunded(conn, 42, refunded_at)
    stored = db.get_mint_record(42)
    assert stored.refunded is True
    assert stored.refunded_at == refunded_at

    with pytest.raises(ConcurrentModificationError):
        with db.exclusive_transaction() as conn:
            db.mark_refunded(conn, 42, refunded_at)


def test_settings_changes_are_audited(db, economics):
    db.save_economics(replace(economics, sacrifice_discount_percent=40))
    db.save_timing(MintTiming(start_time=T0, paused=False))

    events = AuditLogger(db.db_path).get_recent_events()
    types = {e["event_type"] for e in events}
    assert AuditEventType.ECONOMICS_UPDATED.value in types
    assert AuditEventType.TIMING_UPDATED.value in types


def test_economics_defaults():
    economics = EconomicsConfig(base_prices={"HBAR": 1, "LAZY": 1})
    assert economics.max_units_per_tx == 50
    assert economics.max_units_per_wallet == 0
    assert economics.max_sacrifice_units == 10
    assert economics.burn_percentage == 50
    timing = MintTiming()
    assert timing.paused is True
    assert timing.refund_window_seconds == 3600
    assert timing.refund_percentage == 60


def test_usage_and_balance_listings(db):
    with db.exclusive_transaction() as conn:
        db.apply_serial_usage(conn, HOLDER_COLLECTION, 7, 0, 1)
        db.apply_serial_usage(conn, HOLDER_COLLECTION, 2, 0, 3)
    db.add_whitelist_slots(MINTER, 2)

    records = db.get_usage_records(HOLDER_COLLECTION)
    assert [(r.unit_id, r.uses_consumed) for r in records] == [(2, 3), (7, 1)]

    balances = db.get_whitelist_balances([MINTER, "0.0.9999"])
    assert [(b.account_id, b.slots) for b in balances] == [(MINTER, 2), ("0.0.9999", 0)]


def test_naive_start_time_rejected(db):
    with pytest.raises(InvalidConfigurationError):
        db.save_timing(MintTiming(paused=False, start_time=datetime(2024, 1, 1)))
    assert db.get_timing() == MintTiming(paused=False)


def test_ledger_uses_write_ahead_log(db):
    conn = db.connect()
    try:
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    finally:
        conn.close()


def test_audit_details_stored_as_json(db):
    db.save_timing(MintTiming(start_time=T0, paused=False))

    [event] = AuditLogger(db.db_path).get_recent_events(event_type=AuditEventType.TIMING_UPDATED, limit=1)
    details = json.loads(event["details"])
    assert details["start_time"] == T0.isoformat()
    assert details["paused"] is False
