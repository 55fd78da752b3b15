from datetime import timedelta

import pytest

from mint_engine.database import MintTiming
from mint_engine.errors import RefundNotOwedError, UnitAlreadyMintedError
from mint_engine.security import AuditLogger, AuditEventType

from .conftest import MINTER, OTHER_MINTER, T0


@pytest.fixture
def minted(db, service):
    """Two full-price units (1000 HBAR + 50 LAZY each) minted at T0."""
    service.execute_mint(MINTER, 2, finalize=lambda pending: pending.deliver([101, 102]))
    return [101, 102]


def test_eligibility_inside_window(refunds, minted):
    results = refunds.check_refund_eligibility(minted, now=T0 + timedelta(minutes=30))
    assert [r.owed for r in results] == [True, True]
    assert results[0].expires_at == T0 + timedelta(hours=1)
    assert results[0].refund == {"HBAR": 600, "LAZY": 30}


def test_eligibility_after_window(refunds, minted):
    results = refunds.check_refund_eligibility(minted, now=T0 + timedelta(hours=1))
    assert [r.owed for r in results] == [False, False]
    assert results[0].refund == {}


def test_unknown_unit_has_no_expiry(refunds, minted):
    [result] = refunds.check_refund_eligibility([999])
    assert result.owed is False
    assert result.expires_at is None


def test_refund_pays_percentage_of_payment(db, refunds, minted):
    paid_out = []
    total = refunds.refund(MINTER, minted, now=T0 + timedelta(minutes=5), return_funds=paid_out.append)

    assert total == {"HBAR": 1200, "LAZY": 60}
    assert paid_out == [total]
    assert all(db.get_mint_record(u).refunded for u in minted)

    events = AuditLogger(db.db_path).get_recent_events(event_type=AuditEventType.REFUND_PROCESSED)
    assert len(events) == 1


def test_refund_uses_current_percentage(db, refunds, minted):
    db.save_timing(MintTiming(paused=False, refund_percentage=100, refund_window_seconds=7200))
    total = refunds.refund(MINTER, [101], now=T0 + timedelta(minutes=90))
    assert total == {"HBAR": 1000, "LAZY": 50}


def test_refund_only_once(refunds, minted):
    refunds.refund(MINTER, [101])
    with pytest.raises(RefundNotOwedError):
        refunds.refund(MINTER, [101])


def test_refund_rejects_other_account(db, refunds, minted):
    with pytest.raises(RefundNotOwedError):
        refunds.refund(OTHER_MINTER, [101])
    assert db.get_mint_record(101).refunded is False


def test_refund_is_all_or_nothing(db, refunds, minted):
    with pytest.raises(RefundNotOwedError):
        refunds.refund(MINTER, [101, 999])
    assert db.get_mint_record(101).refunded is False


def test_expired_refund_rejected(refunds, minted):
    with pytest.raises(RefundNotOwedError):
        refunds.refund(MINTER, [101], now=T0 + timedelta(hours=2))


def test_failed_payout_keeps_units_refundable(db, refunds, minted):
    def return_funds(total):
        raise RuntimeError("transfer failed")

    with pytest.raises(RuntimeError):
        refunds.refund(MINTER, minted, return_funds=return_funds)
    assert not db.get_mint_record(101).refunded

    assert refunds.refund(MINTER, minted) == {"HBAR": 1200, "LAZY": 60}


def test_refund_input_validation(refunds, minted):
    with pytest.raises(RefundNotOwedError):
        refunds.refund(MINTER, [])
    with pytest.raises(ValueError):
        refunds.refund(MINTER, [101, 101])


def test_refunded_unit_can_be_minted_again(db, service, refunds, minted):
    refunds.refund(MINTER, [101], now=T0 + timedelta(minutes=5))

    service.execute_mint(OTHER_MINTER, 1, finalize=lambda pending: pending.deliver([101]))

    record = db.get_mint_record(101)
    assert record.account_id == OTHER_MINTER
    assert record.refunded is False
    assert record.refunded_at is None

    with pytest.raises(UnitAlreadyMintedError):
        service.execute_mint(OTHER_MINTER, 1, finalize=lambda pending: pending.deliver([102]))
    assert db.get_mint_record(102).account_id == MINTER
