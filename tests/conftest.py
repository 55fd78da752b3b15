from datetime import datetime, timezone

import pytest

from mint_engine.database import Database, DiscountTier, EconomicsConfig, MintTiming
from mint_engine.minting import MintService
from mint_engine.refunds import RefundService

HOLDER_COLLECTION = "0.0.1001"
MINTER = "0.0.5005"
OTHER_MINTER = "0.0.5006"
T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def economics() -> EconomicsConfig:
    return EconomicsConfig(
        base_prices={"HBAR": 1000, "LAZY": 50},
        wl_discount_percent=10,
        sacrifice_discount_percent=30,
        max_units_per_tx=50,
        max_sacrifice_units=10,
        wl_slot_cost=100,
        wl_slot_currency="LAZY",
        burn_percentage=50,
        burn_currency="LAZY",
    )


@pytest.fixture
def tier() -> DiscountTier:
    return DiscountTier(HOLDER_COLLECTION, 25, 3)


@pytest.fixture
def tiers(tier):
    return {tier.collection_id: tier}


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "ledger.db")


@pytest.fixture
def db(db_path, economics) -> Database:
    return Database(
        db_path,
        lock_timeout=5.0,
        default_economics=economics,
        default_timing=MintTiming(paused=False),
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def service(db, clock) -> MintService:
    return MintService(db, clock=clock)


@pytest.fixture
def refunds(db, clock) -> RefundService:
    return RefundService(db, clock=clock)
