"""
Data models for the mint cost engine.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Tuple, NamedTuple
from datetime import datetime, timezone
from enum import Enum

from mint_engine.errors import InvalidConfigurationError

# Ledger amounts are int64 minor units (tinybars, token base units)
MAX_CURRENCY_AMOUNT = 2**63 - 1


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SegmentKind(Enum):
    """Which discount source priced a run of units."""
    SACRIFICE = "sacrifice"    # Exclusive, never stacks
    HOLDER_WL = "holder_wl"    # Holder tier + whitelist stacked
    HOLDER = "holder"          # Holder tier only (WL exhausted)
    WHITELIST = "whitelist"    # Whitelist only
    FULL_PRICE = "full_price"  # No discount


class HolderContribution(NamedTuple):
    """One discount-granting unit offered by the caller."""
    collection_id: str
    unit_id: int


@dataclass(frozen=True)
class DiscountTier:
    """Discount granted for holding units of a collection."""
    collection_id: str
    discount_percent: int
    max_uses_per_unit: int

    @property
    def is_active(self) -> bool:
        # Removed tiers keep their row with a 0% discount
        return self.discount_percent > 0

    def validate(self):
        if not 0 <= self.discount_percent <= 100:
            raise InvalidConfigurationError(
                f"Tier discount for {self.collection_id} must be 0-100, got {self.discount_percent}"
            )
        if self.max_uses_per_unit < 1:
            raise InvalidConfigurationError(
                f"Tier max uses for {self.collection_id} must be >= 1, got {self.max_uses_per_unit}"
            )


@dataclass
class SerialUsageRecord:
    """How many discount uses a single holder unit has spent."""
    collection_id: str
    unit_id: int
    uses_consumed: int = 0
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class WhitelistBalance:
    """Stackable whitelist slots held by an account."""
    account_id: str
    slots: int = 0
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EconomicsConfig:
    """Process-wide pricing settings.

    base_prices maps currency code to the per-unit price in minor units.
    Insertion order is the display order of the currencies.
    """
    base_prices: Dict[str, int] = field(default_factory=dict)
    wl_discount_percent: int = 0
    sacrifice_discount_percent: int = 0
    max_units_per_tx: int = 50  # 0 = no cap
    max_sacrifice_units: int = 10

    # Limits and whitelist purchase
    max_units_per_wallet: int = 0  # 0 = unlimited
    wl_slot_cost: int = 0
    wl_slot_currency: Optional[str] = None
    wl_slots_per_purchase: int = 1

    # Share of burn_currency payments that is burned
    burn_percentage: int = 50
    burn_currency: Optional[str] = None

    @property
    def currencies(self) -> Tuple[str, ...]:
        return tuple(self.base_prices)

    def validate(self):
        """Raise InvalidConfigurationError if any value is out of range."""
        if len(self.base_prices) < 2:
            raise InvalidConfigurationError("At least two currencies must be priced")
        for currency, price in self.base_prices.items():
            if not isinstance(price, int) or price < 0:
                raise InvalidConfigurationError(f"Base price for {currency} must be a non-negative integer")
            if price > MAX_CURRENCY_AMOUNT:
                raise InvalidConfigurationError(f"Base price for {currency} is out of range")

        for name in ("wl_discount_percent", "sacrifice_discount_percent", "burn_percentage"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise InvalidConfigurationError(f"{name} must be 0-100, got {value}")

        for name in ("max_units_per_tx", "max_sacrifice_units", "max_units_per_wallet", "wl_slot_cost"):
            if getattr(self, name) < 0:
                raise InvalidConfigurationError(f"{name} must be >= 0")

        if self.wl_slots_per_purchase < 1:
            raise InvalidConfigurationError("wl_slots_per_purchase must be >= 1")

        for name in ("wl_slot_currency", "burn_currency"):
            currency = getattr(self, name)
            if currency is not None and currency not in self.base_prices:
                raise InvalidConfigurationError(f"{name} {currency!r} is not a priced currency")


@dataclass(frozen=True)
class MintTiming:
    """When minting is open and how refunds behave."""
    start_time: Optional[datetime] = None  # None = immediately
    paused: bool = True
    refund_window_seconds: int = 3600
    refund_percentage: int = 60
    wl_only: bool = False

    def validate(self):
        # Compared against utcnow(); a naive start time cannot be ordered
        if self.start_time is not None and self.start_time.tzinfo is None:
            raise InvalidConfigurationError("start_time must be timezone-aware")
        if self.refund_window_seconds < 0:
            raise InvalidConfigurationError("refund_window_seconds must be >= 0")
        if not 0 <= self.refund_percentage <= 100:
            raise InvalidConfigurationError(f"refund_percentage must be 0-100, got {self.refund_percentage}")


@dataclass(frozen=True)
class PricedSegment:
    """A run of units priced at a single discount rate."""
    kind: SegmentKind
    units: int
    discount_percent: int
    costs: Dict[str, int]
    collection_id: Optional[str] = None
    unit_id: Optional[int] = None


@dataclass(frozen=True)
class CostQuote:
    """Result of a cost calculation. Never persisted."""
    totals: Dict[str, int]
    blended_discount_percent: int
    holder_slots_consumed: int
    wl_slots_consumed: int
    quantity: int
    segments: Tuple[PricedSegment, ...] = ()

    def total(self, currency: str) -> int:
        return self.totals[currency]

    def serial_usage(self) -> Dict[Tuple[str, int], int]:
        """Units attributed to each (collection, unit) holder slot."""
        usage: Dict[Tuple[str, int], int] = {}
        for segment in self.segments:
            if segment.kind in (SegmentKind.HOLDER_WL, SegmentKind.HOLDER):
                key = (segment.collection_id, segment.unit_id)
                usage[key] = usage.get(key, 0) + segment.units
        return usage

    def to_dict(self) -> dict:
        return {
            "totals": dict(self.totals),
            "blended_discount_percent": self.blended_discount_percent,
            "holder_slots_consumed": self.holder_slots_consumed,
            "wl_slots_consumed": self.wl_slots_consumed,
            "quantity": self.quantity,
            "segments": [
                {
                    "kind": s.kind.value,
                    "units": s.units,
                    "discount_percent": s.discount_percent,
                    "costs": dict(s.costs),
                    "collection_id": s.collection_id,
                    "unit_id": s.unit_id,
                }
                for s in self.segments
            ],
        }


@dataclass(frozen=True)
class LedgerSnapshot:
    """Everything one quote or commit reads, taken at a single point in time."""
    account_id: str
    economics: EconomicsConfig
    timing: MintTiming
    tiers: Dict[str, DiscountTier]
    usage: Dict[Tuple[str, int], int]
    wl_slots: int = 0
    wallet_mint_count: int = 0


@dataclass
class MintRecord:
    """A delivered unit and what was paid for it (for refunds)."""
    unit_id: int
    account_id: str
    payment: Dict[str, int]
    minted_at: datetime = field(default_factory=utcnow)
    refunded: bool = False
    refunded_at: Optional[datetime] = None


@dataclass(frozen=True)
class RefundEligibility:
    """Refund status of a single unit."""
    unit_id: int
    owed: bool
    expires_at: Optional[datetime]
    refund: Dict[str, int]
