"""Ledger storage for the mint engine."""
from .models import (
    DiscountTier,
    SerialUsageRecord,
    WhitelistBalance,
    EconomicsConfig,
    MintTiming,
    CostQuote,
    PricedSegment,
    SegmentKind,
    HolderContribution,
    LedgerSnapshot,
    MintRecord,
    RefundEligibility,
    MAX_CURRENCY_AMOUNT,
    utcnow,
)
from .repo import Database

__all__ = [
    "DiscountTier",
    "SerialUsageRecord",
    "WhitelistBalance",
    "EconomicsConfig",
    "MintTiming",
    "CostQuote",
    "PricedSegment",
    "SegmentKind",
    "HolderContribution",
    "LedgerSnapshot",
    "MintRecord",
    "RefundEligibility",
    "MAX_CURRENCY_AMOUNT",
    "utcnow",
    "Database",
]
