"""Mint cost and discount waterfall engine."""
from .errors import (
    MintEngineError,
    InvalidQuantityError,
    ExceedsMaxUnitsError,
    ExceedsMaxSacrificeError,
    ExceedsWalletLimitError,
    ConcurrentModificationError,
    MintPausedError,
    MintNotStartedError,
    WhitelistOnlyError,
    RefundNotOwedError,
    UnitAlreadyMintedError,
    InvalidConfigurationError,
    CurrencyOverflowError,
)
from .database import Database, DiscountTier, EconomicsConfig, MintTiming, CostQuote, SegmentKind
from .pricing import calculate_mint_cost, expand_serial_groups
from .minting import MintService, PendingMint
from .refunds import RefundService
from .config import EngineSettings, setup_logging

__version__ = "0.1.0"

__all__ = [
    "MintEngineError",
    "InvalidQuantityError",
    "ExceedsMaxUnitsError",
    "ExceedsMaxSacrificeError",
    "ExceedsWalletLimitError",
    "ConcurrentModificationError",
    "MintPausedError",
    "MintNotStartedError",
    "WhitelistOnlyError",
    "RefundNotOwedError",
    "UnitAlreadyMintedError",
    "InvalidConfigurationError",
    "CurrencyOverflowError",
    "Database",
    "DiscountTier",
    "EconomicsConfig",
    "MintTiming",
    "CostQuote",
    "SegmentKind",
    "calculate_mint_cost",
    "expand_serial_groups",
    "MintService",
    "PendingMint",
    "RefundService",
    "EngineSettings",
    "setup_logging",
]
