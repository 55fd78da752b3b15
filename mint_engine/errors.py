"""
Error types raised by the mint engine.

Everything except CurrencyOverflowError is recoverable by the caller:
adjust the input or retry the whole operation. None of them leave the
ledgers partially updated.
"""


class MintEngineError(Exception):
    """Base class for all mint engine errors."""


class InvalidQuantityError(MintEngineError, ValueError):
    """Quantity or slot count is not a usable non-negative integer."""


class ExceedsMaxUnitsError(MintEngineError):
    """Requested quantity is above the per-transaction cap."""

    def __init__(self, quantity: int, max_units: int):
        self.quantity = quantity
        self.max_units = max_units
        super().__init__(f"Quantity {quantity} exceeds max units per transaction ({max_units})")


class ExceedsMaxSacrificeError(MintEngineError):
    """Sacrifice count is above the configured cap or above the quantity."""

    def __init__(self, sacrifice_units: int, limit: int):
        self.sacrifice_units = sacrifice_units
        self.limit = limit
        super().__init__(f"Sacrifice count {sacrifice_units} exceeds allowed maximum ({limit})")


class ExceedsWalletLimitError(MintEngineError):
    """Mint would take the account past its lifetime mint cap."""

    def __init__(self, account_id: str, already_minted: int, quantity: int, limit: int):
        self.account_id = account_id
        self.already_minted = already_minted
        self.quantity = quantity
        self.limit = limit
        super().__init__(
            f"Account {account_id} has minted {already_minted} of {limit}; cannot mint {quantity} more"
        )


class ConcurrentModificationError(MintEngineError):
    """A commit lost a race on a shared ledger row. Nothing was applied."""


class MintPausedError(MintEngineError):
    """Minting is paused by an administrator."""


class MintNotStartedError(MintEngineError):
    """Minting has not opened yet."""


class WhitelistOnlyError(MintEngineError):
    """Minting is restricted to whitelisted accounts with enough slots."""


class RefundNotOwedError(MintEngineError):
    """One or more units are not refundable for this account right now."""


class InvalidConfigurationError(MintEngineError, ValueError):
    """Economics, timing or tier settings are out of range."""


class CurrencyOverflowError(InvalidConfigurationError):
    """A currency total left the representable ledger amount range.

    Only reachable with pathological configuration; treated as fatal.
    """


class UnitAlreadyMintedError(MintEngineError):
    """A delivered unit is still held by an earlier, unrefunded mint."""

    def __init__(self, unit_id: int):
        self.unit_id = unit_id
        super().__init__(f"Unit {unit_id} is already minted and has not been refunded")
