"""
Payment arithmetic around an accepted quote: burn split, per-unit payment
records and refund amounts. Integer minor units, floor division.
"""
import logging
from typing import Dict, Mapping

from mint_engine.database.models import CostQuote, EconomicsConfig

logger = logging.getLogger(__name__)


def calculate_burn_split(quote: CostQuote, economics: EconomicsConfig) -> Dict[str, int]:
    """Split the burn currency payment into burned and retained amounts.

    Args:
        quote: Accepted cost quote
        economics: Economics config (burn_currency, burn_percentage)

    Returns:
        Dict with "currency", "burned" and "retained". Nothing is burned when
        no burn currency is configured.
    """
    currency = economics.burn_currency
    if currency is None:
        return {"currency": None, "burned": 0, "retained": 0}

    total = quote.totals.get(currency, 0)
    burned = total * economics.burn_percentage // 100
    return {"currency": currency, "burned": burned, "retained": total - burned}


def per_unit_payment(quote: CostQuote) -> Dict[str, int]:
    """Average amount paid per minted unit, per currency (floored)."""
    return {currency: total // quote.quantity for currency, total in quote.totals.items()}


def calculate_refund(payment: Mapping[str, int], refund_percentage: int) -> Dict[str, int]:
    """Refund owed for one unit given what was paid for it."""
    return {currency: paid * refund_percentage // 100 for currency, paid in payment.items()}


def sum_amounts(amounts) -> Dict[str, int]:
    """Add up a sequence of per-currency amount dicts."""
    total: Dict[str, int] = {}
    for amount in amounts:
        for currency, value in amount.items():
            total[currency] = total.get(currency, 0) + value
    return total
