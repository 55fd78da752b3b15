"""Mint pricing: waterfall cost calculation and payment arithmetic."""
from .waterfall import calculate_mint_cost, check_batch_limits, expand_serial_groups
from .payments import calculate_burn_split, per_unit_payment, calculate_refund, sum_amounts

__all__ = [
    "calculate_mint_cost",
    "check_batch_limits",
    "expand_serial_groups",
    "calculate_burn_split",
    "per_unit_payment",
    "calculate_refund",
    "sum_amounts",
]
