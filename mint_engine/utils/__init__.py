"""Utility modules for the mint engine."""
from .formatting import (
    format_amount,
    format_amounts,
    format_percentage,
    format_timestamp,
    format_quote_breakdown,
)
from .validation import is_valid_entity_id, is_valid_serial

__all__ = [
    "format_amount",
    "format_amounts",
    "format_percentage",
    "format_timestamp",
    "format_quote_breakdown",
    "is_valid_entity_id",
    "is_valid_serial",
]
