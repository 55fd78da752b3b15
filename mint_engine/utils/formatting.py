"""
Formatting utilities for display.
"""
from datetime import datetime
from typing import Dict, Optional

from tabulate import tabulate

from mint_engine.database.models import CostQuote, SegmentKind

SEGMENT_LABELS = {
    SegmentKind.SACRIFICE: "Sacrifice",
    SegmentKind.HOLDER_WL: "Holder + WL",
    SegmentKind.HOLDER: "Holder",
    SegmentKind.WHITELIST: "Whitelist",
    SegmentKind.FULL_PRICE: "Full price",
}


def format_amount(amount: int, decimals: int = 0) -> str:
    """Format an integer minor-unit amount for display."""
    if decimals <= 0:
        return f"{amount:,}"
    whole, fraction = divmod(abs(amount), 10 ** decimals)
    sign = "-" if amount < 0 else ""
    return f"{sign}{whole:,}.{fraction:0{decimals}d}"


def format_percentage(value: int) -> str:
    """Format whole-number percentage for display."""
    return f"{value}%"


def format_timestamp(dt: Optional[datetime]) -> str:
    """Format timestamp for display."""
    if not dt:
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_amounts(amounts: Dict[str, int], decimals: Optional[Dict[str, int]] = None) -> str:
    """Format a per-currency amount dict, e.g. "2,600 HBAR + 129 LAZY"."""
    decimals = decimals or {}
    return " + ".join(
        f"{format_amount(value, decimals.get(currency, 0))} {currency}"
        for currency, value in amounts.items()
    )


def format_quote_breakdown(quote: CostQuote, decimals: Optional[Dict[str, int]] = None) -> str:
    """Render a quote as a grid table, one row per priced segment plus a total.

    Args:
        quote: Quote to render
        decimals: Display decimals per currency (minor units shown as-is if absent)
    """
    decimals = decimals or {}
    currencies = list(quote.totals)

    data = []
    for segment in quote.segments:
        row = {
            "Source": SEGMENT_LABELS[segment.kind],
            "Holder Unit": f"{segment.collection_id} #{segment.unit_id}" if segment.collection_id else "",
            "Units": segment.units,
            "Discount": format_percentage(segment.discount_percent),
        }
        for currency in currencies:
            row[currency] = format_amount(segment.costs[currency], decimals.get(currency, 0))
        data.append(row)

    total_row = {
        "Source": "TOTAL",
        "Holder Unit": "",
        "Units": quote.quantity,
        "Discount": format_percentage(quote.blended_discount_percent),
    }
    for currency in currencies:
        total_row[currency] = format_amount(quote.totals[currency], decimals.get(currency, 0))
    data.append(total_row)

    table = tabulate(data, headers="keys", tablefmt="grid")
    summary = (
        f"Holder slots used: {quote.holder_slots_consumed} | "
        f"WL slots used: {quote.wl_slots_consumed}"
    )
    return f"{table}\n{summary}"
