"""Display formatting for the presentation boundary.

Amounts are stored and computed as integer rupiah everywhere else.
"""

from __future__ import annotations


def format_rupiah(amount: int | None) -> str:
    """Format an integer amount as Indonesian rupiah, e.g. ``Rp 15.000``."""
    if amount is None:
        return "Rp 0"
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(int(amount)):,}".replace(",", ".")
    return f"{sign}Rp {grouped}"
