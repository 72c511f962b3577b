"""
Fixed-point to display string conversion for PnL fields.

Amounts are truncated to the requested number of decimals, never rounded,
so a displayed profit never exceeds the exact one.
"""
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Optional, Tuple

from perp_positions.constants import USD_DECIMALS


def format_amount(
    amount: Optional[int],
    token_decimals: int,
    display_decimals: int,
    use_commas: bool = False,
    default_value: str = "...",
) -> str:
    """Render a fixed-point integer with `display_decimals` places."""
    if amount is None:
        return default_value
    with localcontext() as ctx:
        ctx.prec = 100
        value = Decimal(int(amount)).scaleb(-token_decimals)
        quantum = Decimal(1).scaleb(-display_decimals)
        value = value.quantize(quantum, rounding=ROUND_DOWN)
    if use_commas:
        return f"{value:,.{display_decimals}f}"
    return f"{value:.{display_decimals}f}"


def get_delta_str(delta: int, delta_percentage: int, has_profit: bool) -> Tuple[str, str]:
    """
    Return (delta_str, delta_percentage_str), e.g. ("+$1,234.56", "+12.34%").

    The sign is only shown for a non-zero delta; percentage is in basis points.
    """
    if delta > 0:
        sign = "+" if has_profit else "-"
    else:
        sign = ""
    delta_str = f"{sign}${format_amount(delta, USD_DECIMALS, 2, True)}"
    delta_percentage_str = f"{sign}{format_amount(delta_percentage, 2, 2)}%"
    return delta_str, delta_percentage_str
