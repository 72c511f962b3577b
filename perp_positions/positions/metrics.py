"""
Derived position metrics.

Reproduces the vault's fixed-point arithmetic on the client side: funding
fee, margin fees, pending PnL before and after fees, net value, leverage
and the low-collateral flag. All divisions truncate toward zero like the
EVM's integer division.

Order of computation per position:

    funding fee -> fees -> (collateral > 0 only) low-collateral flag
    -> pending delta -> before/after-fee PnL -> net value
    -> leverage
"""
from dataclasses import replace
from typing import Optional, Tuple

from perp_positions.constants import (
    BASIS_POINTS_DIVISOR,
    FUNDING_RATE_PRECISION,
    MARGIN_FEE_BASIS_POINTS,
    MAX_LEVERAGE_BEFORE_LOW_COLLATERAL,
)
from perp_positions.domain.models import Position
from perp_positions.positions.formatting import get_delta_str


def trunc_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero (Solidity semantics)."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def get_funding_fee(
    size: int,
    entry_funding_rate: Optional[int],
    cumulative_funding_rate: Optional[int],
) -> Optional[int]:
    """Funding accrued since entry, or None when either rate is unknown."""
    if entry_funding_rate is None or cumulative_funding_rate is None:
        return None
    return trunc_div(size * (cumulative_funding_rate - entry_funding_rate), FUNDING_RATE_PRECISION)


def get_margin_fee(size: int) -> int:
    return trunc_div(size * MARGIN_FEE_BASIS_POINTS, BASIS_POINTS_DIVISOR)


def get_pnl_after_fees(has_profit: bool, pending_delta: int, total_fees: int) -> Tuple[bool, int]:
    """
    Net PnL once fees are charged, as (has_profit_after_fees, magnitude).

    A profit larger than the fees stays a profit; a profit that does not
    cover the fees flips into a loss of (fees - profit); a loss always grows
    by the full fees.
    """
    if has_profit:
        if pending_delta > total_fees:
            return True, pending_delta - total_fees
        return False, total_fees - pending_delta
    return False, pending_delta + total_fees


def get_leverage(
    size: Optional[int],
    collateral: Optional[int],
    *,
    size_delta: Optional[int] = None,
    increase_size: bool = False,
    collateral_delta: Optional[int] = None,
    increase_collateral: bool = False,
    entry_funding_rate: Optional[int] = None,
    cumulative_funding_rate: Optional[int] = None,
    has_profit: bool = False,
    delta: Optional[int] = None,
    include_delta: bool = False,
) -> Optional[int]:
    """
    Leverage in basis points, or None when it cannot be computed.

    `include_delta` folds the unrealized PnL into the collateral base; a
    pending size or collateral change also charges the margin fee on the base.
    """
    if size is None and size_delta is None:
        return None
    if collateral is None and collateral_delta is None:
        return None

    current_size = size or 0
    next_size = current_size
    if size_delta is not None:
        if increase_size:
            next_size = current_size + size_delta
        else:
            if size_delta >= current_size:
                return None
            next_size = current_size - size_delta

    current_collateral = collateral or 0
    remaining_collateral = current_collateral
    if collateral_delta is not None:
        if increase_collateral:
            remaining_collateral = current_collateral + collateral_delta
        else:
            if collateral_delta >= current_collateral:
                return None
            remaining_collateral = current_collateral - collateral_delta

    if delta is not None and include_delta:
        if has_profit:
            remaining_collateral += delta
        else:
            if delta > remaining_collateral:
                return None
            remaining_collateral -= delta

    if remaining_collateral == 0:
        return None

    if size_delta is not None:
        remaining_collateral = trunc_div(
            remaining_collateral * (BASIS_POINTS_DIVISOR - MARGIN_FEE_BASIS_POINTS),
            BASIS_POINTS_DIVISOR,
        )

    funding_fee = get_funding_fee(current_size, entry_funding_rate, cumulative_funding_rate)
    if funding_fee is not None:
        remaining_collateral -= funding_fee

    if remaining_collateral <= 0:
        return None
    return trunc_div(next_size * BASIS_POINTS_DIVISOR, remaining_collateral)


def has_low_collateral(size: int, collateral_after_fee: int) -> bool:
    if collateral_after_fee < 0:
        return True
    if collateral_after_fee == 0:
        return size > 0
    return size // collateral_after_fee > MAX_LEVERAGE_BEFORE_LOW_COLLATERAL


def get_pending_delta(position: Position) -> int:
    """Trust the on-chain delta unless it is zero, then recompute from the mark price."""
    if position.delta != 0 or not position.average_price or position.mark_price is None:
        return position.delta
    price_delta = abs(position.average_price - position.mark_price)
    return trunc_div(position.size * price_delta, position.average_price)


def apply_position_metrics(
    position: Position,
    show_pnl_after_fees: bool = False,
    include_delta: bool = False,
) -> Position:
    """
    Return a copy of `position` with every derived field filled in.

    `show_pnl_after_fees` selects which variant lands in delta_str /
    delta_percentage_str and whether net value is reduced by the closing fee;
    both variants are always computed. `include_delta` is the leverage
    display convention.
    """
    funding_fee = get_funding_fee(
        position.size, position.entry_funding_rate, position.cumulative_funding_rate
    ) or 0
    closing_fee = get_margin_fee(position.size)
    position_fee = closing_fee * 2  # open + close
    total_fees = position_fee + funding_fee

    fields = dict(
        funding_fee=funding_fee,
        collateral_after_fee=position.collateral - funding_fee,
        closing_fee=closing_fee,
        position_fee=position_fee,
        total_fees=total_fees,
        pending_delta=position.delta,
    )

    if position.collateral > 0:
        collateral = position.collateral
        pending_delta = get_pending_delta(position)
        delta_percentage = trunc_div(pending_delta * BASIS_POINTS_DIVISOR, collateral)
        delta_str, delta_percentage_str = get_delta_str(pending_delta, delta_percentage, position.has_profit)

        has_profit_after_fees, pending_delta_after_fees = get_pnl_after_fees(
            position.has_profit, pending_delta, total_fees
        )
        delta_percentage_after_fees = trunc_div(pending_delta_after_fees * BASIS_POINTS_DIVISOR, collateral)
        delta_after_fees_str, delta_after_fees_percentage_str = get_delta_str(
            pending_delta_after_fees, delta_percentage_after_fees, has_profit_after_fees
        )

        if position.has_profit:
            net_value = collateral + pending_delta
        else:
            net_value = collateral - pending_delta
        net_value -= funding_fee
        if show_pnl_after_fees:
            net_value -= closing_fee

        fields.update(
            has_low_collateral=has_low_collateral(position.size, fields["collateral_after_fee"]),
            pending_delta=pending_delta,
            delta_percentage=delta_percentage,
            delta_str=delta_after_fees_str if show_pnl_after_fees else delta_str,
            delta_percentage_str=(
                delta_after_fees_percentage_str if show_pnl_after_fees else delta_percentage_str
            ),
            delta_before_fees_str=delta_str,
            has_profit_after_fees=has_profit_after_fees,
            pending_delta_after_fees=pending_delta_after_fees,
            delta_percentage_after_fees=delta_percentage_after_fees,
            delta_after_fees_str=delta_after_fees_str,
            delta_after_fees_percentage_str=delta_after_fees_percentage_str,
            net_value=net_value,
        )

    # Leverage uses the on-chain delta, not the recomputed pending delta.
    fields["leverage"] = get_leverage(
        position.size,
        position.collateral,
        entry_funding_rate=position.entry_funding_rate,
        cumulative_funding_rate=position.cumulative_funding_rate,
        has_profit=position.has_profit,
        delta=position.delta,
        include_delta=include_delta,
    )

    return replace(position, **fields)
