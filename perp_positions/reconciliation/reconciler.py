"""
Reconciliation of batched reads with the two overlay caches.

Per slot:
1. decode the raw record
2. an active updated-positions entry overrides size / collateral /
   average price / entry funding rate (event data is fresher than the read)
3. compute derived metrics
4. an active pending-positions entry whose expectation is not yet met
   flags the position as having pending changes
5. emit the position if size > 0 or it has pending changes, so a position
   that is being closed stays visible until the close is confirmed
"""
from dataclasses import replace
from typing import Mapping, Optional, Sequence

from perp_positions.constants import (
    PENDING_POSITION_VALID_SECONDS,
    UPDATED_POSITION_VALID_SECONDS,
    get_chain_spec,
)
from perp_positions.domain.models import (
    PendingPosition,
    Position,
    PositionQuery,
    PositionsResult,
    UpdatedPosition,
)
from perp_positions.domain.tokens import TokenRegistry
from perp_positions.monitoring.logger import get_logger
from perp_positions.positions.decoder import iter_decoded_positions
from perp_positions.positions.metrics import apply_position_metrics
from perp_positions.reconciliation.overlays import is_within_window

logger = get_logger(__name__)


def apply_updated_position(
    position: Position,
    updated_positions: Optional[Mapping[str, UpdatedPosition]],
    now: float,
    valid_seconds: float = UPDATED_POSITION_VALID_SECONDS,
) -> Position:
    """Overlay event-sourced fields onto a freshly decoded position."""
    if not updated_positions:
        return position
    updated = updated_positions.get(position.key)
    if updated is None or not is_within_window(updated.updated_at, valid_seconds, now):
        return position
    return replace(
        position,
        size=updated.size,
        collateral=updated.collateral,
        average_price=updated.average_price,
        entry_funding_rate=updated.entry_funding_rate,
    )


def apply_pending_changes(
    position: Position,
    pending_positions: Optional[Mapping[str, PendingPosition]],
    now: float,
    valid_seconds: float = PENDING_POSITION_VALID_SECONDS,
) -> Position:
    """Flag `position` when an active pending expectation has not been observed yet."""
    if not pending_positions:
        return position
    pending = pending_positions.get(position.key)
    if pending is None or pending.pending_changes is None:
        return position
    if not is_within_window(pending.updated_at, valid_seconds, now):
        return position

    changes = pending.pending_changes
    if changes.size is not None and position.size == changes.size:
        return position
    if changes.expecting_collateral_change and position.collateral != changes.collateral_snapshot:
        return position

    return replace(position, has_pending_changes=True, pending_changes=changes)


def get_positions(
    chain_id: int,
    query: PositionQuery,
    position_data: Optional[Sequence[int]],
    registry: TokenRegistry,
    *,
    now: float,
    include_delta: bool = False,
    show_pnl_after_fees: bool = False,
    account: Optional[str] = None,
    pending_positions: Optional[Mapping[str, PendingPosition]] = None,
    updated_positions: Optional[Mapping[str, UpdatedPosition]] = None,
    pending_valid_seconds: float = PENDING_POSITION_VALID_SECONDS,
    updated_valid_seconds: float = UPDATED_POSITION_VALID_SECONDS,
) -> PositionsResult:
    """
    Build the reconciled position snapshot.

    Args:
        chain_id: Chain the read was made on (selects the record width)
        query: Slot layout the read was made with
        position_data: Flat Reader.getPositions result, None while not loaded
        registry: Token registry snapshot with live prices and funding rates
        now: Monotonic timestamp used for overlay validity
        include_delta: Fold unrealized PnL into the leverage base
        show_pnl_after_fees: Show after-fee PnL in delta_str and net value
        account: Active account; contract keys are only computed when set
        pending_positions: Snapshot of the pending-positions overlay
        updated_positions: Snapshot of the updated-positions overlay

    Returns:
        PositionsResult with visible positions in slot order and a map
        holding every decoded slot
    """
    result = PositionsResult()
    if position_data is None:
        return result

    record_width = get_chain_spec(chain_id).position_reader_props_length
    pending_flagged = 0

    for _, position in iter_decoded_positions(query, position_data, registry, record_width, account):
        position = apply_updated_position(position, updated_positions, now, updated_valid_seconds)
        position = apply_position_metrics(position, show_pnl_after_fees, include_delta)
        position = apply_pending_changes(position, pending_positions, now, pending_valid_seconds)

        result.positions_map[position.key] = position
        if position.has_pending_changes:
            pending_flagged += 1
        if position.size > 0 or position.has_pending_changes:
            result.positions.append(position)

    logger.debug(
        "POSITIONS_RECOMPUTED",
        chain_id=chain_id,
        slots=len(query),
        visible=len(result.positions),
        pending=pending_flagged,
    )
    return result
