"""
Raw position decoding.

Maps the flat numeric array returned by Reader.getPositions (one
fixed-width record per query slot) onto Position entities with token
metadata, live cumulative funding rate and mark price attached. No
derived metrics are computed here.
"""
from typing import Iterator, Optional, Sequence, Tuple

from perp_positions.domain.keys import get_position_contract_key, get_position_key
from perp_positions.domain.models import Position, PositionQuery, PositionsResult, RawPositionRecord
from perp_positions.domain.tokens import TokenRegistry
from perp_positions.exceptions import ValidationError
from perp_positions.monitoring.logger import get_logger

logger = get_logger(__name__)


def decode_position(
    query: PositionQuery,
    index: int,
    record: RawPositionRecord,
    registry: TokenRegistry,
    account: Optional[str] = None,
) -> Optional[Position]:
    """Decode slot `index`; None when its tokens are missing from the registry."""
    collateral_address = query.collateral_tokens[index]
    index_address = query.index_tokens[index]
    is_long = query.is_long[index]

    collateral_token = registry.get_token_info(collateral_address)
    index_token = registry.get_token_info(index_address)
    if collateral_token is None or index_token is None:
        logger.warning(
            "POSITION_SLOT_UNKNOWN_TOKEN",
            slot=index,
            collateral_token=collateral_address,
            index_token=index_address,
        )
        return None

    contract_key = None
    if account:
        contract_key = get_position_contract_key(account, collateral_address, index_address, is_long)

    return Position(
        key=get_position_key(collateral_address, index_address, is_long),
        contract_key=contract_key,
        collateral_token=collateral_token,
        index_token=index_token,
        is_long=is_long,
        size=record.size,
        collateral=record.collateral,
        average_price=record.average_price,
        entry_funding_rate=record.entry_funding_rate,
        # always the latest value from the token, never the record snapshot
        cumulative_funding_rate=collateral_token.cumulative_funding_rate,
        realised_pnl=record.realised_pnl,
        has_realised_profit=record.has_realised_profit,
        last_increased_time=record.last_increased_time,
        has_profit=record.has_profit,
        delta=record.delta,
        mark_price=index_token.min_price if is_long else index_token.max_price,
    )


def iter_decoded_positions(
    query: PositionQuery,
    position_data: Optional[Sequence[int]],
    registry: TokenRegistry,
    record_width: int,
    account: Optional[str] = None,
) -> Iterator[Tuple[int, Position]]:
    """
    Yield (slot index, Position) for every decodable slot.

    Yields nothing while `position_data` is None (not loaded yet).
    """
    if position_data is None:
        return
    expected = len(query) * record_width
    if len(position_data) < expected:
        raise ValidationError(
            f"Position data has {len(position_data)} values, expected {expected} "
            f"({len(query)} slots x {record_width})"
        )
    for i in range(len(query)):
        record = RawPositionRecord.from_sequence(position_data, i * record_width)
        position = decode_position(query, i, record, registry, account)
        if position is not None:
            yield i, position


def decode_positions(
    query: PositionQuery,
    position_data: Optional[Sequence[int]],
    registry: TokenRegistry,
    record_width: int,
    account: Optional[str] = None,
) -> PositionsResult:
    """Decode every slot into an ordered list and a key -> Position map, without metrics."""
    result = PositionsResult()
    for _, position in iter_decoded_positions(query, position_data, registry, record_width, account):
        result.positions.append(position)
        result.positions_map[position.key] = position
    return result
