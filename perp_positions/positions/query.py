"""
Position query construction.

Slots are laid out as:
- one long slot per tradable (non-stable, non-wrapped) token, collateral ==
  index token, in token-list order;
- then one short slot per (stable token, tradable token) pair, outer loop
  over stable tokens.

The batched read returns records in exactly this order.
"""
from typing import Iterable, List

from perp_positions.constants import ADDRESS_ZERO
from perp_positions.domain.keys import get_position_key
from perp_positions.domain.models import PositionQuery, Token
from perp_positions.exceptions import InvariantError
from perp_positions.monitoring.logger import get_logger

logger = get_logger(__name__)


def _token_address(token: Token, native_token_address: str) -> str:
    if token.address.lower() == ADDRESS_ZERO:
        return native_token_address
    return token.address


def _is_index_token(token: Token) -> bool:
    return not token.is_stable and not token.is_wrapped


def build_position_query(tokens: Iterable[Token], native_token_address: str) -> PositionQuery:
    """Build the ordered PositionQuery for a whitelisted token set."""
    tokens = list(tokens)
    collateral_tokens: List[str] = []
    index_tokens: List[str] = []
    is_long: List[bool] = []

    for token in tokens:
        if not _is_index_token(token):
            continue
        address = _token_address(token, native_token_address)
        collateral_tokens.append(address)
        index_tokens.append(address)
        is_long.append(True)

    for stable_token in tokens:
        if not stable_token.is_stable:
            continue
        for token in tokens:
            if not _is_index_token(token):
                continue
            collateral_tokens.append(stable_token.address)
            index_tokens.append(_token_address(token, native_token_address))
            is_long.append(False)

    query = PositionQuery(tuple(collateral_tokens), tuple(index_tokens), tuple(is_long))

    seen = set()
    for collateral, index, long_ in query.slots():
        key = get_position_key(collateral, index, long_)
        if key in seen:
            raise InvariantError(f"Position query slots collide on key {key}")
        seen.add(key)

    logger.debug(
        "POSITION_QUERY_BUILT",
        slots=len(query),
        long_slots=sum(1 for long_ in query.is_long if long_),
    )
    return query
