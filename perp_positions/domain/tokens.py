"""
Read-only view over a token registry snapshot.

The registry lists the native token under ADDRESS_ZERO while on-chain
queries use the wrapped native address; `get_token_info` bridges the two
so positions keyed by the wrapped address pick up the native token's
live prices.
"""
from typing import Dict, Iterable, List, Optional

from perp_positions.constants import ADDRESS_ZERO
from perp_positions.domain.models import Token


class TokenRegistry:
    """Case-insensitive token lookup for one registry snapshot."""

    def __init__(self, tokens: Iterable[Token], native_token_address: str):
        self._tokens: List[Token] = list(tokens)
        self._by_address: Dict[str, Token] = {t.address.lower(): t for t in self._tokens}
        self.native_token_address = native_token_address

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self):
        return iter(self._tokens)

    def whitelisted(self) -> List[Token]:
        return list(self._tokens)

    def get(self, address: str) -> Optional[Token]:
        return self._by_address.get(address.lower())

    def get_token_info(self, address: str, replace_native: bool = True) -> Optional[Token]:
        """Token metadata for `address`, mapping the wrapped native token to the native entry."""
        if replace_native and address.lower() == self.native_token_address.lower():
            native = self._by_address.get(ADDRESS_ZERO)
            if native is not None:
                return native
        return self.get(address)

    def display_symbol(self, address: str, native_token_symbol: str) -> str:
        token = self.get(address)
        if token is None:
            return address
        if token.is_wrapped:
            return native_token_symbol
        return token.symbol
