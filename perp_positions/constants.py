"""
Protocol-wide constants for the position tracker.

Centralizes fixed-point scales, fee parameters, overlay validity windows
and per-chain contract metadata.
"""
from dataclasses import dataclass
from typing import Dict

from perp_positions.exceptions import ValidationError

# Fixed-point scales
USD_DECIMALS = 30
BASIS_POINTS_DIVISOR = 10000
FUNDING_RATE_PRECISION = 1000000

# Fees
MARGIN_FEE_BASIS_POINTS = 10  # 0.1% charged on open and on close

# Margin health
MAX_LEVERAGE_BEFORE_LOW_COLLATERAL = 50  # raw size / fee-adjusted collateral

# Overlay validity windows (seconds)
PENDING_POSITION_VALID_SECONDS = 600
UPDATED_POSITION_VALID_SECONDS = 60

# Placeholder address used by the token list for the chain's native token
ADDRESS_ZERO = "0x0000000000000000000000000000000000000000"

# Chains
ARBITRUM = 42161
AVALANCHE = 43114


@dataclass(frozen=True)
class ChainSpec:
    """Static per-chain metadata needed to build and decode position reads."""
    chain_id: int
    name: str
    native_token_address: str  # wrapped native token used on-chain
    native_token_symbol: str
    default_collateral_symbol: str
    position_reader_props_length: int = 9  # fields per slot in Reader.getPositions


CHAINS: Dict[int, ChainSpec] = {
    ARBITRUM: ChainSpec(
        chain_id=ARBITRUM,
        name="arbitrum",
        native_token_address="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        native_token_symbol="ETH",
        default_collateral_symbol="USDC",
    ),
    AVALANCHE: ChainSpec(
        chain_id=AVALANCHE,
        name="avalanche",
        native_token_address="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
        native_token_symbol="AVAX",
        default_collateral_symbol="USDC",
    ),
}


def get_chain_spec(chain_id: int) -> ChainSpec:
    """Return the ChainSpec for a supported chain id."""
    spec = CHAINS.get(chain_id)
    if spec is None:
        raise ValidationError(
            f"Unsupported chain id: {chain_id}. Available: {sorted(CHAINS.keys())}"
        )
    return spec
