"""
Domain models for the position tracker.

All monetary and price values are unsigned fixed-point integers scaled by
10^USD_DECIMALS; funding rates are scaled by FUNDING_RATE_PRECISION.
Overlay timestamps are monotonic seconds.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple


class NotificationLevel(str, Enum):
    """Notification severity."""
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Token:
    """
    Token metadata plus live vault info (prices, funding).

    Supplied by the token registry; read-only to the core.
    """
    address: str
    symbol: str
    decimals: int
    is_stable: bool = False
    is_wrapped: bool = False
    is_native: bool = False
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    cumulative_funding_rate: Optional[int] = None


@dataclass(frozen=True)
class PositionQuery:
    """
    Three parallel sequences; index i defines one queryable position slot.

    Slot order is positional: the decoder maps raw record i back to slot i.
    """
    collateral_tokens: Tuple[str, ...] = ()
    index_tokens: Tuple[str, ...] = ()
    is_long: Tuple[bool, ...] = ()

    def __post_init__(self):
        lengths = {len(self.collateral_tokens), len(self.index_tokens), len(self.is_long)}
        if len(lengths) != 1:
            raise ValueError("PositionQuery sequences must have equal length")

    def __len__(self) -> int:
        return len(self.collateral_tokens)

    def slots(self) -> Iterator[Tuple[str, str, bool]]:
        """Yield (collateral_token, index_token, is_long) per slot, in order."""
        return zip(self.collateral_tokens, self.index_tokens, self.is_long)


@dataclass(frozen=True)
class RawPositionRecord:
    """One fixed-width slot of the batched Reader.getPositions result."""
    size: int
    collateral: int
    average_price: int
    entry_funding_rate: int
    has_realised_profit: bool
    realised_pnl: int
    last_increased_time: int  # unix seconds
    has_profit: bool
    delta: int

    @classmethod
    def from_sequence(cls, values: Sequence[int], offset: int) -> "RawPositionRecord":
        """Read the nine fields starting at `offset` of the flat result array."""
        return cls(
            size=int(values[offset]),
            collateral=int(values[offset + 1]),
            average_price=int(values[offset + 2]),
            entry_funding_rate=int(values[offset + 3]),
            has_realised_profit=int(values[offset + 4]) == 1,
            realised_pnl=int(values[offset + 5]),
            last_increased_time=int(values[offset + 6]),
            has_profit=int(values[offset + 7]) == 1,
            delta=int(values[offset + 8]),
        )


@dataclass(frozen=True)
class PendingChanges:
    """
    Expected post-transaction state registered on submission.

    `size` is the expected size once the transaction executes. When
    `expecting_collateral_change` is set, the change is considered observed
    as soon as collateral differs from `collateral_snapshot`.
    """
    size: Optional[int] = None
    expecting_collateral_change: bool = False
    collateral_snapshot: Optional[int] = None


@dataclass(frozen=True)
class PendingPosition:
    """Entry of the pending-positions overlay. An entry without changes is a cancel marker."""
    pending_changes: Optional[PendingChanges] = None
    updated_at: Optional[float] = None


@dataclass(frozen=True)
class UpdatedPosition:
    """Entry of the updated-positions overlay, written from a confirmed on-chain event."""
    size: int
    collateral: int
    average_price: int
    entry_funding_rate: int
    reserve_amount: int = 0
    realised_pnl: int = 0
    updated_at: Optional[float] = None


@dataclass(frozen=True)
class Position:
    """
    Decoded position with derived metrics.

    Metrics that cannot be computed (collateral <= 0, leverage base <= 0)
    are None.
    """
    # Identity
    key: str
    contract_key: Optional[str]
    collateral_token: Token
    index_token: Token
    is_long: bool

    # On-chain fields
    size: int
    collateral: int
    average_price: int
    entry_funding_rate: int
    cumulative_funding_rate: Optional[int]
    realised_pnl: int
    has_realised_profit: bool
    last_increased_time: int
    has_profit: bool
    delta: int
    mark_price: Optional[int]

    # Fees
    funding_fee: int = 0
    collateral_after_fee: int = 0
    closing_fee: int = 0
    position_fee: int = 0
    total_fees: int = 0

    # PnL
    pending_delta: int = 0
    delta_percentage: Optional[int] = None
    delta_str: Optional[str] = None
    delta_percentage_str: Optional[str] = None
    delta_before_fees_str: Optional[str] = None
    has_profit_after_fees: Optional[bool] = None
    pending_delta_after_fees: Optional[int] = None
    delta_percentage_after_fees: Optional[int] = None
    delta_after_fees_str: Optional[str] = None
    delta_after_fees_percentage_str: Optional[str] = None
    net_value: Optional[int] = None

    # Health
    leverage: Optional[int] = None  # basis points, 20000 == 2x
    has_low_collateral: bool = False

    # Overlay state
    has_pending_changes: bool = False
    pending_changes: Optional[PendingChanges] = None


@dataclass(frozen=True)
class Notification:
    """User-facing notification emitted by the event adapter."""
    level: NotificationLevel
    message: str
    dedup_id: str
    tx_hash: Optional[str] = None


@dataclass
class PositionsResult:
    """Reconciled output: ordered visible positions plus key -> Position for every slot."""
    positions: List[Position] = field(default_factory=list)
    positions_map: Dict[str, Position] = field(default_factory=dict)
