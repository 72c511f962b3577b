"""
Pytest configuration and shared fixtures.

Token set mirrors an Arbitrum whitelist: native ETH (zero address), its
wrapped form, BTC and two stablecoins. Prices are 30-decimal fixed point.
"""
from typing import Callable, Dict, List, Sequence

import pytest

from perp_positions.config.config import Config
from perp_positions.constants import ADDRESS_ZERO, ARBITRUM, USD_DECIMALS, get_chain_spec
from perp_positions.domain.models import Token
from perp_positions.domain.tokens import TokenRegistry
from perp_positions.positions.query import build_position_query

USD = 10 ** USD_DECIMALS

WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
WBTC = "0x2f2a2543B76A4166549F7aaB2e75Bef0aefC5B0f"
USDC = "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8"
USDT = "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9"
ACCOUNT = "0x1111111111111111111111111111111111111111"
OTHER_ACCOUNT = "0x2222222222222222222222222222222222222222"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFeed:
    """In-memory EventFeed; `emit` delivers to every attached listener."""

    def __init__(self):
        self.listeners: List[Callable] = []

    def add_listener(self, callback) -> None:
        self.listeners.append(callback)

    def remove_listener(self, callback) -> None:
        self.listeners.remove(callback)

    def emit(self, name: str, tx_hash: str = "0xabc", **args) -> None:
        event = {"event": name, "args": args, "transactionHash": tx_hash}
        for listener in list(self.listeners):
            listener(event)


@pytest.fixture
def chain_spec():
    return get_chain_spec(ARBITRUM)


@pytest.fixture
def tokens() -> List[Token]:
    return [
        Token(
            address=ADDRESS_ZERO, symbol="ETH", decimals=18, is_native=True,
            min_price=2000 * USD, max_price=2010 * USD, cumulative_funding_rate=150,
        ),
        Token(
            address=WETH, symbol="WETH", decimals=18, is_wrapped=True,
            min_price=2000 * USD, max_price=2010 * USD, cumulative_funding_rate=150,
        ),
        Token(
            address=WBTC, symbol="BTC", decimals=8,
            min_price=30000 * USD, max_price=30050 * USD, cumulative_funding_rate=400,
        ),
        Token(
            address=USDC, symbol="USDC", decimals=6, is_stable=True,
            min_price=USD, max_price=USD, cumulative_funding_rate=300,
        ),
        Token(
            address=USDT, symbol="USDT", decimals=6, is_stable=True,
            min_price=USD, max_price=USD, cumulative_funding_rate=310,
        ),
    ]


@pytest.fixture
def registry(tokens, chain_spec) -> TokenRegistry:
    return TokenRegistry(tokens, chain_spec.native_token_address)


@pytest.fixture
def query(tokens, chain_spec):
    # slots: 0 ETH long, 1 BTC long, 2 USDC/ETH short, 3 USDC/BTC short,
    #        4 USDT/ETH short, 5 USDT/BTC short
    return build_position_query(tokens, chain_spec.native_token_address)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def config() -> Config:
    return Config()


def _record(
    size: int = 0,
    collateral: int = 0,
    average_price: int = 0,
    entry_funding_rate: int = 0,
    has_realised_profit: int = 0,
    realised_pnl: int = 0,
    last_increased_time: int = 0,
    has_profit: int = 0,
    delta: int = 0,
) -> List[int]:
    return [
        size, collateral, average_price, entry_funding_rate, has_realised_profit,
        realised_pnl, last_increased_time, has_profit, delta,
    ]


@pytest.fixture
def build_position_data(chain_spec) -> Callable[..., List[int]]:
    """Return a builder: build(slot_count, {slot: {field: value}}) -> flat array."""

    def build(slot_count: int, records: Dict[int, Dict[str, int]] = None) -> List[int]:
        records = records or {}
        data: List[int] = []
        for i in range(slot_count):
            values: Sequence[int] = _record(**records.get(i, {}))
            data.extend(values)
            data.extend([0] * (chain_spec.position_reader_props_length - len(values)))
        return data

    return build
