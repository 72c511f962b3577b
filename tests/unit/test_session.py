"""
Tests for the position session: batched reads, stale-read discard,
pending registration and feed-driven recomputation.
"""
import asyncio
from dataclasses import replace

import pytest

from perp_positions.constants import USD_DECIMALS
from perp_positions.domain.keys import get_position_contract_key, get_position_key
from perp_positions.events.adapter import UPDATE_POSITION
from perp_positions.exceptions import FeedError, OperationalError, ValidationError
from perp_positions.session import PositionsSession

USD = 10 ** USD_DECIMALS
WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
ACCOUNT = "0x1111111111111111111111111111111111111111"
OTHER_ACCOUNT = "0x2222222222222222222222222222222222222222"

ETH_LONG = get_position_key(WETH, WETH, True)
ETH_LONG_RECORD = {0: dict(size=10000 * USD, collateral=1000 * USD, average_price=2000 * USD, entry_funding_rate=100)}


@pytest.fixture
def session(config, tokens, fake_clock, fake_feed):
    return PositionsSession(
        config, tokens, account=ACCOUNT, feed_factory=lambda chain_spec: fake_feed, clock=fake_clock,
    )


@pytest.fixture
def data(query, build_position_data):
    return build_position_data(len(query), ETH_LONG_RECORD)


def static_fetch(data):
    async def fetch(query):
        return data
    return fetch


class TestRefresh:

    @pytest.mark.asyncio
    async def test_applies_read(self, session, data):
        assert session.positions == []
        assert await session.refresh(static_fetch(data)) is True
        assert [p.key for p in session.positions] == [ETH_LONG]
        assert session.positions[0].contract_key == get_position_contract_key(ACCOUNT, WETH, WETH, True)

    @pytest.mark.asyncio
    async def test_read_resolving_after_close_is_discarded(self, session, data):
        release = asyncio.Event()

        async def slow_fetch(query):
            await release.wait()
            return data

        task = asyncio.create_task(session.refresh(slow_fetch))
        await asyncio.sleep(0)
        session.close()
        release.set()

        assert await task is False
        assert session.positions == []

    @pytest.mark.asyncio
    async def test_read_resolving_after_account_change_is_discarded(self, session, data):
        release = asyncio.Event()

        async def slow_fetch(query):
            await release.wait()
            return data

        task = asyncio.create_task(session.refresh(slow_fetch))
        await asyncio.sleep(0)
        session.set_account(OTHER_ACCOUNT)
        release.set()

        assert await task is False
        assert session.positions == []

    @pytest.mark.asyncio
    async def test_fetch_failure_raised_as_operational_error(self, session):
        async def failing_fetch(query):
            raise ConnectionError("rpc down")

        with pytest.raises(OperationalError):
            await session.refresh(failing_fetch)

    @pytest.mark.asyncio
    async def test_not_loaded_read(self, session):
        assert await session.refresh(static_fetch(None)) is True
        assert session.positions == []
        assert session.positions_map == {}


    @pytest.mark.asyncio
    async def test_truncated_read_keeps_last_good_snapshot(self, session, data):
        assert await session.refresh(static_fetch(data)) is True

        assert await session.refresh(static_fetch(data[:5])) is False
        assert [p.key for p in session.positions] == [ETH_LONG]

        # later triggers still reconcile against the last good read
        session.register_pending_change(ETH_LONG, expected_size=15000 * USD)
        assert session.positions[0].has_pending_changes is True

    def test_invalid_data_rejected_without_replacing_read(self, session, data):
        session.apply_position_data(data)
        with pytest.raises(ValidationError):
            session.apply_position_data(data[:5])
        assert session.recompute().positions[0].key == ETH_LONG


class TestPendingRegistration:

    def test_register_flags_until_read_confirms(self, session, query, build_position_data, data, fake_clock):
        session.apply_position_data(data)
        session.register_pending_change(ETH_LONG, expected_size=15000 * USD)
        assert session.positions[0].has_pending_changes is True

        records = {0: dict(ETH_LONG_RECORD[0], size=15000 * USD)}
        session.apply_position_data(build_position_data(len(query), records))
        assert session.positions[0].has_pending_changes is False

    def test_pending_expires(self, session, data, fake_clock):
        session.apply_position_data(data)
        session.register_pending_change(ETH_LONG, expected_size=15000 * USD)
        fake_clock.advance(600)
        session.recompute()
        assert session.positions[0].has_pending_changes is False
        assert session.prune_overlays() == 1

    def test_collateral_expectation(self, session, data):
        session.apply_position_data(data)
        session.register_pending_change(ETH_LONG, expected_collateral_snapshot=1000 * USD)
        assert session.positions[0].has_pending_changes is True
        assert session.positions[0].pending_changes.expecting_collateral_change is True


class TestLiveFeed:

    def test_subscribed_when_account_known(self, session, fake_feed):
        assert session.adapter is not None
        assert session.adapter.active
        assert len(fake_feed.listeners) == 1

    def test_no_feed_without_account(self, config, tokens, fake_feed):
        session = PositionsSession(config, tokens, feed_factory=lambda chain_spec: fake_feed)
        assert session.adapter is None
        assert fake_feed.listeners == []

    def test_feed_factory_failure_raises_feed_error(self, config, tokens):
        def broken_factory(chain_spec):
            raise ConnectionError("ws refused")

        with pytest.raises(FeedError):
            PositionsSession(config, tokens, account=ACCOUNT, feed_factory=broken_factory)

    def test_unavailable_feed_leaves_session_usable(self, config, tokens, data):
        session = PositionsSession(config, tokens, account=ACCOUNT, feed_factory=lambda chain_spec: None)
        assert session.adapter is None
        session.apply_position_data(data)
        assert len(session.positions) == 1

    def test_update_event_recomputes(self, session, data, fake_feed):
        session.apply_position_data(data)
        contract_key = get_position_contract_key(ACCOUNT, WETH, WETH, True)
        fake_feed.emit(
            UPDATE_POSITION,
            key=contract_key, size=20000 * USD, collateral=2000 * USD,
            averagePrice=2000 * USD, entryFundingRate=100,
        )
        assert session.positions[0].size == 20000 * USD

    def test_close_stops_feed_writes(self, session, data, fake_feed):
        session.apply_position_data(data)
        session.close()
        assert session.closed
        assert fake_feed.listeners == []
        assert len(session.updated_positions) == 0

    def test_account_change_resubscribes_and_clears_overlays(self, session, data, fake_feed):
        session.apply_position_data(data)
        session.register_pending_change(ETH_LONG, expected_size=0)
        session.set_account(OTHER_ACCOUNT)

        assert len(session.pending_positions) == 0
        assert len(fake_feed.listeners) == 1
        assert session.adapter.account == OTHER_ACCOUNT
        assert session.positions == []


class TestTokenUpdates:

    def test_price_refresh_keeps_read(self, session, tokens, data):
        session.apply_position_data(data)
        generation = session.generation

        repriced = [
            replace(t, min_price=2200 * USD, max_price=2210 * USD) if t.symbol in ("ETH", "WETH") else t
            for t in tokens
        ]
        session.set_tokens(repriced)

        assert session.generation == generation
        assert session.positions[0].mark_price == 2200 * USD

    def test_layout_change_invalidates_read(self, session, tokens, data):
        session.apply_position_data(data)
        generation = session.generation

        session.set_tokens([t for t in tokens if t.symbol != "USDT"])

        assert session.generation == generation + 1
        assert session.positions == []
        assert len(session.query) == 4
