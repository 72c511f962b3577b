"""
Tests for raw position decoding.
"""
import pytest

from perp_positions.constants import ADDRESS_ZERO, USD_DECIMALS
from perp_positions.domain.keys import get_position_contract_key, get_position_key
from perp_positions.domain.models import RawPositionRecord
from perp_positions.exceptions import ValidationError
from perp_positions.positions.decoder import decode_positions, iter_decoded_positions

USD = 10 ** USD_DECIMALS
WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
WBTC = "0x2f2a2543B76A4166549F7aaB2e75Bef0aefC5B0f"
USDC = "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8"
ACCOUNT = "0x1111111111111111111111111111111111111111"


class TestRawPositionRecord:

    def test_from_sequence_reads_nine_fields_at_offset(self):
        values = [99] * 9 + [1, 2, 3, 4, 1, 6, 7, 0, 9]
        record = RawPositionRecord.from_sequence(values, 9)
        assert record.size == 1
        assert record.collateral == 2
        assert record.average_price == 3
        assert record.entry_funding_rate == 4
        assert record.has_realised_profit is True
        assert record.realised_pnl == 6
        assert record.last_increased_time == 7
        assert record.has_profit is False
        assert record.delta == 9


class TestDecodePositions:

    def test_not_loaded_returns_empty(self, query, registry, chain_spec):
        result = decode_positions(query, None, registry, chain_spec.position_reader_props_length)
        assert result.positions == []
        assert result.positions_map == {}

    def test_every_slot_decoded_in_order(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query))
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length)
        assert len(result.positions) == len(query)
        assert [p.is_long for p in result.positions] == list(query.is_long)

    def test_fields_and_metadata(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query), {
            3: dict(size=5000 * USD, collateral=500 * USD, average_price=29000 * USD,
                    entry_funding_rate=250, has_profit=0, delta=10 * USD, last_increased_time=1700000000),
        })
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length, ACCOUNT)
        key = get_position_key(USDC, WBTC, False)
        position = result.positions_map[key]

        assert position.size == 5000 * USD
        assert position.collateral == 500 * USD
        assert position.average_price == 29000 * USD
        assert position.entry_funding_rate == 250
        assert position.has_profit is False
        assert position.delta == 10 * USD
        assert position.last_increased_time == 1700000000
        assert position.collateral_token.symbol == "USDC"
        assert position.index_token.symbol == "BTC"
        # cumulative rate comes from the live collateral token, not the record
        assert position.cumulative_funding_rate == 300
        assert position.contract_key == get_position_contract_key(ACCOUNT, USDC, WBTC, False)

    def test_mark_price_long_uses_min_short_uses_max(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query))
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length)
        btc_long = result.positions_map[get_position_key(WBTC, WBTC, True)]
        btc_short = result.positions_map[get_position_key(USDC, WBTC, False)]
        assert btc_long.mark_price == 30000 * USD
        assert btc_short.mark_price == 30050 * USD

    def test_wrapped_native_slot_uses_native_token_info(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query))
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length)
        eth_long = result.positions_map[get_position_key(WETH, WETH, True)]
        assert eth_long.index_token.address == ADDRESS_ZERO
        assert eth_long.collateral_token.symbol == "ETH"

    def test_no_contract_key_without_account(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query))
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length)
        assert all(p.contract_key is None for p in result.positions)

    def test_decoding_is_idempotent(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query), {0: dict(size=100 * USD, collateral=10 * USD)})
        first = decode_positions(query, data, registry, chain_spec.position_reader_props_length, ACCOUNT)
        second = decode_positions(query, data, registry, chain_spec.position_reader_props_length, ACCOUNT)
        assert first == second

    def test_truncated_data_rejected(self, query, registry, chain_spec, build_position_data):
        data = build_position_data(len(query))[:-1]
        with pytest.raises(ValidationError):
            list(iter_decoded_positions(query, data, registry, chain_spec.position_reader_props_length))

    def test_slot_with_unknown_token_is_skipped(self, query, tokens, chain_spec, build_position_data):
        from perp_positions.domain.tokens import TokenRegistry

        registry = TokenRegistry([t for t in tokens if t.symbol != "USDT"], chain_spec.native_token_address)
        data = build_position_data(len(query))
        result = decode_positions(query, data, registry, chain_spec.position_reader_props_length)
        assert len(result.positions) == 4
