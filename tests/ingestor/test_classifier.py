"""Tests for flow classification."""

from __future__ import annotations

import itertools

import pytest

from whale_sentiment_tracker.errors import MalformedRecordError
from whale_sentiment_tracker.ingestor.classifier import (
    classify,
    classify_batch,
    derive_flow_type,
)
from whale_sentiment_tracker.ingestor.models import FlowType, OwnerType

NON_EXCHANGE = (OwnerType.WALLET, OwnerType.UNKNOWN, OwnerType.OTHER)


class TestDeriveFlowType:
    @pytest.mark.parametrize("other", NON_EXCHANGE)
    def test_into_exchange_is_inflow(self, other: OwnerType) -> None:
        assert derive_flow_type(other, OwnerType.EXCHANGE) is FlowType.INFLOW

    @pytest.mark.parametrize("other", NON_EXCHANGE)
    def test_out_of_exchange_is_outflow(self, other: OwnerType) -> None:
        assert derive_flow_type(OwnerType.EXCHANGE, other) is FlowType.OUTFLOW

    def test_exchange_to_exchange(self) -> None:
        assert derive_flow_type(OwnerType.EXCHANGE, OwnerType.EXCHANGE) is FlowType.EXCHANGE

    @pytest.mark.parametrize(
        ("from_type", "to_type"),
        list(itertools.product((OwnerType.WALLET, OwnerType.UNKNOWN), repeat=2)),
    )
    def test_private_pairs_are_internal(self, from_type: OwnerType, to_type: OwnerType) -> None:
        flow = derive_flow_type(from_type, to_type)
        assert flow is FlowType.INTERNAL
        assert not flow.is_directional

    @pytest.mark.parametrize("other", list(OwnerType))
    def test_defi_endpoint_wins(self, other: OwnerType) -> None:
        assert derive_flow_type(OwnerType.DEFI, other) is FlowType.DEFI
        assert derive_flow_type(other, OwnerType.DEFI) is FlowType.DEFI

    def test_same_address_is_internal_even_for_exchange(self) -> None:
        flow = derive_flow_type(
            OwnerType.WALLET,
            OwnerType.EXCHANGE,
            from_address="0xABC",
            to_address="0xabc",
        )
        assert flow is FlowType.INTERNAL

    def test_other_to_other_is_internal(self) -> None:
        assert derive_flow_type(OwnerType.OTHER, OwnerType.OTHER) is FlowType.INTERNAL

    def test_directional_only_with_exactly_one_exchange(self) -> None:
        for from_type, to_type in itertools.product(OwnerType, repeat=2):
            flow = derive_flow_type(from_type, to_type)
            if flow.is_directional:
                assert (from_type is OwnerType.EXCHANGE) != (to_type is OwnerType.EXCHANGE)


class TestClassify:
    def test_nested_record(self, raw_transfer: dict) -> None:
        event = classify(raw_transfer)

        assert event.id == "2456789123"
        assert event.symbol == "BTC"
        assert event.blockchain == "bitcoin"
        assert event.from_owner_type is OwnerType.UNKNOWN
        assert event.to_owner_type is OwnerType.EXCHANGE
        assert event.to_owner == "binance"
        assert event.flow_type is FlowType.INFLOW
        assert event.tier == 4

    def test_flat_record_with_label_inference(self) -> None:
        event = classify(
            {
                "id": "t1",
                "timestamp": 1_700_000_000_000,  # milliseconds
                "symbol": " eth ",
                "amount_usd": "15000000",
                "from_owner": "Coinbase Custody",
                "to_owner": "unknown wallet",
            }
        )
        assert event.timestamp == 1_700_000_000
        assert event.symbol == "ETH"
        assert event.amount_usd == 15_000_000.0
        assert event.from_owner_type is OwnerType.EXCHANGE
        assert event.to_owner_type is OwnerType.UNKNOWN
        assert event.flow_type is FlowType.OUTFLOW

    def test_contract_owner_type_maps_to_defi(self) -> None:
        event = classify(
            {
                "id": "t2",
                "timestamp": 1_700_000_000,
                "symbol": "USDT",
                "amount_usd": 50_000_000,
                "from_owner_type": "smart_contract",
                "to_owner": "Binance",
            }
        )
        assert event.from_owner_type is OwnerType.DEFI
        assert event.flow_type is FlowType.DEFI

    def test_unrecognized_label_is_never_exchange(self) -> None:
        event = classify(
            {
                "id": "t3",
                "timestamp": 1_700_000_000,
                "symbol": "BTC",
                "amount_usd": 50_000_000,
                "from_owner": "Some Fund LP",
                "to_owner": None,
            }
        )
        assert event.from_owner_type is OwnerType.OTHER
        assert event.flow_type is FlowType.INTERNAL

    def test_missing_owner_data_does_not_fail(self) -> None:
        event = classify(
            {"id": "t4", "timestamp": 1_700_000_000, "symbol": "XRP", "amount_usd": 1}
        )
        assert event.from_owner_type is OwnerType.UNKNOWN
        assert event.to_owner_type is OwnerType.UNKNOWN
        assert event.flow_type is FlowType.INTERNAL

    def test_amounts_list_fallback(self) -> None:
        event = classify(
            {
                "id": "t5",
                "timestamp": 1_700_000_000,
                "amounts": [{"symbol": "sol", "value_usd": 12_500_000}],
            }
        )
        assert event.symbol == "SOL"
        assert event.amount_usd == 12_500_000

    @pytest.mark.parametrize(
        "record",
        [
            {"timestamp": 1, "symbol": "BTC", "amount_usd": 1},
            {"id": "x", "symbol": "BTC", "amount_usd": 1},
            {"id": "x", "timestamp": 1, "amount_usd": 1},
            {"id": "x", "timestamp": 1, "symbol": "BTC"},
            {"id": "x", "timestamp": 1, "symbol": "BTC", "amount_usd": -5},
            {"id": "x", "timestamp": 1, "symbol": "BTC", "amount_usd": float("nan")},
            {"id": "x", "timestamp": 1, "symbol": "BTC", "amount_usd": "lots"},
        ],
    )
    def test_malformed_records_raise(self, record: dict) -> None:
        with pytest.raises(MalformedRecordError):
            classify(record)


class TestClassifyBatch:
    def test_drops_and_counts_malformed(self, raw_transfer: dict) -> None:
        batch = classify_batch([raw_transfer, {"id": "bad"}, {"symbol": "BTC"}])

        assert len(batch.events) == 1
        assert batch.dropped == 2
        assert batch.total == 3

    def test_empty_batch(self) -> None:
        batch = classify_batch([])
        assert batch.events == []
        assert batch.dropped == 0
