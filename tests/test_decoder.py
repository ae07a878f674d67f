import json

import pytest
from chain_fakes import DECODER, make_log
from eth_abi import encode

from intent_indexer.chain.decoder import OrderEventDecoder
from intent_indexer.contracts import event_signature, event_topic, find_event_abi, load_abi
from intent_indexer.errors import LogDecodeError
from intent_indexer.model import OrderStatus, RawLog


def test_event_signature_matches_contract():
    event_abi = find_event_abi(load_abi())
    assert event_signature(event_abi) == "OrderStatusChanged(bytes32,uint8)"
    assert DECODER.topic0 == event_topic(event_abi)


def test_decodes_status_change():
    order_id = bytes.fromhex("aa" * 32)
    log = make_log(7, 2, status=OrderStatus.WAIT_FOR_SOLVER_TX, order_id=order_id)

    event = DECODER.decode(log)

    assert event.order_id == "0x" + "aa" * 32
    assert event.status == OrderStatus.WAIT_FOR_SOLVER_TX
    assert event.source_event is log
    assert event.block_number == 7
    assert event.retries == 0


def test_rejects_foreign_topic():
    log = make_log(1)
    foreign = RawLog(
        block_number=1,
        log_index=0,
        transaction_hash=log.transaction_hash,
        address=log.address,
        topics=(b"\x01" * 32, log.topics[1]),
        data=log.data,
    )

    assert not DECODER.matches(foreign)
    with pytest.raises(LogDecodeError):
        DECODER.decode(foreign)


def test_rejects_missing_indexed_topic():
    log = make_log(1)
    truncated = RawLog(
        block_number=1,
        log_index=0,
        transaction_hash=log.transaction_hash,
        address=log.address,
        topics=log.topics[:1],
        data=log.data,
    )

    with pytest.raises(LogDecodeError) as exc:
        DECODER.decode(truncated)
    assert "indexed topics" in str(exc.value)


def test_rejects_short_data():
    log = make_log(1)
    short = RawLog(
        block_number=1,
        log_index=0,
        transaction_hash=log.transaction_hash,
        address=log.address,
        topics=log.topics,
        data=b"\x01",
    )

    with pytest.raises(LogDecodeError):
        DECODER.decode(short)


def test_rejects_unknown_status():
    with pytest.raises(LogDecodeError) as exc:
        DECODER.decode(make_log(1, status=200))
    assert "Unknown order status value" in str(exc.value)


def test_custom_abi_from_artifact(tmp_path):
    artifact = {
        "abi": [
            {
                "type": "event",
                "name": "OrderStatusChanged",
                "anonymous": False,
                "inputs": [
                    {"name": "orderId", "type": "bytes32", "indexed": True},
                    {"name": "solver", "type": "address", "indexed": True},
                    {"name": "status", "type": "uint8", "indexed": False},
                ],
            }
        ]
    }
    path = tmp_path / "OrderEngine.json"
    path.write_text(json.dumps(artifact))

    decoder = OrderEventDecoder.from_abi_path(str(path))
    solver_topic = b"\x00" * 12 + b"\x22" * 20
    log = RawLog(
        block_number=3,
        log_index=0,
        transaction_hash="0x" + "00" * 32,
        address="0x" + "11" * 20,
        topics=(decoder.topic0, b"\x05" * 32, solver_topic),
        data=encode(["uint8"], [int(OrderStatus.COMPLETED)]),
    )

    event = decoder.decode(log)

    assert event.status == OrderStatus.COMPLETED
    assert event.order_id == "0x" + "05" * 32


def test_abi_without_required_inputs_is_rejected():
    event_abi = {
        "type": "event",
        "name": "OrderStatusChanged",
        "inputs": [{"name": "orderId", "type": "bytes32", "indexed": True}],
    }

    with pytest.raises(ValueError) as exc:
        OrderEventDecoder(event_abi)
    assert "status" in str(exc.value)


def test_missing_event_in_abi(tmp_path):
    path = tmp_path / "Empty.json"
    path.write_text("[]")

    with pytest.raises(ValueError) as exc:
        OrderEventDecoder.from_abi_path(str(path))
    assert "OrderStatusChanged not found" in str(exc.value)
