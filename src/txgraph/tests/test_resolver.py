import asyncio

import pytest
from sqlalchemy import func, select

from src.txgraph.database import InputRecord
from src.txgraph.exceptions import FetchError, MappingError, PersistenceFailure, UnresolvedReferenceError
from src.txgraph.importer.resolver import TransactionResolver, same_links
from src.txgraph.models import InputRef, OutputRef, TransactionOutput
from conftest import coinbase_vin, count_transactions, pay, raw_tx, spend_vin


@pytest.fixture
def resolver(node, store, status):
    return TransactionResolver(node, store, status=status)


@pytest.mark.asyncio
async def test_resolving_twice_fetches_once(node, store, resolver):
    node.add(raw_tx("cb1", [coinbase_vin()], [pay(0, "50", "1Miner")]))

    first = await resolver.resolve("cb1")
    second = await resolver.resolve("cb1")

    assert first.tx_id == second.tx_id == "cb1"
    assert node.calls == ["cb1"]
    assert await count_transactions(store, "cb1") == 1


@pytest.mark.asyncio
async def test_coinbase_adds_deposits_only(node, store, resolver):
    node.add(raw_tx("cb1", [coinbase_vin()], [pay(0, "50", "1Miner"), pay(1, "0")]))

    tx = await resolver.resolve("cb1")

    assert tx.inputs[0].spent_output is None
    miner = await store.find_address("1Miner")
    assert miner.deposits == {OutputRef("cb1", 0)}
    assert miner.withdrawals == set()


@pytest.mark.asyncio
async def test_deposit_linkage_for_every_address(node, store, resolver):
    node.add(raw_tx("cb1", [coinbase_vin()], [pay(0, "50", "1Alice", "1Bob")]))

    await resolver.resolve("cb1")

    for address in ("1Alice", "1Bob"):
        assert OutputRef("cb1", 0) in (await store.find_address(address)).deposits


@pytest.mark.asyncio
async def test_unresolved_reference_then_success(node, store, status, resolver):
    node.add(raw_tx("origin1", [coinbase_vin()], [pay(0, "50", "1Origin")]))
    node.add(raw_tx("abc123", [spend_vin("origin1", 0)], [pay(0, "49.9", "1Dest")]))

    with pytest.raises(UnresolvedReferenceError) as exc_info:
        await resolver.resolve("abc123")
    assert exc_info.value.ref_tx_id == "origin1"
    assert exc_info.value.ref_vout == 0
    assert exc_info.value.transaction_missing
    assert await store.find_transaction_by_tx_id("abc123") is None
    assert "abc123" in status.last_error

    await resolver.resolve("origin1")
    tx = await resolver.resolve("abc123")

    assert tx.inputs[0].spent_output == OutputRef("origin1", 0)
    origin = await store.find_address("1Origin")
    assert origin.withdrawals == {InputRef("abc123", 0)}
    assert origin.deposits == {OutputRef("origin1", 0)}
    assert (await store.find_address("1Dest")).deposits == {OutputRef("abc123", 0)}


@pytest.mark.asyncio
async def test_missing_output_index_is_unresolved(node, store, resolver):
    node.add(raw_tx("origin1", [coinbase_vin()], [pay(0, "50", "1Origin")]))
    node.add(raw_tx("tx1", [spend_vin("origin1", 5)], [pay(0, "1", "1Dest")]))
    await resolver.resolve("origin1")

    with pytest.raises(UnresolvedReferenceError) as exc_info:
        await resolver.resolve("tx1")
    assert not exc_info.value.transaction_missing


@pytest.mark.asyncio
async def test_no_partial_commit(node, store, resolver):
    node.add(raw_tx("origin1", [coinbase_vin()], [pay(0, "50", "1Origin")]))
    node.add(raw_tx("tx2", [spend_vin("origin1", 0), spend_vin("missing", 0)], [pay(0, "1", "1Tx2Dest")]))
    await resolver.resolve("origin1")

    with pytest.raises(UnresolvedReferenceError):
        await resolver.resolve("tx2")

    assert await count_transactions(store, "tx2") == 0
    async with store.session_manager.session() as session:
        result = await session.execute(
            select(func.count()).select_from(InputRecord).where(InputRecord.ref_tx_id == "missing")
        )
        assert result.scalar() == 0
    assert (await store.find_address("1Origin")).withdrawals == set()
    assert await store.find_address("1Tx2Dest") is None


@pytest.mark.asyncio
async def test_fetch_error_persists_nothing(node, store, status, resolver):
    node.errors["bad1"] = "Work queue depth exceeded"

    with pytest.raises(FetchError) as exc_info:
        await resolver.resolve("bad1")

    assert exc_info.value.error == "Work queue depth exceeded"
    assert await count_transactions(store, "bad1") == 0
    assert len(status.recent_errors()) == 1


@pytest.mark.asyncio
async def test_malformed_payload(node, store, resolver):
    node.transactions["bad2"] = {"txid": "bad2", "vin": "nope", "vout": []}

    with pytest.raises(MappingError):
        await resolver.resolve("bad2")
    assert await count_transactions(store, "bad2") == 0


@pytest.mark.asyncio
async def test_store_failure_is_a_persistence_failure(node, store, resolver):
    node.add(raw_tx("cb1", [coinbase_vin()], [pay(0, "50", "1Miner")]))
    await store.close()

    with pytest.raises(PersistenceFailure):
        await resolver.resolve("cb1")


@pytest.mark.asyncio
async def test_concurrent_resolutions_persist_once(node, store, status):
    node.add(raw_tx("origin1", [coinbase_vin()], [pay(0, "50", "1Origin")]))
    node.add(raw_tx("race1", [spend_vin("origin1", 0)], [pay(0, "49", "1Dest")]))
    await TransactionResolver(node, store, status=status).resolve("origin1")

    node.hold_until(2)
    first = TransactionResolver(node, store, status=status)
    second = TransactionResolver(node, store, status=status)
    results = await asyncio.gather(first.resolve("race1"), second.resolve("race1"))

    assert [tx.tx_id for tx in results] == ["race1", "race1"]
    assert node.calls.count("race1") == 2
    assert await count_transactions(store, "race1") == 1
    assert (await store.find_address("1Origin")).withdrawals == {InputRef("race1", 0)}
    assert (await store.find_address("1Dest")).deposits == {OutputRef("race1", 0)}
    assert same_links(results[0], results[1])


@pytest.mark.asyncio
async def test_withdrawal_linkage_for_every_address(node, store, resolver):
    node.add(raw_tx("multi1", [coinbase_vin()], [pay(0, "50", "1Alice", "1Bob")]))
    node.add(raw_tx("spend1", [spend_vin("multi1", 0)], [pay(0, "49", "1Carol")]))

    await resolver.resolve("multi1")
    await resolver.resolve("spend1")

    for address in ("1Alice", "1Bob"):
        assert (await store.find_address(address)).withdrawals == {InputRef("spend1", 0)}
    assert (await store.find_address("1Carol")).withdrawals == set()


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported(node, store, status, resolver, monkeypatch):
    node.add(raw_tx("origin1", [coinbase_vin()], [pay(0, "50", "1Origin")]))
    node.add(raw_tx("tx1", [spend_vin("origin1", 0)], [pay(0, "49", "1Dest")]))
    await resolver.resolve("origin1")

    async def wrong_output(transaction, index):
        return TransactionOutput(tx_id=transaction.tx_id, index=index + 1, value_satoshi=1)

    monkeypatch.setattr(store, "find_output_by_index", wrong_output)

    with pytest.raises(ValueError):
        await resolver.resolve("tx1")

    assert "tx1" in status.last_error
    assert await count_transactions(store, "tx1") == 0
