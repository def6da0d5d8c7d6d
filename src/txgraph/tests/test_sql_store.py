import pytest

from src.txgraph.exceptions import PersistenceConflict
from src.txgraph.models import Address, Block, InputRef, OutputRef, Transaction, TransactionInput, \
    TransactionOutput
from conftest import count_transactions


def make_coinbase(tx_id, address="1Miner", value=5000000000):
    tx = Transaction(tx_id=tx_id, block_hash="blk")
    tx.inputs.append(TransactionInput(tx_id=tx_id, index=0, coinbase="04ffff", sequence=1))
    tx.outputs.append(TransactionOutput(tx_id=tx_id, index=0, value_satoshi=value, addresses=[address]))
    deposit = Address(address=address)
    deposit.add_deposit(tx.outputs[0])
    return tx, [deposit]


@pytest.mark.asyncio
async def test_saved_transaction_reads_back_with_edges(store):
    origin, addresses = make_coinbase("origin1")
    await store.save_transaction(origin, addresses)

    spend = Transaction(tx_id="spend1")
    vin = TransactionInput(tx_id="spend1", index=0, ref_tx_id="origin1", ref_vout=0)
    vin.bind(origin.outputs[0])
    spend.inputs.append(vin)
    spend.outputs.append(TransactionOutput(tx_id="spend1", index=0, value_satoshi=4000000000, addresses=["1Alice"]))
    miner = await store.find_or_create_address("1Miner")
    miner.add_withdrawal(vin)
    alice = await store.find_or_create_address("1Alice")
    alice.add_deposit(spend.outputs[0])
    await store.save_transaction(spend, [miner, alice])

    stored = await store.find_transaction_by_tx_id("spend1")
    assert stored.inputs[0].spent_output == OutputRef("origin1", 0)
    assert stored.outputs[0].addresses == ["1Alice"]

    miner = await store.find_address("1Miner")
    assert miner.deposits == {OutputRef("origin1", 0)}
    assert miner.withdrawals == {InputRef("spend1", 0)}

    output = await store.find_output_by_index(await store.find_transaction_by_tx_id("origin1"), 0)
    assert output.value_satoshi == 5000000000
    assert output.addresses == ["1Miner"]


@pytest.mark.asyncio
async def test_missing_records(store):
    origin, addresses = make_coinbase("origin1")
    await store.save_transaction(origin, addresses)

    assert await store.find_transaction_by_tx_id("nope") is None
    assert await store.find_output_by_index(origin, 7) is None
    assert await store.find_address("1Nobody") is None


@pytest.mark.asyncio
async def test_find_or_create_address_is_canonical(store):
    first = await store.find_or_create_address("1Alice")
    second = await store.find_or_create_address("1Alice")

    assert first.address == second.address == "1Alice"
    assert not first.has_edges
    stored = await store.find_address("1Alice")
    assert stored.deposits == set() and stored.withdrawals == set()


@pytest.mark.asyncio
async def test_duplicate_transaction_is_a_conflict_and_keeps_nothing(store):
    first, addresses = make_coinbase("dup1", address="1First")
    await store.save_transaction(first, addresses)

    second, other_addresses = make_coinbase("dup1", address="1Second", value=1)
    with pytest.raises(PersistenceConflict):
        await store.save_transaction(second, other_addresses)

    assert await count_transactions(store, "dup1") == 1
    stored = await store.find_transaction_by_tx_id("dup1")
    assert stored.outputs[0].value_satoshi == 5000000000
    assert await store.find_address("1Second") is None


@pytest.mark.asyncio
async def test_first_incomplete_block_by_height(store):
    await store.save_block(Block(height=12, hash="h12", tx_ids=["c"]))
    await store.save_block(Block(height=10, hash="h10", tx_ids=["a"], transactions_imported=True))
    await store.save_block(Block(height=11, hash="h11", tx_ids=["b1", "b2"]))

    block = await store.find_first_incomplete_block()
    assert block.height == 11
    assert block.tx_ids == ["b1", "b2"]

    block.transactions_imported = True
    await store.save_block(block)
    assert (await store.find_first_incomplete_block()).height == 12
    assert (await store.find_block_by_height(11)).transactions_imported
