from typing import Dict, Optional

from loguru import logger

from src.txgraph.exceptions import FetchError, MappingError, PersistenceConflict, PersistenceFailure, \
    ResolutionError, UnresolvedReferenceError
from src.txgraph.graph import GraphStore
from src.txgraph.models import Address, Transaction
from src.txgraph.nodes.abstract_node import Node
from src.txgraph.nodes.bitcoin.mapper import BitcoindMapper
from src.txgraph.status import StatusReporter


class TransactionResolver:
    """
    Resolves a transaction hash into a persisted, fully linked Transaction.

    Resolution is idempotent: a hash already in the store is returned as is, and when two
    resolvers race on the same hash the store's uniqueness constraint lets exactly one write
    through. The loser re-reads and returns the winner's transaction; its own address edges
    are dropped with the rolled back write. Nothing is ever persisted for a transaction whose
    inputs cannot all be bound to the outputs they spend.
    """

    def __init__(self, node: Node, store: GraphStore, mapper: Optional[BitcoindMapper] = None,
                 status: Optional[StatusReporter] = None):
        self.node = node
        self.store = store
        self.mapper = mapper or BitcoindMapper()
        self.status = status or StatusReporter()

    async def resolve(self, tx_hash: str) -> Transaction:
        try:
            return await self._resolve(tx_hash)
        except ResolutionError as e:
            self.status.add_error(f"Failed to resolve transaction {tx_hash}: {e.message}")
            raise
        except Exception as e:
            self.status.add_error(f"Unexpected error while resolving transaction {tx_hash}: {e!r}")
            raise

    async def _resolve(self, tx_hash: str) -> Transaction:
        existing = await self.store.find_transaction_by_tx_id(tx_hash)
        if existing is not None:
            logger.debug("Transaction is already in the database", tx_id=tx_hash)
            return existing

        logger.debug("Transaction is not in the database, creating it", tx_id=tx_hash)
        response = await self.node.get_raw_transaction(tx_hash)
        if response.error:
            raise FetchError(tx_hash, response.error)
        if response.result is None:
            raise MappingError(tx_hash, "empty getrawtransaction result")

        transaction = self.mapper.to_domain(response.result, tx_hash)

        addresses: Dict[str, Address] = {}
        await self._link_inputs(transaction, addresses)
        await self._link_outputs(transaction, addresses)

        try:
            await self.store.save_transaction(transaction, addresses.values())
        except PersistenceConflict:
            return await self._read_winner(transaction)

        self.status.add_log(
            f"Transaction {tx_hash} created with {len(transaction.inputs)} inputs "
            f"and {len(transaction.outputs)} outputs"
        )
        return transaction

    async def _address(self, addresses: Dict[str, Address], address: str) -> Address:
        if address not in addresses:
            addresses[address] = await self.store.find_or_create_address(address)
        return addresses[address]

    async def _link_inputs(self, transaction: Transaction, addresses: Dict[str, Address]):
        for vin in transaction.inputs:
            if vin.is_coinbase:
                continue

            origin = await self.store.find_transaction_by_tx_id(vin.ref_tx_id)
            output = await self.store.find_output_by_index(origin, vin.ref_vout) if origin is not None else None
            if output is None:
                raise UnresolvedReferenceError(transaction.tx_id, vin.ref_tx_id, vin.ref_vout,
                                               transaction_missing=origin is None)

            vin.bind(output)
            for address in output.addresses:
                (await self._address(addresses, address)).add_withdrawal(vin)
            logger.debug("Done treating vin", tx_id=transaction.tx_id, vin=vin.index)

    async def _link_outputs(self, transaction: Transaction, addresses: Dict[str, Address]):
        for vout in transaction.outputs:
            for address in vout.addresses:
                (await self._address(addresses, address)).add_deposit(vout)
            logger.debug("Done treating vout", tx_id=transaction.tx_id, vout=vout.index)

    async def _read_winner(self, transaction: Transaction) -> Transaction:
        winner = await self.store.find_transaction_by_tx_id(transaction.tx_id)
        if winner is None:
            raise PersistenceFailure(
                f"Transaction {transaction.tx_id} reported as existing but cannot be read back", transaction.tx_id
            )
        logger.info("Transaction already exists, using the stored one", tx_id=transaction.tx_id)
        if not same_links(transaction, winner):
            logger.warning("Stored transaction differs from the one just resolved", tx_id=transaction.tx_id)
        return winner


def same_links(left: Transaction, right: Transaction) -> bool:
    """True when both transactions spend the same outputs and pay the same addresses."""
    def inputs(tx):
        return [(vin.index, vin.ref_tx_id, vin.ref_vout, vin.spent_output) for vin in tx.inputs]

    def outputs(tx):
        return [(vout.index, vout.value_satoshi, sorted(vout.addresses)) for vout in tx.outputs]

    return inputs(left) == inputs(right) and outputs(left) == outputs(right)
