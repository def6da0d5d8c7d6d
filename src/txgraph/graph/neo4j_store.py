import functools
from typing import Iterable, Optional

from loguru import logger
from neo4j import AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import ConstraintError, DriverError, Neo4jError

from src.txgraph.exceptions import PersistenceConflict, PersistenceFailure
from src.txgraph.graph import GraphStore
from src.txgraph.models import Address, Block, InputRef, OutputRef, Transaction, TransactionInput, \
    TransactionOutput

CONSTRAINTS = [
    "CREATE CONSTRAINT transaction_tx_id IF NOT EXISTS FOR (t:Transaction) REQUIRE t.tx_id IS UNIQUE",
    "CREATE CONSTRAINT address_address IF NOT EXISTS FOR (a:Address) REQUIRE a.address IS UNIQUE",
    "CREATE CONSTRAINT block_height IF NOT EXISTS FOR (b:Block) REQUIRE b.height IS UNIQUE",
    "CREATE INDEX output_tx_id_n IF NOT EXISTS FOR (o:Output) ON (o.tx_id, o.n)",
    "CREATE INDEX input_tx_id_n IF NOT EXISTS FOR (i:Input) ON (i.tx_id, i.n)",
    "CREATE INDEX block_transactions_imported IF NOT EXISTS FOR (b:Block) ON (b.transactions_imported)",
]


class LinkMismatch(Exception):
    pass


def wrap_store_errors(method):
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (Neo4jError, DriverError) as e:
            logger.error("Graph store error", operation=method.__name__, error=str(e))
            raise PersistenceFailure(f"{method.__name__} failed: {e}") from e
    return wrapper


class Neo4jGraphStore(GraphStore):
    """
    Transaction graph in Neo4j.

    (:Transaction)-[:HAS_OUTPUT]->(:Output), (:Transaction)-[:HAS_INPUT]->(:Input)-[:SPENDS]->(:Output),
    (:Address)-[:DEPOSIT]->(:Output), (:Address)-[:WITHDRAWAL]->(:Input).
    """

    def __init__(self, url: str, user: str, password: str):
        logger.info("Connecting to graph database", url=url)
        self.driver = AsyncGraphDatabase.driver(
            url,
            auth=(user, password),
            connection_timeout=60,
            max_connection_lifetime=60,
            max_connection_pool_size=128,
            encrypted=False,
        )

    @wrap_store_errors
    async def init(self):
        async with self.driver.session() as session:
            for statement in CONSTRAINTS:
                result = await session.run(statement)
                await result.consume()
        logger.info("Graph constraints ready")

    async def close(self):
        await self.driver.close()

    @wrap_store_errors
    async def find_transaction_by_tx_id(self, tx_id: str) -> Optional[Transaction]:
        async with self.driver.session() as session:
            return await session.execute_read(self._read_transaction, tx_id)

    @staticmethod
    async def _read_transaction(tx: AsyncManagedTransaction, tx_id: str) -> Optional[Transaction]:
        result = await tx.run("MATCH (t:Transaction {tx_id: $tx_id}) RETURN t.block_hash AS block_hash", tx_id=tx_id)
        record = await result.single()
        if record is None:
            return None

        transaction = Transaction(tx_id=tx_id, block_hash=record["block_hash"])
        result = await tx.run(
            """
            MATCH (:Transaction {tx_id: $tx_id})-[:HAS_OUTPUT]->(o:Output)
            OPTIONAL MATCH (a:Address)-[:DEPOSIT]->(o)
            WITH o, a ORDER BY a.address
            RETURN o.n AS n, o.value_satoshi AS value_satoshi, collect(a.address) AS addresses
            ORDER BY n
            """,
            tx_id=tx_id
        )
        for row in await result.data():
            transaction.outputs.append(TransactionOutput(
                tx_id=tx_id, index=row["n"], value_satoshi=row["value_satoshi"], addresses=row["addresses"]
            ))

        result = await tx.run(
            """
            MATCH (:Transaction {tx_id: $tx_id})-[:HAS_INPUT]->(i:Input)
            OPTIONAL MATCH (i)-[:SPENDS]->(o:Output)
            RETURN i.n AS n, i.ref_tx_id AS ref_tx_id, i.ref_vout AS ref_vout, i.coinbase AS coinbase,
                   i.sequence AS sequence, o IS NOT NULL AS bound
            ORDER BY n
            """,
            tx_id=tx_id
        )
        for row in await result.data():
            transaction.inputs.append(TransactionInput(
                tx_id=tx_id,
                index=row["n"],
                ref_tx_id=row["ref_tx_id"],
                ref_vout=row["ref_vout"],
                coinbase=row["coinbase"],
                sequence=row["sequence"],
                spent_output=OutputRef(row["ref_tx_id"], row["ref_vout"]) if row["bound"] else None,
            ))
        return transaction

    @wrap_store_errors
    async def find_output_by_index(self, transaction: Transaction, index: int) -> Optional[TransactionOutput]:
        async with self.driver.session() as session:
            result = await session.run(
                """
                MATCH (:Transaction {tx_id: $tx_id})-[:HAS_OUTPUT]->(o:Output {n: $n})
                OPTIONAL MATCH (a:Address)-[:DEPOSIT]->(o)
                WITH o, a ORDER BY a.address
                RETURN o.value_satoshi AS value_satoshi, collect(a.address) AS addresses
                """,
                tx_id=transaction.tx_id,
                n=index
            )
            record = await result.single()
            if record is None:
                return None
            return TransactionOutput(
                tx_id=transaction.tx_id, index=index, value_satoshi=record["value_satoshi"],
                addresses=record["addresses"]
            )

    async def find_or_create_address(self, address: str) -> Address:
        try:
            async with self.driver.session() as session:
                result = await session.run("MERGE (:Address {address: $address})", address=address)
                await result.consume()
        except ConstraintError:
            logger.debug("Address already created", address=address)
        except (Neo4jError, DriverError) as e:
            raise PersistenceFailure(f"find_or_create_address failed: {e}") from e
        return Address(address=address)

    @wrap_store_errors
    async def find_address(self, address: str) -> Optional[Address]:
        async with self.driver.session() as session:
            result = await session.run(
                """
                MATCH (a:Address {address: $address})
                OPTIONAL MATCH (a)-[:DEPOSIT]->(o:Output)
                WITH a, collect([o.tx_id, o.n]) AS deposits
                OPTIONAL MATCH (a)-[:WITHDRAWAL]->(i:Input)
                RETURN deposits, collect([i.tx_id, i.n]) AS withdrawals
                """,
                address=address
            )
            record = await result.single()
            if record is None:
                return None
            return Address(
                address=address,
                deposits={OutputRef(tx_id, n) for tx_id, n in record["deposits"] if tx_id is not None},
                withdrawals={InputRef(tx_id, n) for tx_id, n in record["withdrawals"] if tx_id is not None},
            )

    @wrap_store_errors
    async def find_first_incomplete_block(self) -> Optional[Block]:
        async with self.driver.session() as session:
            result = await session.run(
                """
                MATCH (b:Block) WHERE b.transactions_imported = false
                RETURN b ORDER BY b.height ASC LIMIT 1
                """
            )
            record = await result.single()
            return self._to_block(record["b"]) if record is not None else None

    @wrap_store_errors
    async def find_block_by_height(self, height: int) -> Optional[Block]:
        async with self.driver.session() as session:
            result = await session.run("MATCH (b:Block {height: $height}) RETURN b", height=height)
            record = await result.single()
            return self._to_block(record["b"]) if record is not None else None

    @staticmethod
    def _to_block(node) -> Block:
        return Block(
            height=node["height"],
            hash=node["hash"],
            tx_ids=list(node.get("tx_ids") or []),
            transactions_imported=bool(node.get("transactions_imported", False)),
        )

    @wrap_store_errors
    async def save_block(self, block: Block):
        async with self.driver.session() as session:
            result = await session.run(
                """
                MERGE (b:Block {height: $height})
                SET b.hash = $hash, b.tx_ids = $tx_ids, b.transactions_imported = $transactions_imported
                """,
                height=block.height,
                hash=block.hash,
                tx_ids=list(block.tx_ids),
                transactions_imported=block.transactions_imported
            )
            await result.consume()

    async def save_transaction(self, transaction: Transaction, addresses: Iterable[Address] = ()):
        addresses = [a for a in addresses if a.has_edges]
        try:
            async with self.driver.session() as session:
                await session.execute_write(self._write_transaction, transaction, addresses)
        except ConstraintError as e:
            if await self.find_transaction_by_tx_id(transaction.tx_id) is not None:
                raise PersistenceConflict(transaction.tx_id) from e
            raise PersistenceFailure(f"save_transaction failed: {e}", transaction.tx_id) from e
        except LinkMismatch as e:
            raise PersistenceFailure(str(e), transaction.tx_id) from e
        except (Neo4jError, DriverError) as e:
            logger.error("Graph store error", operation="save_transaction", error=str(e))
            raise PersistenceFailure(f"save_transaction failed: {e}", transaction.tx_id) from e

    @staticmethod
    async def _write_transaction(tx: AsyncManagedTransaction, transaction: Transaction, addresses):
        tx_id = transaction.tx_id
        await tx.run(
            "CREATE (:Transaction {tx_id: $tx_id, block_hash: $block_hash})",
            tx_id=tx_id, block_hash=transaction.block_hash
        )

        await tx.run(
            """
            MATCH (t:Transaction {tx_id: $tx_id})
            UNWIND $outputs AS out
            CREATE (t)-[:HAS_OUTPUT]->(:Output {tx_id: $tx_id, n: out.n, value_satoshi: out.value_satoshi})
            """,
            tx_id=tx_id,
            outputs=[{"n": o.index, "value_satoshi": o.value_satoshi} for o in transaction.outputs]
        )

        await tx.run(
            """
            MATCH (t:Transaction {tx_id: $tx_id})
            UNWIND $inputs AS vin
            CREATE (t)-[:HAS_INPUT]->(:Input {tx_id: $tx_id, n: vin.n, ref_tx_id: vin.ref_tx_id,
                                              ref_vout: vin.ref_vout, coinbase: vin.coinbase,
                                              sequence: vin.sequence})
            """,
            tx_id=tx_id,
            inputs=[{
                "n": vin.index, "ref_tx_id": vin.ref_tx_id, "ref_vout": vin.ref_vout,
                "coinbase": vin.coinbase, "sequence": vin.sequence,
            } for vin in transaction.inputs]
        )

        spends = [{"n": vin.index, "ref_tx_id": vin.spent_output.tx_id, "ref_vout": vin.spent_output.index}
                  for vin in transaction.inputs if vin.spent_output is not None]
        await _expect_links(tx, len(spends), "spent outputs", """
            UNWIND $rows AS row
            MATCH (i:Input {tx_id: $tx_id, n: row.n})
            MATCH (:Transaction {tx_id: row.ref_tx_id})-[:HAS_OUTPUT]->(o:Output {n: row.ref_vout})
            CREATE (i)-[:SPENDS]->(o)
            RETURN count(*) AS linked
            """, tx_id=tx_id, rows=spends)

        deposits = [{"address": a.address, "n": ref.index} for a in addresses for ref in a.deposits
                    if ref.tx_id == tx_id]
        await _expect_links(tx, len(deposits), "deposits", """
            UNWIND $rows AS row
            MERGE (a:Address {address: row.address})
            WITH a, row
            MATCH (o:Output {tx_id: $tx_id, n: row.n})
            CREATE (a)-[:DEPOSIT]->(o)
            RETURN count(*) AS linked
            """, tx_id=tx_id, rows=deposits)

        withdrawals = [{"address": a.address, "n": ref.index} for a in addresses for ref in a.withdrawals
                       if ref.tx_id == tx_id]
        await _expect_links(tx, len(withdrawals), "withdrawals", """
            UNWIND $rows AS row
            MERGE (a:Address {address: row.address})
            WITH a, row
            MATCH (i:Input {tx_id: $tx_id, n: row.n})
            CREATE (a)-[:WITHDRAWAL]->(i)
            RETURN count(*) AS linked
            """, tx_id=tx_id, rows=withdrawals)


async def _expect_links(tx: AsyncManagedTransaction, expected: int, kind: str, query: str, **params):
    if not expected:
        return
    result = await tx.run(query, **params)
    record = await result.single()
    linked = record["linked"] if record is not None else 0
    if linked != expected:
        # raising inside the transaction function rolls the whole write back
        raise LinkMismatch(f"Linked {linked} of {expected} {kind} for {params['tx_id']}")
