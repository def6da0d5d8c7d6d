import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from src.txgraph.database import TransactionRecord
from src.txgraph.graph.sql_store import SqlGraphStore
from src.txgraph.nodes.abstract_node import Node, RawTransactionResponse
from src.txgraph.status import StatusReporter

G1 = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"
G2 = "genesis-placeholder-2"


def coinbase_vin(script="04ffff001d0104"):
    return {"coinbase": script, "sequence": 4294967295}


def spend_vin(tx_id, vout):
    return {"txid": tx_id, "vout": vout, "scriptSig": {"asm": "", "hex": ""}, "sequence": 4294967295}


def pay(n, value, *addresses):
    script_pub_key = {"asm": "OP_DUP OP_HASH160 00 OP_EQUALVERIFY OP_CHECKSIG", "hex": "", "type": "pubkeyhash"}
    if len(addresses) == 1:
        script_pub_key["address"] = addresses[0]
    elif addresses:
        script_pub_key["addresses"] = list(addresses)
    else:
        script_pub_key = {"asm": "OP_RETURN 636861726c6579", "hex": "6a07636861726c6579", "type": "nulldata"}
    return {"value": Decimal(value), "n": n, "scriptPubKey": script_pub_key}


def raw_tx(tx_id, vin, vout, blockhash="00000000000000000000000000000000000000000000000000000000000000aa"):
    return {"txid": tx_id, "hash": tx_id, "blockhash": blockhash, "vin": vin, "vout": vout}


class FakeNode(Node):
    """Serves canned getrawtransaction results and records every call."""

    def __init__(self, transactions: Optional[Dict[str, dict]] = None, errors: Optional[Dict[str, str]] = None):
        super().__init__()
        self.transactions = dict(transactions or {})
        self.errors = dict(errors or {})
        self.calls: List[str] = []
        self._hold_until = 0
        self._arrived = 0
        self._released: Optional[asyncio.Event] = None

    def add(self, raw: dict):
        self.transactions[raw["txid"]] = raw

    def hold_until(self, callers: int):
        """Block each fetch until ``callers`` fetches are in flight."""
        self._hold_until = callers
        self._released = asyncio.Event()

    def get_current_block_height(self):
        return 0

    async def get_raw_transaction(self, tx_hash: str) -> RawTransactionResponse:
        self.calls.append(tx_hash)
        if self._released is not None:
            self._arrived += 1
            if self._arrived >= self._hold_until:
                self._released.set()
            await asyncio.wait_for(self._released.wait(), timeout=5)
        else:
            await asyncio.sleep(0)

        if tx_hash in self.errors:
            return RawTransactionResponse(error=self.errors[tx_hash])
        if tx_hash not in self.transactions:
            return RawTransactionResponse(error="No such mempool or blockchain transaction (-5)")
        return RawTransactionResponse(result=self.transactions[tx_hash])


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
def status():
    return StatusReporter(history_size=100)


@pytest_asyncio.fixture
async def store(tmp_path):
    graph_store = SqlGraphStore(f"sqlite+aiosqlite:///{tmp_path / 'graph.db'}")
    await graph_store.init()
    yield graph_store
    await graph_store.close()


async def count_transactions(store: SqlGraphStore, tx_id: str) -> int:
    async with store.session_manager.session() as session:
        result = await session.execute(
            select(func.count()).select_from(TransactionRecord).where(TransactionRecord.tx_id == tx_id)
        )
        return result.scalar()
