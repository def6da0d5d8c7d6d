import asyncio
import threading
import time
import traceback
from enum import Enum
from typing import Iterable, Optional

from loguru import logger

from src.txgraph.exceptions import GraphImportError, ResolutionError, UnresolvedReferenceError
from src.txgraph.graph import GraphStore
from src.txgraph.status import StatusReporter
from .async_resolver import AsyncResolver
from .resolver import TransactionResolver


class ScanOutcome(Enum):
    IDLE = "idle"
    IMPORTED = "imported"
    FAILED = "failed"


class BlockScanner:
    def __init__(self, store: GraphStore, resolver: TransactionResolver, status: StatusReporter,
                 genesis_hashes: Iterable[str] = (), async_resolver: Optional[AsyncResolver] = None):
        self.store = store
        self.resolver = resolver
        self.status = status
        self.genesis_hashes = frozenset(genesis_hashes)
        self.async_resolver = async_resolver

    async def run_cycle(self) -> ScanOutcome:
        start = time.monotonic()
        block = await self.store.find_first_incomplete_block()
        if block is None:
            self.status.add_log("No block waiting for its transactions")
            return ScanOutcome.IDLE

        self.status.add_log(f"Importing transactions of block {block.height}")
        for tx_hash in block.tx_ids:
            if tx_hash in self.genesis_hashes:
                continue
            try:
                await self.resolver.resolve(tx_hash)
            except UnresolvedReferenceError as e:
                self._heal(e)
                return ScanOutcome.FAILED
            except ResolutionError:
                # already reported by the resolver
                return ScanOutcome.FAILED

        block.transactions_imported = True
        await self.store.save_block(block)
        elapsed = time.monotonic() - start
        self.status.add_log(f"Block {block.height} imported in {elapsed:.3f} secs")
        return ScanOutcome.IMPORTED

    def _heal(self, error: UnresolvedReferenceError):
        if self.async_resolver is None or not error.transaction_missing:
            return
        logger.info("Scheduling resolution of missing upstream transaction", tx_id=error.tx_hash,
                    upstream=error.ref_tx_id)
        self.async_resolver.create_transaction(error.ref_tx_id)

    async def run(self, terminate_event: threading.Event, initial_delay: float = 0.0,
                  pause_between_imports: float = 0.0, pause_between_checks: float = 1.0):
        await self._wait(terminate_event, initial_delay)
        while not terminate_event.is_set():
            outcome = ScanOutcome.FAILED
            try:
                outcome = await self.run_cycle()
            except GraphImportError as e:
                self.status.add_error(f"Block scan failed: {e}")
            except Exception as e:
                tb = traceback.format_exc()
                logger.error("Error occurred while importing block transactions", error=e, traceback=tb)
                self.status.add_error(f"Block scan failed: {e!r}")
            delay = pause_between_checks if outcome is ScanOutcome.IDLE else pause_between_imports
            await self._wait(terminate_event, delay)

    @staticmethod
    async def _wait(terminate_event: threading.Event, delay: float):
        deadline = asyncio.get_running_loop().time() + delay
        while not terminate_event.is_set():
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(remaining, 1))
