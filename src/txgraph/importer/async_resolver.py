import asyncio
import traceback
from dataclasses import dataclass
from typing import Optional, Set, Tuple

from loguru import logger

from src.txgraph.exceptions import ResolutionError, UnresolvedReferenceError
from src.txgraph.models import Transaction
from .resolver import TransactionResolver


@dataclass
class ResolutionResult:
    tx_hash: str
    transaction: Optional[Transaction] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.transaction is not None


class AsyncResolver:
    """
    On-demand resolution, independent of the block scanner's cadence.

    ``create_transaction`` schedules a task on the running loop and returns it. When an
    input references a transaction that is not in the store yet, that upstream transaction
    is resolved first and the requested one is retried. Spend references form a DAG on a valid
    chain; a visited trail and a depth cap stop malformed data from recursing forever.
    """

    def __init__(self, resolver: TransactionResolver, max_depth: int = 64, max_concurrency: int = 8):
        self.resolver = resolver
        self.max_depth = max_depth
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()

    def create_transaction(self, tx_hash: str) -> "asyncio.Task[ResolutionResult]":
        task = asyncio.get_running_loop().create_task(self._run(tx_hash), name=f"resolve-{tx_hash}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def close(self):
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run(self, tx_hash: str) -> ResolutionResult:
        async with self._semaphore:
            try:
                transaction = await self.resolve_with_dependencies(tx_hash)
                return ResolutionResult(tx_hash=tx_hash, transaction=transaction)
            except ResolutionError as e:
                return ResolutionResult(tx_hash=tx_hash, error=e)
            except Exception as e:
                tb = traceback.format_exc()
                logger.error("Unexpected error while resolving transaction", tx_id=tx_hash, error=e, traceback=tb)
                return ResolutionResult(tx_hash=tx_hash, error=e)

    async def resolve_with_dependencies(self, tx_hash: str, trail: Tuple[str, ...] = ()) -> Transaction:
        trail = trail + (tx_hash,)
        attempted: Set[str] = set()
        while True:
            try:
                return await self.resolver.resolve(tx_hash)
            except UnresolvedReferenceError as e:
                if not e.transaction_missing:
                    raise
                if e.ref_tx_id in trail:
                    logger.error("Cyclic transaction references", tx_id=tx_hash, trail=list(trail))
                    raise
                if e.ref_tx_id in attempted:
                    # upstream was resolved but is still reported missing
                    raise
                if len(trail) >= self.max_depth:
                    logger.error("Maximum resolution depth reached", tx_id=tx_hash, depth=len(trail))
                    raise
                attempted.add(e.ref_tx_id)
                logger.info("Resolving missing upstream transaction", tx_id=tx_hash, upstream=e.ref_tx_id)
                await self.resolve_with_dependencies(e.ref_tx_id, trail)
