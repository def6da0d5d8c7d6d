from abc import ABC, abstractmethod
from typing import Iterable, Optional

from src.txgraph.models import Address, Block, Transaction, TransactionOutput


class GraphStore(ABC):
    """
    Persistent transaction graph.

    Implementations enforce uniqueness of transaction ids and address strings. Driver
    errors surface as ``PersistenceFailure``.
    """

    async def init(self):
        """Create schema, indexes and uniqueness constraints."""

    async def close(self):
        """Release connections."""

    @abstractmethod
    async def find_transaction_by_tx_id(self, tx_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def find_output_by_index(self, transaction: Transaction, index: int) -> Optional[TransactionOutput]:
        ...

    @abstractmethod
    async def find_or_create_address(self, address: str) -> Address:
        """Single canonical record per address string. The returned handle has empty edge sets."""

    @abstractmethod
    async def find_address(self, address: str) -> Optional[Address]:
        """The address with its persisted deposits and withdrawals."""

    @abstractmethod
    async def find_first_incomplete_block(self) -> Optional[Block]:
        """Lowest block whose transactions are not imported yet."""

    @abstractmethod
    async def find_block_by_height(self, height: int) -> Optional[Block]:
        ...

    @abstractmethod
    async def save_transaction(self, transaction: Transaction, addresses: Iterable[Address] = ()):
        """
        Persist the transaction, its inputs and outputs, and the new edges carried by
        ``addresses`` in one unit. Raises ``PersistenceConflict`` when the transaction id
        already exists, in which case nothing of this call is kept.
        """

    @abstractmethod
    async def save_block(self, block: Block):
        ...
