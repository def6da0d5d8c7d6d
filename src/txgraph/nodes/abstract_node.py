from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class RawTransactionResponse:
    result: Optional[dict] = None
    error: Optional[str] = None


class Node(ABC):
    def __init__(self):
        ...

    @abstractmethod
    def get_current_block_height(self):
        ...

    @abstractmethod
    async def get_raw_transaction(self, tx_hash: str) -> RawTransactionResponse:
        """Fetch the verbose raw transaction. A non-empty ``error`` means the fetch failed."""
