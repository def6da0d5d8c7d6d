import functools
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from src.txgraph.database import DatabaseSessionManager, AddressManager, BlockManager, TransactionManager
from src.txgraph.exceptions import PersistenceFailure
from src.txgraph.graph import GraphStore
from src.txgraph.models import Address, Block, Transaction, TransactionOutput


def wrap_store_errors(method):
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("Graph store error", operation=method.__name__, error=str(e))
            raise PersistenceFailure(f"{method.__name__} failed: {e}") from e
        except IOError as e:
            raise PersistenceFailure(f"{method.__name__} failed: {e}") from e
    return wrapper


class SqlGraphStore(GraphStore):
    def __init__(self, database_url: str = None, session_manager: DatabaseSessionManager = None):
        if session_manager is None:
            session_manager = DatabaseSessionManager()
            session_manager.init(database_url)
        self.session_manager = session_manager
        self.transactions = TransactionManager(session_manager)
        self.addresses = AddressManager(session_manager)
        self.blocks = BlockManager(session_manager)

    @wrap_store_errors
    async def init(self):
        await self.session_manager.create_schema()

    async def close(self):
        await self.session_manager.close()

    @wrap_store_errors
    async def find_transaction_by_tx_id(self, tx_id: str) -> Optional[Transaction]:
        return await self.transactions.find_by_tx_id(tx_id)

    @wrap_store_errors
    async def find_output_by_index(self, transaction: Transaction, index: int) -> Optional[TransactionOutput]:
        return await self.transactions.find_output(transaction.tx_id, index)

    @wrap_store_errors
    async def find_or_create_address(self, address: str) -> Address:
        return await self.addresses.find_or_create(address)

    @wrap_store_errors
    async def find_address(self, address: str) -> Optional[Address]:
        return await self.addresses.find(address)

    @wrap_store_errors
    async def find_first_incomplete_block(self) -> Optional[Block]:
        return await self.blocks.find_first_incomplete()

    @wrap_store_errors
    async def find_block_by_height(self, height: int) -> Optional[Block]:
        return await self.blocks.find_by_height(height)

    @wrap_store_errors
    async def save_transaction(self, transaction: Transaction, addresses: Iterable[Address] = ()):
        await self.transactions.save(transaction, addresses)

    @wrap_store_errors
    async def save_block(self, block: Block):
        await self.blocks.save(block)
