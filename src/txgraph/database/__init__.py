"""
Relational rendition of the transaction graph.

Importing this package registers every table on ``OrmBase.metadata`` so
``DatabaseSessionManager.create_schema`` creates all of them.
"""
from .base_model import OrmBase
from .session_manager import DatabaseSessionManager
from .models.address import AddressRecord, AddressDeposit, AddressWithdrawal, AddressManager
from .models.block import BlockRecord, BlockManager
from .models.transaction import TransactionRecord, InputRecord, OutputRecord, TransactionManager

__all__ = ["OrmBase", "DatabaseSessionManager", "AddressRecord", "AddressDeposit", "AddressWithdrawal",
           "AddressManager", "BlockRecord", "BlockManager", "TransactionRecord", "InputRecord", "OutputRecord",
           "TransactionManager"]
