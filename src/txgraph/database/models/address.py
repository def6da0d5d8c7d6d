from typing import Iterable, Dict, Optional

from loguru import logger
from sqlalchemy import Column, String, ForeignKey, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.txgraph.database.base_model import OrmBase, RowId
from src.txgraph.database.session_manager import DatabaseSessionManager
from src.txgraph.models import Address, InputRef, OutputRef


class AddressRecord(OrmBase):
    __tablename__ = 'addresses'
    id = Column(RowId, primary_key=True, autoincrement=True)
    address = Column(String, nullable=False, unique=True)


class AddressDeposit(OrmBase):
    __tablename__ = 'address_deposits'
    address_id = Column(RowId, ForeignKey('addresses.id'), primary_key=True)
    output_id = Column(RowId, ForeignKey('transaction_outputs.id'), primary_key=True, index=True)


class AddressWithdrawal(OrmBase):
    __tablename__ = 'address_withdrawals'
    address_id = Column(RowId, ForeignKey('addresses.id'), primary_key=True)
    input_id = Column(RowId, ForeignKey('transaction_inputs.id'), primary_key=True, index=True)


async def address_ids(session: AsyncSession, addresses: Iterable[str]) -> Dict[str, int]:
    addresses = list(set(addresses))
    if not addresses:
        return {}
    result = await session.execute(
        select(AddressRecord.address, AddressRecord.id).where(AddressRecord.address.in_(addresses))
    )
    return {address: address_id for address, address_id in result.all()}


class AddressManager:
    def __init__(self, session_manager: DatabaseSessionManager):
        self.session_manager = session_manager

    async def find_or_create(self, address: str) -> Address:
        try:
            async with self.session_manager.session() as session:
                async with session.begin():
                    result = await session.execute(select(AddressRecord.id).where(AddressRecord.address == address))
                    if result.scalars().first() is None:
                        session.add(AddressRecord(address=address))
        except IntegrityError:
            # created by a concurrent resolver in the meantime
            logger.debug("Address already created", address=address)
        return Address(address=address)

    async def find(self, address: str) -> Optional[Address]:
        # late import, the transaction tables reference this module
        from src.txgraph.database.models.transaction import TransactionRecord, InputRecord, OutputRecord

        async with self.session_manager.session() as session:
            result = await session.execute(select(AddressRecord.id).where(AddressRecord.address == address))
            address_id = result.scalars().first()
            if address_id is None:
                return None

            deposits = await session.execute(
                select(TransactionRecord.tx_id, OutputRecord.n)
                .join(OutputRecord, OutputRecord.transaction_id == TransactionRecord.id)
                .join(AddressDeposit, AddressDeposit.output_id == OutputRecord.id)
                .where(AddressDeposit.address_id == address_id)
            )
            withdrawals = await session.execute(
                select(TransactionRecord.tx_id, InputRecord.n)
                .join(InputRecord, InputRecord.transaction_id == TransactionRecord.id)
                .join(AddressWithdrawal, AddressWithdrawal.input_id == InputRecord.id)
                .where(AddressWithdrawal.address_id == address_id)
            )
            return Address(
                address=address,
                deposits={OutputRef(tx_id, n) for tx_id, n in deposits.all()},
                withdrawals={InputRef(tx_id, n) for tx_id, n in withdrawals.all()},
            )
