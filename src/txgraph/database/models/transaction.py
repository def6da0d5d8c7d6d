from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, Index, \
    select, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.txgraph.database.base_model import OrmBase, RowId
from src.txgraph.database.models.address import AddressRecord, AddressDeposit, AddressWithdrawal, address_ids
from src.txgraph.database.session_manager import DatabaseSessionManager
from src.txgraph.exceptions import PersistenceConflict, PersistenceFailure
from src.txgraph.models import Address, OutputRef, Transaction, TransactionInput, TransactionOutput


class TransactionRecord(OrmBase):
    __tablename__ = 'transactions'
    id = Column(RowId, primary_key=True, autoincrement=True)
    tx_id = Column(String, nullable=False, unique=True)
    block_hash = Column(String, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)


class OutputRecord(OrmBase):
    __tablename__ = 'transaction_outputs'
    id = Column(RowId, primary_key=True, autoincrement=True)
    transaction_id = Column(RowId, ForeignKey('transactions.id'), nullable=False)
    n = Column(Integer, nullable=False)
    value_satoshi = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint('transaction_id', 'n', name='uq_transaction_outputs_transaction_id_n'),
    )


class InputRecord(OrmBase):
    __tablename__ = 'transaction_inputs'
    id = Column(RowId, primary_key=True, autoincrement=True)
    transaction_id = Column(RowId, ForeignKey('transactions.id'), nullable=False)
    n = Column(Integer, nullable=False)
    ref_tx_id = Column(String, nullable=True)
    ref_vout = Column(Integer, nullable=True)
    spent_output_id = Column(RowId, ForeignKey('transaction_outputs.id'), nullable=True)
    coinbase = Column(Text, nullable=True)
    sequence = Column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint('transaction_id', 'n', name='uq_transaction_inputs_transaction_id_n'),
        Index('idx_transaction_inputs_spent_output_id', 'spent_output_id'),
    )


class TransactionManager:
    def __init__(self, session_manager: DatabaseSessionManager):
        self.session_manager = session_manager

    async def exists(self, tx_id: str) -> bool:
        async with self.session_manager.session() as session:
            result = await session.execute(select(exists().where(TransactionRecord.tx_id == tx_id)))
            return bool(result.scalar())

    async def find_by_tx_id(self, tx_id: str) -> Optional[Transaction]:
        async with self.session_manager.session() as session:
            result = await session.execute(select(TransactionRecord).where(TransactionRecord.tx_id == tx_id))
            record = result.scalars().first()
            if record is None:
                return None

            transaction = Transaction(tx_id=record.tx_id, block_hash=record.block_hash)
            transaction.outputs = await self._load_outputs(session, record)

            inputs = await session.execute(
                select(InputRecord).where(InputRecord.transaction_id == record.id).order_by(InputRecord.n)
            )
            for row in inputs.scalars().all():
                transaction.inputs.append(TransactionInput(
                    tx_id=record.tx_id,
                    index=row.n,
                    ref_tx_id=row.ref_tx_id,
                    ref_vout=row.ref_vout,
                    coinbase=row.coinbase,
                    sequence=row.sequence,
                    spent_output=OutputRef(row.ref_tx_id, row.ref_vout) if row.spent_output_id is not None else None,
                ))
            return transaction

    async def find_output(self, tx_id: str, index: int) -> Optional[TransactionOutput]:
        async with self.session_manager.session() as session:
            result = await session.execute(
                select(TransactionRecord).where(TransactionRecord.tx_id == tx_id)
            )
            record = result.scalars().first()
            if record is None:
                return None
            outputs = await self._load_outputs(session, record, index=index)
            return outputs[0] if outputs else None

    @staticmethod
    async def _load_outputs(session: AsyncSession, record: TransactionRecord, index: Optional[int] = None) -> List[TransactionOutput]:
        query = select(OutputRecord).where(OutputRecord.transaction_id == record.id)
        if index is not None:
            query = query.where(OutputRecord.n == index)
        rows = (await session.execute(query.order_by(OutputRecord.n))).scalars().all()
        if not rows:
            return []

        addresses_by_output: Dict[int, List[str]] = {row.id: [] for row in rows}
        result = await session.execute(
            select(AddressDeposit.output_id, AddressRecord.address)
            .join(AddressRecord, AddressRecord.id == AddressDeposit.address_id)
            .where(AddressDeposit.output_id.in_(list(addresses_by_output)))
            .order_by(AddressRecord.address)
        )
        for output_id, address in result.all():
            addresses_by_output[output_id].append(address)

        return [
            TransactionOutput(
                tx_id=record.tx_id,
                index=row.n,
                value_satoshi=row.value_satoshi,
                addresses=addresses_by_output[row.id],
            )
            for row in rows
        ]

    async def save(self, transaction: Transaction, addresses: Iterable[Address] = ()):
        addresses = [a for a in addresses if a.has_edges]
        try:
            async with self.session_manager.session() as session:
                async with session.begin():
                    record = TransactionRecord(tx_id=transaction.tx_id, block_hash=transaction.block_hash)
                    session.add(record)
                    await session.flush()

                    output_rows = {}
                    for output in transaction.outputs:
                        output_rows[output.index] = OutputRecord(
                            transaction_id=record.id, n=output.index, value_satoshi=output.value_satoshi
                        )
                    input_rows = {}
                    for vin in transaction.inputs:
                        input_rows[vin.index] = InputRecord(
                            transaction_id=record.id,
                            n=vin.index,
                            ref_tx_id=vin.ref_tx_id,
                            ref_vout=vin.ref_vout,
                            spent_output_id=await self._spent_output_id(session, vin),
                            coinbase=vin.coinbase,
                            sequence=vin.sequence,
                        )
                    session.add_all(list(output_rows.values()) + list(input_rows.values()))
                    await session.flush()

                    await self._add_edges(session, transaction, addresses, output_rows, input_rows)
        except IntegrityError as e:
            if await self.exists(transaction.tx_id):
                raise PersistenceConflict(transaction.tx_id) from e
            raise

    @staticmethod
    async def _spent_output_id(session: AsyncSession, vin: TransactionInput) -> Optional[int]:
        if vin.spent_output is None:
            return None
        result = await session.execute(
            select(OutputRecord.id)
            .join(TransactionRecord, TransactionRecord.id == OutputRecord.transaction_id)
            .where(TransactionRecord.tx_id == vin.spent_output.tx_id, OutputRecord.n == vin.spent_output.index)
        )
        output_id = result.scalars().first()
        if output_id is None:
            raise PersistenceFailure(
                f"Spent output {vin.spent_output.tx_id}:{vin.spent_output.index} disappeared", vin.tx_id
            )
        return output_id

    @staticmethod
    async def _add_edges(session: AsyncSession, transaction: Transaction, addresses: List[Address],
                         output_rows: Dict[int, OutputRecord], input_rows: Dict[int, InputRecord]):
        ids = await address_ids(session, [a.address for a in addresses])
        for address in addresses:
            if address.address not in ids:
                record = AddressRecord(address=address.address)
                session.add(record)
                await session.flush()
                ids[address.address] = record.id

        edges = []
        for address in addresses:
            address_id = ids[address.address]
            for ref in address.deposits:
                if ref.tx_id != transaction.tx_id or ref.index not in output_rows:
                    raise PersistenceFailure(f"Deposit {ref} is not an output of {transaction.tx_id}", transaction.tx_id)
                edges.append(AddressDeposit(address_id=address_id, output_id=output_rows[ref.index].id))
            for ref in address.withdrawals:
                if ref.tx_id != transaction.tx_id or ref.index not in input_rows:
                    raise PersistenceFailure(f"Withdrawal {ref} is not an input of {transaction.tx_id}", transaction.tx_id)
                edges.append(AddressWithdrawal(address_id=address_id, input_id=input_rows[ref.index].id))
        session.add_all(edges)
        await session.flush()
