from typing import Optional

from sqlalchemy import Column, BigInteger, String, Boolean, JSON, Index, select

from src.txgraph.database.base_model import OrmBase
from src.txgraph.database.session_manager import DatabaseSessionManager
from src.txgraph.models import Block


class BlockRecord(OrmBase):
    __tablename__ = 'blocks'
    height = Column(BigInteger, primary_key=True, autoincrement=False)
    hash = Column(String, nullable=False, unique=True)
    tx_ids = Column(JSON, nullable=False, default=list)
    transactions_imported = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_blocks_transactions_imported_height', 'transactions_imported', 'height'),
    )

    def to_domain(self) -> Block:
        return Block(
            height=self.height,
            hash=self.hash,
            tx_ids=list(self.tx_ids or []),
            transactions_imported=bool(self.transactions_imported),
        )


class BlockManager:
    def __init__(self, session_manager: DatabaseSessionManager):
        self.session_manager = session_manager

    async def find_first_incomplete(self) -> Optional[Block]:
        async with self.session_manager.session() as session:
            result = await session.execute(
                select(BlockRecord)
                .where(BlockRecord.transactions_imported == False)  # noqa: E712
                .order_by(BlockRecord.height.asc())
                .limit(1)
            )
            record = result.scalars().first()
            return record.to_domain() if record is not None else None

    async def find_by_height(self, height: int) -> Optional[Block]:
        async with self.session_manager.session() as session:
            record = await session.get(BlockRecord, height)
            return record.to_domain() if record is not None else None

    async def save(self, block: Block):
        async with self.session_manager.session() as session:
            async with session.begin():
                await session.merge(BlockRecord(
                    height=block.height,
                    hash=block.hash,
                    tx_ids=list(block.tx_ids),
                    transactions_imported=block.transactions_imported,
                ))
