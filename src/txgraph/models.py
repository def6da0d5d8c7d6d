from dataclasses import dataclass, field
from typing import List, Optional, Set


@dataclass(frozen=True)
class OutputRef:
    tx_id: str
    index: int


@dataclass(frozen=True)
class InputRef:
    tx_id: str
    index: int


@dataclass
class TransactionOutput:
    tx_id: str
    index: int
    value_satoshi: int
    addresses: List[str] = field(default_factory=list)

    @property
    def ref(self) -> OutputRef:
        return OutputRef(self.tx_id, self.index)


@dataclass
class TransactionInput:
    tx_id: str
    index: int
    ref_tx_id: Optional[str] = None
    ref_vout: Optional[int] = None
    coinbase: Optional[str] = None
    sequence: Optional[int] = None
    spent_output: Optional[OutputRef] = None

    @property
    def ref(self) -> InputRef:
        return InputRef(self.tx_id, self.index)

    @property
    def is_coinbase(self) -> bool:
        return self.ref_tx_id is None

    def bind(self, output: TransactionOutput):
        """Bind this input to the output it spends. A bound input cannot be rebound elsewhere."""
        if self.is_coinbase:
            raise ValueError(f"Coinbase input {self.tx_id}:{self.index} spends nothing")
        if (output.tx_id, output.index) != (self.ref_tx_id, self.ref_vout):
            raise ValueError(
                f"Input {self.tx_id}:{self.index} references {self.ref_tx_id}:{self.ref_vout}, "
                f"not {output.tx_id}:{output.index}"
            )
        if self.spent_output is not None and self.spent_output != output.ref:
            raise ValueError(f"Input {self.tx_id}:{self.index} is already bound to {self.spent_output}")
        self.spent_output = output.ref


@dataclass
class Transaction:
    tx_id: str
    block_hash: Optional[str] = None
    inputs: List[TransactionInput] = field(default_factory=list)
    outputs: List[TransactionOutput] = field(default_factory=list)

    @property
    def is_coinbase(self) -> bool:
        return any(vin.is_coinbase for vin in self.inputs)


@dataclass
class Address:
    """
    An address node and its edges.

    Handles returned by ``GraphStore.find_or_create_address`` start with empty edge sets and
    collect the edges added by one resolution attempt; ``GraphStore.find_address`` returns the
    full persisted edge sets.
    """
    address: str
    deposits: Set[OutputRef] = field(default_factory=set)
    withdrawals: Set[InputRef] = field(default_factory=set)

    def add_deposit(self, output: TransactionOutput):
        self.deposits.add(output.ref)

    def add_withdrawal(self, vin: TransactionInput):
        self.withdrawals.add(vin.ref)

    @property
    def has_edges(self) -> bool:
        return bool(self.deposits or self.withdrawals)


@dataclass
class Block:
    height: int
    hash: str
    tx_ids: List[str] = field(default_factory=list)
    transactions_imported: bool = False
