from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from src.txgraph.exceptions import MappingError
from src.txgraph.models import Transaction, TransactionInput, TransactionOutput
from .node_utils import btc_to_satoshi, derive_addresses


class RawScriptPubKey(BaseModel):
    model_config = ConfigDict(extra='allow')

    type: str = ""
    asm: str = ""
    hex: str = ""
    address: Optional[str] = None
    addresses: Optional[List[str]] = None


class RawVin(BaseModel):
    model_config = ConfigDict(extra='allow')

    txid: Optional[str] = None
    vout: Optional[int] = Field(None, ge=0)
    coinbase: Optional[str] = None
    sequence: Optional[int] = None

    @model_validator(mode='after')
    def check_reference(self):
        if self.coinbase is None and (self.txid is None or self.vout is None):
            raise ValueError("non-coinbase input without txid/vout")
        return self


class RawVout(BaseModel):
    model_config = ConfigDict(extra='allow')

    value: Decimal = Field(ge=0)
    n: int = Field(ge=0)
    scriptPubKey: RawScriptPubKey


class RawTransaction(BaseModel):
    model_config = ConfigDict(extra='allow')

    txid: str
    blockhash: Optional[str] = None
    vin: List[RawVin]
    vout: List[RawVout]

    @model_validator(mode='after')
    def check_output_indexes(self):
        indexes = [vout.n for vout in self.vout]
        if len(indexes) != len(set(indexes)):
            raise ValueError("duplicate output index")
        return self


class BitcoindMapper:
    """Turns a verbose ``getrawtransaction`` result into an unlinked Transaction."""

    def __init__(self, mainnet: bool = True):
        self.mainnet = mainnet

    def to_domain(self, raw: dict, tx_hash: Optional[str] = None) -> Transaction:
        if not isinstance(raw, dict):
            raise MappingError(tx_hash, f"expected an object, got {type(raw).__name__}")
        try:
            payload = RawTransaction.model_validate(raw)
        except ValidationError as e:
            raise MappingError(tx_hash or raw.get('txid'), str(e)) from e

        if tx_hash is not None and payload.txid != tx_hash:
            raise MappingError(tx_hash, f"node returned transaction {payload.txid}")

        transaction = Transaction(tx_id=payload.txid, block_hash=payload.blockhash)

        for index, vin in enumerate(payload.vin):
            transaction.inputs.append(TransactionInput(
                tx_id=payload.txid,
                index=index,
                ref_tx_id=None if vin.coinbase is not None else vin.txid,
                ref_vout=None if vin.coinbase is not None else vin.vout,
                coinbase=vin.coinbase,
                sequence=vin.sequence,
            ))

        for vout in payload.vout:
            transaction.outputs.append(TransactionOutput(
                tx_id=payload.txid,
                index=vout.n,
                value_satoshi=btc_to_satoshi(vout.value),
                addresses=derive_addresses(vout.scriptPubKey.model_dump(), self.mainnet),
            ))

        return transaction
