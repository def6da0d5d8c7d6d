from typing import Optional


class GraphImportError(Exception):
    pass


class ResolutionError(GraphImportError):
    """A transaction could not be resolved. Nothing of it was persisted."""

    def __init__(self, tx_hash: Optional[str], message: str):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.message = message


class FetchError(ResolutionError):
    def __init__(self, tx_hash: str, error: str):
        super().__init__(tx_hash, f"getrawtransaction failed for {tx_hash}: {error}")
        self.error = error


class MappingError(ResolutionError):
    def __init__(self, tx_hash: Optional[str], reason: str):
        super().__init__(tx_hash, f"Malformed transaction payload for {tx_hash}: {reason}")
        self.reason = reason


class UnresolvedReferenceError(ResolutionError):
    def __init__(self, tx_hash: str, ref_tx_id: str, ref_vout: int, transaction_missing: bool):
        if transaction_missing:
            detail = f"transaction {ref_tx_id} is not in the store"
        else:
            detail = f"transaction {ref_tx_id} has no output {ref_vout}"
        super().__init__(
            tx_hash,
            f"Output {ref_tx_id}:{ref_vout} spent by {tx_hash} is not in the store ({detail})"
        )
        self.ref_tx_id = ref_tx_id
        self.ref_vout = ref_vout
        self.transaction_missing = transaction_missing


class PersistenceFailure(ResolutionError):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(tx_hash, message)


class PersistenceConflict(GraphImportError):
    """Another writer already persisted this transaction id."""

    def __init__(self, tx_id: str):
        super().__init__(f"Transaction {tx_id} already exists")
        self.tx_id = tx_id
