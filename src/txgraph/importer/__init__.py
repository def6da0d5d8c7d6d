from .resolver import TransactionResolver
from .async_resolver import AsyncResolver, ResolutionResult
from .block_scanner import BlockScanner, ScanOutcome

__all__ = ["TransactionResolver", "AsyncResolver", "ResolutionResult", "BlockScanner", "ScanOutcome"]
