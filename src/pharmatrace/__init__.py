"""PharmaTrace: ledger event sync and cascading recalls for pharmaceutical batches."""

from pharmatrace.chain.reader import ChainReader, DecodedEvent, in_ledger_order

__all__ = [
    "ChainReader",
    "DecodedEvent",
    "in_ledger_order",
]
__version__ = "0.1.0"
