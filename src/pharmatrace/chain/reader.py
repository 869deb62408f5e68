"""Ledger reader contract consumed by the sync pipeline."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol


@dataclass(frozen=True)
class DecodedEvent:
    """A contract log decoded into its event name and named arguments."""

    event_name: str
    block_number: int
    transaction_hash: str
    log_index: int
    args: dict[str, Any] = field(default_factory=dict)
    block_timestamp: Optional[int] = None

    @property
    def key(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


def in_ledger_order(events: Iterable[DecodedEvent]) -> list[DecodedEvent]:
    """Sort events by (block_number, log_index).

    Range queries spanning several blocks do not guarantee emission order.
    """
    return sorted(events, key=lambda e: e.sort_key)


class ChainReader(Protocol):
    """Read-only view of the ledger the sync pipeline depends on."""

    async def chain_id(self) -> int: ...

    async def current_block_height(self) -> int: ...

    async def events_in_range(self, from_block: int, to_block: int) -> list[DecodedEvent]: ...

    async def events_for_transaction(self, tx_hash: str) -> list[DecodedEvent]: ...
