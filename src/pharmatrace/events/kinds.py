"""Closed set of contract events the sync pipeline understands."""

import enum


class EventKind(str, enum.Enum):
    BATCH_CREATED = "BatchCreated"
    METADATA_ADDED = "MetadataAdded"
    BATCH_SPLIT = "BatchSplit"
    BATCH_TRANSFER = "BatchTransfer"
    TRANSFER_INITIATED = "TransferInitiated"
    TRANSFER = "Transfer"
    STATUS_UPDATE = "StatusUpdate"
    BATCH_RECALLED = "BatchRecalled"
    BULK_BATCH_CREATED = "BulkBatchCreated"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def from_name(cls, event_name: str) -> "EventKind":
        try:
            kind = cls(event_name)
        except ValueError:
            return cls.UNRECOGNIZED
        return kind
