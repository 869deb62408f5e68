"""PharmaTrace exception hierarchy."""


class PharmaTraceError(Exception):
    """Base exception for all PharmaTrace errors."""

    def __init__(self, message: str = "", code: str = "PHARMATRACE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ChainReadError(PharmaTraceError):
    """Raised when the ledger node cannot be read or returns an RPC error."""

    def __init__(self, message: str = "Chain read failed"):
        super().__init__(message, code="CHAIN_READ")


class ChainResetError(PharmaTraceError):
    """Raised when a ledger reset is still detected after the rewind pass."""

    def __init__(self, message: str = "Chain reset detected repeatedly"):
        super().__init__(message, code="CHAIN_RESET")


class AbiDecodeError(PharmaTraceError):
    """Raised when a log cannot be decoded against the contract ABI."""

    def __init__(self, message: str = "Could not decode log"):
        super().__init__(message, code="ABI_DECODE")


class TransactionNotFoundError(PharmaTraceError):
    """Raised when a force-resync targets an unknown or pending transaction."""

    def __init__(self, message: str = "Transaction not found"):
        super().__init__(message, code="TX_NOT_FOUND")


class EventProcessingError(PharmaTraceError):
    """Raised when a handler fails; the event has been recorded as FAILED."""

    def __init__(self, event_key: str, message: str = "Event processing failed"):
        self.event_key = event_key
        super().__init__(f"{event_key}: {message}", code="EVENT_FAILED")


class MetadataFetchError(PharmaTraceError):
    """Raised when the metadata gateway fetch fails.

    ``status`` carries the HTTP status when there was a response, and is
    ``None`` for transport failures (connection refused, timeout).
    """

    def __init__(self, message: str = "Metadata fetch failed", status: int | None = None):
        self.status = status
        super().__init__(message, code="METADATA_FETCH")

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class BatchNotFoundError(PharmaTraceError):
    """Raised when a batch cannot be found in the database."""

    def __init__(self, message: str = "Batch not found"):
        super().__init__(message, code="NOT_FOUND")


class AlertDeliveryError(PharmaTraceError):
    """Raised by an alert transport when delivery fails."""

    def __init__(self, message: str = "Alert delivery failed"):
        super().__init__(message, code="ALERT_DELIVERY")
