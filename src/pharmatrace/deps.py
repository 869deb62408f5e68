"""Dependency injection singletons for PharmaTrace."""

from pharmatrace.batches.service import BatchService
from pharmatrace.chain.abi import ContractEventDecoder
from pharmatrace.chain.jsonrpc import JsonRpcChainReader
from pharmatrace.common.config import get_settings
from pharmatrace.common.database import DatabaseManager
from pharmatrace.events.dispatcher import EventDispatcher
from pharmatrace.events.handlers import EventHandlers
from pharmatrace.events.ledger import EventLedger
from pharmatrace.metadata.client import MetadataGatewayClient
from pharmatrace.metadata.service import MetadataService
from pharmatrace.notifications.service import NotificationService
from pharmatrace.notifications.transport import (
    AlertTransport,
    LoggingAlertTransport,
    WebhookAlertTransport,
)
from pharmatrace.orders.service import OrderService
from pharmatrace.recall.service import RecallService
from pharmatrace.sync.service import SyncCursorStore
from pharmatrace.sync.worker import SyncWorker
from pharmatrace.trace.service import TraceService

_db: DatabaseManager | None = None
_batches: BatchService | None = None
_orders: OrderService | None = None
_notifications: NotificationService | None = None
_metadata: MetadataService | None = None
_trace: TraceService | None = None
_recall: RecallService | None = None
_ledger: EventLedger | None = None
_dispatcher: EventDispatcher | None = None
_cursors: SyncCursorStore | None = None
_reader: JsonRpcChainReader | None = None
_worker: SyncWorker | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_batch_service() -> BatchService:
    global _batches
    if _batches is None:
        _batches = BatchService(get_settings())
    return _batches


def get_order_service() -> OrderService:
    global _orders
    if _orders is None:
        _orders = OrderService()
    return _orders


def _alert_transport() -> AlertTransport:
    settings = get_settings()
    if settings.notification_webhook_url:
        return WebhookAlertTransport(
            settings.notification_webhook_url, settings.notification_webhook_secret,
        )
    return LoggingAlertTransport()


def get_notification_service() -> NotificationService:
    global _notifications
    if _notifications is None:
        _notifications = NotificationService(get_settings(), transport=_alert_transport())
    return _notifications


def get_metadata_service() -> MetadataService:
    global _metadata
    if _metadata is None:
        settings = get_settings()
        _metadata = MetadataService(
            settings,
            get_batch_service(),
            get_order_service(),
            client=MetadataGatewayClient(settings.metadata_gateway_url),
        )
    return _metadata


def get_trace_service() -> TraceService:
    global _trace
    if _trace is None:
        _trace = TraceService(get_settings(), get_batch_service())
    return _trace


def get_recall_service() -> RecallService:
    global _recall
    if _recall is None:
        _recall = RecallService(
            get_settings(),
            get_batch_service(),
            get_trace_service(),
            get_notification_service(),
        )
    return _recall


def get_event_ledger() -> EventLedger:
    global _ledger
    if _ledger is None:
        _ledger = EventLedger()
    return _ledger


def get_dispatcher() -> EventDispatcher:
    global _dispatcher
    if _dispatcher is None:
        handlers = EventHandlers(
            get_batch_service(), get_metadata_service(), get_recall_service(),
        )
        _dispatcher = EventDispatcher(get_db(), handlers, get_event_ledger())
    return _dispatcher


def get_cursor_store() -> SyncCursorStore:
    global _cursors
    if _cursors is None:
        _cursors = SyncCursorStore(get_db())
    return _cursors


def get_chain_reader() -> JsonRpcChainReader:
    global _reader
    if _reader is None:
        settings = get_settings()
        if not settings.contract_address:
            raise RuntimeError("PHARMATRACE_CONTRACT_ADDRESS is not set")
        _reader = JsonRpcChainReader(
            settings.rpc_url,
            settings.contract_address,
            ContractEventDecoder.from_artifact(settings.contract_abi_path),
            timeout=settings.rpc_timeout,
        )
    return _reader


def get_sync_worker() -> SyncWorker:
    global _worker
    if _worker is None:
        _worker = SyncWorker(
            get_settings(), get_chain_reader(), get_dispatcher(), get_cursor_store(),
        )
    return _worker


def current_sync_worker() -> SyncWorker | None:
    """The worker if one was started in this process, without creating it."""
    return _worker


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _batches, _orders, _notifications, _metadata, _trace, _recall
    global _ledger, _dispatcher, _cursors, _reader, _worker
    _db = None
    _batches = None
    _orders = None
    _notifications = None
    _metadata = None
    _trace = None
    _recall = None
    _ledger = None
    _dispatcher = None
    _cursors = None
    _reader = None
    _worker = None
