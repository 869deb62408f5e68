"""Shared test fixtures for PharmaTrace."""

from dataclasses import dataclass, field

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from pharmatrace.batches.service import BatchService
from pharmatrace.chain.reader import DecodedEvent
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.database import DatabaseManager
from pharmatrace.common.exceptions import AlertDeliveryError, ChainReadError
from pharmatrace.events.dispatcher import EventDispatcher
from pharmatrace.events.handlers import EventHandlers
from pharmatrace.events.ledger import EventLedger
from pharmatrace.metadata.client import MetadataGatewayClient
from pharmatrace.metadata.service import MetadataService
from pharmatrace.notifications.service import NotificationService
from pharmatrace.orders.service import OrderService
from pharmatrace.recall.service import RecallService
from pharmatrace.sync.poller import LivePoller
from pharmatrace.sync.recovery import RecoveryController
from pharmatrace.sync.service import SyncCursorStore
from pharmatrace.trace.service import TraceService

API_KEY = "test-admin-api-key"
GATEWAY = "https://gateway.test/ipfs/"


def make_settings(**overrides) -> PharmaTraceSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "api_key": API_KEY,
        "deployment_blocks": {31337: 10, 11155111: 100},
        "sync_batch_size": 10,
        "poll_interval": 0.01,
        "metadata_gateway_url": GATEWAY,
    }
    defaults.update(overrides)
    return PharmaTraceSettings(**defaults)


# ── Fakes ──


class FakeChainReader:
    """In-memory ledger. Range queries return events in insertion order."""

    def __init__(self, chain_id: int = 31337, head: int = 0):
        self.network_id = chain_id
        self.head = head
        self.events: list[DecodedEvent] = []
        self.range_calls: list[tuple[int, int]] = []
        self.fail_ranges = 0
        self.closed = False

    def emit(self, *events: DecodedEvent) -> None:
        for event in events:
            self.events.append(event)
            self.head = max(self.head, event.block_number)

    async def chain_id(self) -> int:
        return self.network_id

    async def current_block_height(self) -> int:
        return self.head

    async def events_in_range(self, from_block: int, to_block: int) -> list[DecodedEvent]:
        self.range_calls.append((from_block, to_block))
        if self.fail_ranges > 0:
            self.fail_ranges -= 1
            raise ChainReadError("node unavailable")
        return [e for e in self.events if from_block <= e.block_number <= to_block]

    async def events_for_transaction(self, tx_hash: str) -> list[DecodedEvent]:
        return [e for e in self.events if e.transaction_hash == tx_hash]

    async def close(self) -> None:
        self.closed = True


class GatewayStub:
    """Scripted metadata gateway behind an httpx.MockTransport.

    Each hash maps to a list of outcomes consumed in order: an int status, a
    dict JSON body (200), or an exception instance to raise.
    """

    def __init__(self):
        self.outcomes: dict[str, list] = {}
        self.calls: list[str] = []

    def script(self, content_hash: str, *outcomes) -> None:
        self.outcomes[content_hash] = list(outcomes)

    def handler(self, request: httpx.Request) -> httpx.Response:
        content_hash = request.url.path.rsplit("/", 1)[-1]
        self.calls.append(content_hash)
        queue = self.outcomes.get(content_hash) or [404]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, dict):
            return httpx.Response(200, json=outcome)
        return httpx.Response(outcome)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class RecordingAlertTransport:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, alert) -> None:
        if self.fail:
            raise AlertDeliveryError("smtp relay down")
        self.sent.append((alert.recipient, alert.batch_id, alert.message))


@dataclass
class Pipeline:
    settings: PharmaTraceSettings
    db: DatabaseManager
    chain: FakeChainReader
    gateway: GatewayStub
    alerts: RecordingAlertTransport
    batches: BatchService
    notifications: NotificationService
    metadata: MetadataService
    trace: TraceService
    recalls: RecallService
    ledger: EventLedger
    dispatcher: EventDispatcher
    cursors: SyncCursorStore
    sleeps: list[float] = field(default_factory=list)

    def recovery(self) -> RecoveryController:
        return RecoveryController(self.settings, self.chain, self.dispatcher, self.cursors)

    def poller(self) -> LivePoller:
        return LivePoller(self.settings, self.chain, self.dispatcher, self.cursors)


def build_pipeline(db: DatabaseManager, settings: PharmaTraceSettings, chain=None) -> Pipeline:
    gateway = GatewayStub()
    alerts = RecordingAlertTransport()
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    batches = BatchService(settings)
    notifications = NotificationService(settings, transport=alerts)
    metadata = MetadataService(
        settings,
        batches,
        OrderService(),
        client=MetadataGatewayClient(GATEWAY, transport=gateway.transport()),
        sleep=fake_sleep,
    )
    trace = TraceService(settings, batches)
    recalls = RecallService(settings, batches, trace, notifications)
    ledger = EventLedger()
    dispatcher = EventDispatcher(db, EventHandlers(batches, metadata, recalls), ledger)
    return Pipeline(
        settings=settings,
        db=db,
        chain=chain or FakeChainReader(),
        gateway=gateway,
        alerts=alerts,
        batches=batches,
        notifications=notifications,
        metadata=metadata,
        trace=trace,
        recalls=recalls,
        ledger=ledger,
        dispatcher=dispatcher,
        cursors=SyncCursorStore(db),
        sleeps=sleeps,
    )


# ── Fixtures ──


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def pipeline(db, settings):
    return build_pipeline(db, settings)


@pytest.fixture
def make_event():
    """Factory for decoded events; the tx hash is unique per (block, log_index)."""

    def _make(name: str, block: int, log_index: int = 0, tx: str | None = None, **args) -> DecodedEvent:
        return DecodedEvent(
            event_name=name,
            block_number=block,
            transaction_hash=tx or "0x" + f"{block:032x}{log_index:032x}",
            log_index=log_index,
            args=args,
            block_timestamp=1_700_000_000 + block * 12,
        )

    return _make


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def app(monkeypatch):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("PHARMATRACE_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("PHARMATRACE_API_KEY", API_KEY)
    monkeypatch.setenv("PHARMATRACE_SYNC_ON_STARTUP", "false")

    # Clear caches and singletons so new env vars take effect
    from pharmatrace.common.config import get_settings
    get_settings.cache_clear()

    from pharmatrace.deps import reset_singletons
    reset_singletons()

    from pharmatrace.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from pharmatrace.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-PharmaTrace-Api-Key": API_KEY}


@pytest.fixture
def seed(client):
    """Insert rows straight into the app database."""

    async def _seed(*rows):
        from pharmatrace.deps import get_db
        async with get_db().get_session() as session:
            session.add_all(rows)

    return _seed


@pytest.fixture
def fake_chain():
    return FakeChainReader()
