from typing import Dict, List, Optional

import pytest

from metersync.database import build_engine, build_session_factory, init_db
from metersync.schemas.sync import GatewayResponse, SerialOwnerBlock
from metersync.services.record_store import RecordStore
from metersync.services.serial_reconciler import SerialReconciler
from metersync.services.upload_pipeline import UploadPipeline

OK = GatewayResponse(success=True, status=200, data={"status": "success"})


# ==================== TEST DOUBLES ====================

class FakeConnectivity:
    def __init__(self, connected: bool = True):
        self.connected = connected
        self.calls = 0

    async def is_connected(self) -> bool:
        self.calls += 1
        return self.connected


class FakeGateway:
    """Scripted gateway: each key maps to a list of responses, the last one repeats."""

    def __init__(self):
        self.instance_responses: Dict[str, List[GatewayResponse]] = {}
        self.old_responses: Dict[int, List[GatewayResponse]] = {}
        self.new_responses: Dict[int, List[GatewayResponse]] = {}
        self.calls: List[tuple] = []

    @staticmethod
    def _next(script: Dict, key) -> GatewayResponse:
        responses = script.get(key)
        if not responses:
            return OK
        return responses.pop(0) if len(responses) > 1 else responses[0]

    async def create_account_instance(self, account_id: str) -> GatewayResponse:
        self.calls.append(("instance", account_id))
        return self._next(self.instance_responses, account_id)

    async def upload_old_meter(self, record) -> GatewayResponse:
        self.calls.append(("old", record.id))
        return self._next(self.old_responses, record.id)

    async def upload_new_meter(self, record) -> GatewayResponse:
        self.calls.append(("new", record.id))
        return self._next(self.new_responses, record.id)

    def calls_for(self, op: str) -> List:
        return [key for name, key in self.calls if name == op]


class FakeDirectory:
    def __init__(self, blocks: Optional[List[SerialOwnerBlock]] = None, error: Exception = None):
        self.blocks = blocks or []
        self.error = error
        self.calls = 0

    async def fetch_remote_serials(self) -> List[SerialOwnerBlock]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.blocks)

    def set_serials(self, *csv_values: str) -> None:
        self.blocks = [SerialOwnerBlock(owner_id=str(i), serials_csv=v) for i, v in enumerate(csv_values)]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ==================== FIXTURES ====================

@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def connectivity():
    return FakeConnectivity()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def pipeline(store, gateway, connectivity, fake_sleep):
    return UploadPipeline(
        store,
        gateway,
        connectivity,
        instance_retry_delay=0,
        upload_retry_delay=0,
        instance_settle_seconds=0,
        sleep=fake_sleep,
    )


@pytest.fixture
def reconciler(store, directory, connectivity, clock):
    return SerialReconciler(store, directory, connectivity, clock=clock)
