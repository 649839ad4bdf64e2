import pytest
from unittest.mock import AsyncMock

from autodial.finalizer import Finalizer
from autodial.intent import KeywordIntentClassifier
from autodial.orchestrator import CallOrchestrator
from autodial.session import CallSession, Customer
from autodial.store import SessionStore
from autodial.turn_processor import TurnProcessor


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def customer():
    return Customer(
        record_id="R-42",
        name="Jane",
        phone="+15125551234",
        product="2021 Mazda CX-5",
        enquiry_date="2026-09-30",
    )


@pytest.fixture
def session(customer):
    return CallSession(call_id="CA_test_123", customer=customer, created_at=1000.0, last_activity_at=1000.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


@pytest.fixture
def classifier():
    return KeywordIntentClassifier()


@pytest.fixture
def record_store():
    fake = AsyncMock()
    fake.update.return_value = {"success": True}
    fake.find_by_phone_or_id.return_value = {
        "id": "R-42", "name": "Jane", "phone": "+15125551234", "carmodel": "2021 Mazda CX-5",
    }
    return fake


@pytest.fixture
def email_sender():
    fake = AsyncMock()
    fake.send.return_value = {"success": True}
    return fake


@pytest.fixture
def generator():
    fake = AsyncMock()
    fake.generate.return_value = "Lovely. Are you still keen on it?"
    return fake


@pytest.fixture
def processor(store, classifier, generator, clock):
    return TurnProcessor(store, classifier, generator, max_turns=10, clock=clock)


@pytest.fixture
def finalizer(record_store, email_sender, clock):
    return Finalizer(record_store, email_sender, clock=clock)


@pytest.fixture
def orchestrator(store, processor, finalizer, clock):
    return CallOrchestrator(
        store, processor, finalizer,
        session_timeout=60.0, max_call_duration=300.0, clock=clock,
    )
