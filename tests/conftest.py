"""
PyTest configuration for the flow engine.

Uses SQLite so the suite runs without PostgreSQL. Outgoing WhatsApp
messages go to a recording transport and delay nodes to a manual
scheduler, so every test runs synchronously.
"""
import os
from contextlib import contextmanager

# Must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.db.base import Base
from app.models.conversation import Conversation
from app.schemas.flow import FlowDefinition
from app.services.flow_executor import FlowExecutor
from app.services.flow_service import FlowService
from app.services.transport import MessagingTransport

TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite:///./test.db')

connect_args = {"check_same_thread": False} if "sqlite" in TEST_DATABASE_URL else {}
test_engine = create_engine(TEST_DATABASE_URL, connect_args=connect_args)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TENANT_ID = "tenant-test"
INSTANCE_ID = "instance-1"
CONTACT_ID = "5511999990000"


@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    if "sqlite" in TEST_DATABASE_URL:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class RecordingTransport(MessagingTransport):
    """Keeps every sent message instead of calling WhatsApp"""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send_message(self, instance_id, contact_id, text):
        if self.fail_with:
            raise self.fail_with
        self.sent.append((instance_id, contact_id, text))
        return f"wamid.out.{len(self.sent)}"

    @property
    def texts(self):
        return [text for _, _, text in self.sent]


class ManualScheduler:
    """Collects delay continuations; tests fire them with run_all()"""

    def __init__(self):
        self.calls = []

    def schedule(self, delay_ms, callback, *args):
        self.calls.append((delay_ms, callback, args))

    def pending(self):
        return len(self.calls)

    def cancel_all(self):
        count = len(self.calls)
        self.calls = []
        return count

    def run_all(self):
        calls, self.calls = self.calls, []
        for _, callback, args in calls:
            callback(*args)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: tests that wait on real timer threads")


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def executor(db_session, transport, scheduler):
    @contextmanager
    def session_factory():
        yield db_session

    return FlowExecutor(
        transport,
        scheduler=scheduler,
        session_factory=session_factory,
        webhook_timeout=5,
        default_delay_ms=1000,
        handoff_message="Transferring you to an agent",
    )


@pytest.fixture
def conversation(db_session):
    conv = Conversation(
        tenant_id=TENANT_ID,
        instance_id=INSTANCE_ID,
        contact_id=CONTACT_ID,
        contact_name="Test Contact",
    )
    db_session.add(conv)
    db_session.commit()
    db_session.refresh(conv)
    return conv


@pytest.fixture
def make_flow(db_session):
    """
    Store a flow from nodes/edges written the way the editor exports them.

    Usage:
        flow = make_flow(nodes=[{"nodeId": "start", "type": "start"}])
    """
    def _make(nodes, edges=(), name="Test flow", **fields):
        raw = {
            "name": name,
            "instanceId": INSTANCE_ID,
            "nodes": list(nodes),
            "edges": list(edges),
        }
        raw.update(fields)
        definition = FlowDefinition.model_validate(raw)
        return FlowService.import_definition(db_session, TENANT_ID, definition)

    return _make
