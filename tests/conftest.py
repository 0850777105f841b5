import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'broadcaster' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from broadcaster.main import app  # type: ignore
from broadcaster.database import Base  # type: ignore
from broadcaster.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported before Base.metadata.create_all() so the
notification <-> result relationship is configured.
"""
from broadcaster.models.db import Notification, SentNotificationData, UserConversation
from broadcaster.integrations.base import BotTransport, ConversationResponse, SendResponse
from broadcaster.jobs.queue import DelayQueue
from broadcaster.jobs.send_job import RecipientData, SendQueueMessageContent
from broadcaster.services.data_services import NotificationDataService, UserDataService
from broadcaster.services.delay_sending import DelaySendingNotificationService
from broadcaster.services.precheck import PrecheckService
from broadcaster.services.result_data import ManageResultDataService
from broadcaster.services.send_notification import SendNotificationService
from broadcaster.services.send_params import SendNotificationParamsService
from broadcaster.services.send_pipeline import SendPipeline
from broadcaster.services.throttle_state import InMemoryThrottleState

# File-based SQLite so worker threads and the test thread share one database
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_broadcaster.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

import broadcaster.database as _broadcaster_database  # noqa: E402
_broadcaster_database.SessionLocal = TestingSessionLocal  # type: ignore


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_broadcaster.db")
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _isolate_tables(create_test_db):
    """Every test starts from empty tables."""
    yield
    session = TestingSessionLocal()
    try:
        session.query(SentNotificationData).delete()
        session.query(UserConversation).delete()
        session.query(Notification).delete()
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def send_queue():
    queue = DelayQueue()
    yield queue
    queue.shutdown()


@pytest.fixture()
def client(send_queue):
    # Lifespan does not run without a context manager; wire the queue directly
    app.state.send_queue = send_queue  # type: ignore[attr-defined]
    return TestClient(app)


@pytest.fixture()
def throttle_state():
    return InMemoryThrottleState()


# ---------- Scripted bot transport ----------

class ScriptedTransport(BotTransport):
    """Replays scripted status codes; records every call.

    When a script runs out the last code repeats (201 when empty).
    ``hang_seconds`` makes every send sleep first, for timeout tests.
    """

    def __init__(
        self,
        send_codes: Optional[List[int]] = None,
        create_codes: Optional[List[int]] = None,
        *,
        conversation_id: Optional[str] = "dm-created",
        hang_seconds: float = 0.0,
        raise_on_send: Optional[Exception] = None,
    ):
        self.send_codes = list(send_codes or [201])
        self.create_codes = list(create_codes or [201])
        self.conversation_id = conversation_id
        self.hang_seconds = hang_seconds
        self.raise_on_send = raise_on_send
        self.send_calls: List[Dict[str, Any]] = []
        self.create_calls: List[Dict[str, Any]] = []

    @staticmethod
    def _next(codes: List[int]) -> int:
        return codes.pop(0) if len(codes) > 1 else codes[0]

    async def create_conversation(self, recipient: RecipientData, service_url: str) -> ConversationResponse:
        self.create_calls.append({"recipient_id": recipient.recipient_id, "service_url": service_url})
        code = self._next(self.create_codes)
        if 200 <= code < 300:
            return ConversationResponse(status_code=code, conversation_id=self.conversation_id)
        return ConversationResponse(status_code=code, error_message=f"scripted {code}")

    async def send_message(self, service_url: str, conversation_id: str, content: Dict[str, Any]) -> SendResponse:
        self.send_calls.append({"service_url": service_url, "conversation_id": conversation_id, "content": content})
        if self.raise_on_send is not None:
            raise self.raise_on_send
        if self.hang_seconds:
            await asyncio.sleep(self.hang_seconds)
        code = self._next(self.send_codes)
        return SendResponse(status_code=code, error_message=None if 200 <= code < 300 else f"scripted {code}")


@pytest.fixture()
def transport_factory():
    return ScriptedTransport


def _no_backoff(attempt: int) -> float:
    return 0.0


@pytest.fixture()
def pipeline_factory(session_factory, send_queue, throttle_state):
    """Build a SendPipeline around a scripted transport with zero backoff."""
    def _create(transport: ScriptedTransport, **overrides) -> SendPipeline:
        sender = SendNotificationService(transport, timeout_seconds=overrides.pop("timeout_seconds", 5), backoff=_no_backoff)
        return SendPipeline(
            precheck=PrecheckService(throttle_state),
            params=SendNotificationParamsService(
                NotificationDataService(session_factory),
                UserDataService(session_factory),
                sender,
                default_service_url="https://bot.test/api",
            ),
            sender=sender,
            delay=DelaySendingNotificationService(throttle_state, send_queue),
            results=ManageResultDataService(session_factory),
            **overrides,
        )
    return _create


# ---------- Data factory helpers ----------

@pytest.fixture()
def notification_factory(db_session):
    def _create(title: str = "Release notes", *, is_draft: bool = False, content: Optional[dict] = None):
        n = Notification(
            title=title,
            author="ops",
            content=content or {"content": f"{title} body"},
            is_draft=is_draft,
        )
        db_session.add(n)
        db_session.commit()
        db_session.refresh(n)
        return n
    return _create


def make_job(notification_id: str, recipient_id: str = "user-1", **recipient_fields) -> SendQueueMessageContent:
    return SendQueueMessageContent(
        notification_id=notification_id,
        recipient=RecipientData(recipient_id=recipient_id, **recipient_fields),
    )


@pytest.fixture()
def job_factory():
    return make_job


def fetch_result(notification_id: str, recipient_id: str) -> Optional[SentNotificationData]:
    session = TestingSessionLocal()
    try:
        row = (
            session.query(SentNotificationData)
            .filter_by(notification_id=notification_id, recipient_id=recipient_id)
            .one_or_none()
        )
        if row is not None:
            session.expunge(row)
        return row
    finally:
        session.close()


@pytest.fixture()
def result_lookup():
    return fetch_result
