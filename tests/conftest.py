import os

# Must be set before any app module reads settings or builds the engine
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["VAPID_PUBLIC_KEY"] = "test-vapid-public-key"
os.environ["VAPID_PRIVATE_KEY"] = "test-vapid-private-key"
os.environ["PING_SINGLE_FLIGHT"] = "false"

import threading
from datetime import datetime, timedelta
from typing import Dict, Generator, List, Optional

import pytest
from sqlalchemy.orm import Session

from app.db.models import (
    Group,
    GroupMembership,
    IntervalMode,
    PushSubscription,
    User,
)
from app.db.db import create_tables, drop_tables
from app.db.session import SessionLocal
from app.services.notifications.group_fanout import GroupFanoutCoordinator
from app.services.notifications.ping_orchestrator import PingOrchestrator
from app.services.notifications.push_dispatcher import (
    PushNotificationDispatcher,
    VapidConfig,
)
from app.services.notifications.store import NotificationStore

# 12:00 UTC on a Monday, outside DST in Europe
NOW = datetime(2025, 3, 10, 12, 0, 0)


class FakePushTransport:
    """Records every send and fails the endpoints it was told to fail."""

    def __init__(self, failures: Optional[Dict[str, Exception]] = None):
        self.failures = failures or {}
        self.sent: List[str] = []
        self.payloads: List[str] = []
        self._lock = threading.Lock()

    def send(self, subscription: PushSubscription, payload_json: str, vapid) -> None:
        with self._lock:
            self.sent.append(subscription.endpoint)
            self.payloads.append(payload_json)
        failure = self.failures.get(subscription.endpoint)
        if failure is not None:
            raise failure


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Fresh schema and session for each test."""
    create_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        drop_tables()


@pytest.fixture
def store(db_session: Session) -> NotificationStore:
    return NotificationStore(db_session)


@pytest.fixture
def vapid_config() -> VapidConfig:
    return VapidConfig(
        public_key="test-vapid-public-key",
        private_key="test-vapid-private-key",
        claims_sub="mailto:test@example.com",
    )


@pytest.fixture
def transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def dispatcher(
    store: NotificationStore, vapid_config: VapidConfig, transport: FakePushTransport
) -> PushNotificationDispatcher:
    return PushNotificationDispatcher(store, vapid_config, transport=transport)


@pytest.fixture
def fanout(
    store: NotificationStore, dispatcher: PushNotificationDispatcher
) -> GroupFanoutCoordinator:
    return GroupFanoutCoordinator(store, dispatcher, max_concurrency=4)


@pytest.fixture
def orchestrator(
    store: NotificationStore,
    dispatcher: PushNotificationDispatcher,
    fanout: GroupFanoutCoordinator,
) -> PingOrchestrator:
    """Orchestrator whose random draws always return 0.5."""
    return PingOrchestrator(store, dispatcher, fanout, uniform=lambda: 0.5)


# Test data factories
@pytest.fixture
def make_user(db_session: Session):
    """Create a user with the given push endpoints."""
    counter = {"n": 0}

    def _make_user(
        timezone: Optional[str] = "UTC",
        endpoints: Optional[List[str]] = None,
        session_id: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            name=f"User {counter['n']}",
            email=f"user{counter['n']}@example.com",
            timezone=timezone,
        )
        db_session.add(user)
        db_session.flush()

        for endpoint in endpoints or []:
            db_session.add(
                PushSubscription(
                    user_id=user.id,
                    session_id=session_id,
                    endpoint=endpoint,
                    p256dh=f"p256dh-{counter['n']}",
                    auth=f"auth-{counter['n']}",
                )
            )

        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_group(db_session: Session):
    """Create a group with the given members."""
    counter = {"n": 0}

    def _make_group(
        members: Optional[List[User]] = None,
        frequency: int = 7,
        interval_mode: IntervalMode = IntervalMode.FIXED,
        quiet_hours_start: Optional[int] = None,
        quiet_hours_end: Optional[int] = None,
        next_ping_time: Optional[datetime] = NOW - timedelta(minutes=1),
        last_ping_time: Optional[datetime] = None,
        name: Optional[str] = None,
    ) -> Group:
        counter["n"] += 1
        group = Group(
            name=name or f"Group {counter['n']}",
            frequency=frequency,
            interval_mode=interval_mode,
            quiet_hours_start=quiet_hours_start,
            quiet_hours_end=quiet_hours_end,
            next_ping_time=next_ping_time,
            last_ping_time=last_ping_time,
        )
        db_session.add(group)
        db_session.flush()

        for member in members or []:
            db_session.add(GroupMembership(user_id=member.id, group_id=group.id))

        db_session.commit()
        db_session.refresh(group)
        return group

    return _make_group
