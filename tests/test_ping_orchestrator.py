import json
import pytest
from contextlib import nullcontext
from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.db.models import Group, IntervalMode
from app.services.notifications.group_fanout import GroupFanoutCoordinator
from app.services.notifications.ping_orchestrator import (
    PingOrchestrator,
    build_check_in_payload,
    get_schedule_status,
    run_ping_dispatcher,
)
from app.services.notifications.push_dispatcher import (
    PushNotificationDispatcher,
    VapidConfig,
)
from app.services.notifications.store import NotificationStore
from app.utils.errors import PushConfigurationError, PushDeliveryError, PushGoneError

from conftest import FakePushTransport

NOW = datetime(2025, 3, 10, 12, 0, 0)


class FailingMembersStore(NotificationStore):
    """Store whose member lookup blows up for one group."""

    def __init__(self, db_session, failing_group_id):
        super().__init__(db_session)
        self.failing_group_id = failing_group_id

    async def get_group_members(self, group_id):
        if group_id == self.failing_group_id:
            raise RuntimeError("member lookup failed")
        return await super().get_group_members(group_id)


def reload_group(db_session, group_id) -> Group:
    db_session.expire_all()
    return db_session.get(Group, group_id)


class TestEndToEnd:
    """Test a full dispatcher pass."""

    @pytest.mark.asyncio
    async def test_daily_group_with_one_gone_endpoint(
        self, orchestrator, transport, store, make_user, make_group, db_session
    ):
        """frequency=7 fixed, two members, one delivery succeeds and one is gone."""
        alice = make_user(endpoints=["https://push/alice"])
        bob = make_user(endpoints=["https://push/bob"])
        group = make_group(
            members=[alice, bob],
            frequency=7,
            interval_mode=IntervalMode.FIXED,
            next_ping_time=NOW - timedelta(minutes=1),
        )
        transport.failures = {"https://push/bob": PushGoneError("https://push/bob", 410)}

        summary = await orchestrator.run(NOW)

        assert summary.groups_processed == 1
        result = summary.results[0]
        assert result.group_id == group.id
        assert (result.sent, result.failed, result.skipped_quiet_hours) == (1, 1, 0)
        assert result.next_ping_time == NOW + timedelta(hours=24)
        assert result.error is None

        assert await store.get_endpoint("https://push/bob") is None
        assert await store.get_endpoint("https://push/alice") is not None

        persisted = reload_group(db_session, group.id)
        assert persisted.last_ping_time == NOW
        assert persisted.next_ping_time == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_check_in_payload_is_sent(self, orchestrator, transport, make_user, make_group):
        make_group(members=[make_user(endpoints=["https://push/a"])])

        await orchestrator.run(NOW)

        assert json.loads(transport.payloads[0]) == {
            "title": "Vibe Check! 🎯",
            "body": "How are you feeling right now?",
            "url": "/check-in",
            "icon": "/icons/icon-192x192.png",
        }

    @pytest.mark.asyncio
    async def test_groups_not_yet_due_are_left_alone(
        self, orchestrator, transport, make_user, make_group, db_session
    ):
        later = NOW + timedelta(hours=5)
        group = make_group(members=[make_user(endpoints=["https://push/a"])], next_ping_time=later)

        summary = await orchestrator.run(NOW)

        assert summary.groups_processed == 0
        assert transport.sent == []
        assert reload_group(db_session, group.id).next_ping_time == later

    @pytest.mark.asyncio
    async def test_summary_serializes_with_camel_case_keys(
        self, orchestrator, make_user, make_group
    ):
        make_group(members=[make_user(endpoints=["https://push/a"])], name="Team A")

        summary = await orchestrator.run(NOW)
        dumped = summary.model_dump(by_alias=True)

        assert dumped["groupsProcessed"] == 1
        assert dumped["results"][0]["groupName"] == "Team A"
        assert dumped["results"][0]["skippedQuietHours"] == 0
        assert dumped["results"][0]["nextPingTime"] == "2025-03-11T12:00:00+00:00"
        assert dumped["soloUsers"]["sent"] == 0


class TestInitialization:
    """Test seeding never-scheduled groups."""

    @pytest.mark.asyncio
    async def test_uninitialized_groups_are_seeded_not_pinged(
        self, orchestrator, transport, make_user, make_group, db_session
    ):
        fixed = make_group(
            members=[make_user(endpoints=["https://push/a"])],
            interval_mode=IntervalMode.FIXED,
            next_ping_time=None,
        )
        randomized = make_group(
            members=[make_user(endpoints=["https://push/b"])],
            interval_mode=IntervalMode.RANDOM,
            next_ping_time=None,
        )

        summary = await orchestrator.run(NOW)

        assert summary.groups_initialized == 2
        assert summary.groups_processed == 0
        assert transport.sent == []
        assert reload_group(db_session, fixed.id).next_ping_time == NOW + timedelta(hours=1)
        # uniform 0.5 lands in the middle of the 1-5 hour bootstrap window
        assert reload_group(db_session, randomized.id).next_ping_time == NOW + timedelta(hours=3)
        assert reload_group(db_session, fixed.id).last_ping_time is None

    @pytest.mark.asyncio
    async def test_seeded_group_is_pinged_once_due(
        self, orchestrator, transport, make_user, make_group
    ):
        make_group(
            members=[make_user(endpoints=["https://push/a"])],
            interval_mode=IntervalMode.FIXED,
            next_ping_time=None,
        )

        await orchestrator.run(NOW)
        summary = await orchestrator.run(NOW + timedelta(hours=1))

        assert summary.groups_processed == 1
        assert transport.sent == ["https://push/a"]


class TestFailureHandling:
    """Test isolation and forward progress."""

    @pytest.mark.asyncio
    async def test_schedule_advances_when_every_delivery_fails(
        self, orchestrator, transport, make_user, make_group, db_session
    ):
        transport.failures = {
            "https://push/a": PushDeliveryError("timeout"),
            "https://push/b": PushDeliveryError("502 Bad Gateway"),
        }
        group = make_group(
            members=[make_user(endpoints=["https://push/a"]), make_user(endpoints=["https://push/b"])],
            frequency=2,
        )

        summary = await orchestrator.run(NOW)

        assert (summary.results[0].sent, summary.results[0].failed) == (0, 2)
        persisted = reload_group(db_session, group.id)
        assert persisted.last_ping_time == NOW
        assert persisted.next_ping_time == NOW + timedelta(hours=84)
        assert persisted.next_ping_time > persisted.last_ping_time

    @pytest.mark.asyncio
    async def test_one_failing_group_does_not_stop_the_others(
        self, db_session, vapid_config, make_user, make_group
    ):
        first = make_group(members=[make_user(endpoints=["https://push/1"])], name="First")
        broken = make_group(members=[make_user(endpoints=["https://push/2"])], name="Broken")
        third = make_group(members=[make_user(endpoints=["https://push/3"])], name="Third")

        store = FailingMembersStore(db_session, broken.id)
        transport = FakePushTransport()
        dispatcher = PushNotificationDispatcher(store, vapid_config, transport=transport)
        orchestrator = PingOrchestrator(
            store, dispatcher, GroupFanoutCoordinator(store, dispatcher), uniform=lambda: 0.5
        )

        summary = await orchestrator.run(NOW)

        results = {result.group_name: result for result in summary.results}
        assert summary.groups_processed == 3
        assert results["First"].sent == 1
        assert results["Third"].sent == 1
        assert results["Broken"].error == "member lookup failed"
        assert (results["Broken"].sent, results["Broken"].failed) == (0, 0)
        assert [r.group_name for r in summary.failed_groups] == ["Broken"]
        assert sorted(transport.sent) == ["https://push/1", "https://push/3"]

        for group_id in (first.id, broken.id, third.id):
            persisted = reload_group(db_session, group_id)
            assert persisted.last_ping_time == NOW
            assert persisted.next_ping_time == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_partial_delivery_survives_failed_endpoint_cleanup(
        self, orchestrator, transport, store, make_user, make_group, db_session
    ):
        transport.failures = {"https://push/gone": PushGoneError("https://push/gone", 410)}
        user = make_user(
            endpoints=["https://push/ok1", "https://push/gone", "https://push/ok2"]
        )
        group = make_group(members=[user], frequency=7)

        async def broken_delete(endpoint):
            raise OperationalError("DELETE FROM push_subscriptions", {}, Exception("db down"))

        store.delete_endpoint = broken_delete

        summary = await orchestrator.run(NOW)

        result = summary.results[0]
        assert (result.sent, result.failed) == (2, 1)
        assert result.error is None
        assert reload_group(db_session, group.id).next_ping_time == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_missing_vapid_keys_abort_the_run(
        self, store, make_user, make_group, db_session
    ):
        group = make_group(members=[make_user(endpoints=["https://push/a"])])
        transport = FakePushTransport()
        dispatcher = PushNotificationDispatcher(
            store, VapidConfig("", "", "mailto:x@example.com"), transport=transport
        )
        orchestrator = PingOrchestrator(
            store, dispatcher, GroupFanoutCoordinator(store, dispatcher)
        )

        with pytest.raises(PushConfigurationError):
            await orchestrator.run(NOW)

        assert transport.sent == []
        assert reload_group(db_session, group.id).last_ping_time is None

    @pytest.mark.asyncio
    async def test_missing_vapid_keys_are_harmless_without_targets(
        self, store, make_group
    ):
        """Keys are only needed once something is actually sent."""
        make_group(members=[])
        dispatcher = PushNotificationDispatcher(
            store, VapidConfig(None, None, "mailto:x@example.com"), transport=FakePushTransport()
        )
        orchestrator = PingOrchestrator(
            store, dispatcher, GroupFanoutCoordinator(store, dispatcher), uniform=lambda: 0.5
        )

        summary = await orchestrator.run(NOW)

        assert summary.groups_processed == 1

    @pytest.mark.asyncio
    async def test_discovery_failure_propagates(self, orchestrator):
        with patch.object(
            NotificationStore, "get_due_groups", side_effect=RuntimeError("database is locked")
        ):
            with pytest.raises(RuntimeError):
                await orchestrator.run(NOW)


class TestSoloUsers:
    """Test users who are not in any group."""

    @pytest.mark.asyncio
    async def test_solo_users_are_notified_every_run(
        self, orchestrator, transport, make_user, make_group
    ):
        make_user(timezone="Asia/Tokyo", endpoints=["https://push/solo1", "https://push/solo2"])
        make_user()
        make_group(members=[make_user(endpoints=["https://push/member"])], next_ping_time=NOW + timedelta(days=1))

        first = await orchestrator.run(NOW)
        second = await orchestrator.run(NOW + timedelta(minutes=5))

        for summary in (first, second):
            assert summary.solo_users.users_processed == 1
            assert summary.solo_users.sent == 2
        assert "https://push/member" not in transport.sent

    @pytest.mark.asyncio
    async def test_solo_users_ignore_quiet_hours(self, orchestrator, make_user):
        """At 12:00 UTC it is 21:00 in Tokyo; solo users have no quiet window."""
        make_user(timezone="Asia/Tokyo", endpoints=["https://push/solo"])

        summary = await orchestrator.run(NOW)

        assert summary.solo_users.sent == 1

    @pytest.mark.asyncio
    async def test_solo_failures_are_counted(self, orchestrator, transport, make_user, store):
        transport.failures = {"https://push/dead": PushGoneError("https://push/dead", 410)}
        make_user(endpoints=["https://push/dead", "https://push/alive"])

        summary = await orchestrator.run(NOW)

        assert (summary.solo_users.sent, summary.solo_users.failed) == (1, 1)
        assert await store.get_endpoint("https://push/dead") is None


class TestRunEntryPoint:
    """Test the shared entry point used by both triggers."""

    @pytest.mark.asyncio
    @patch("app.services.notifications.push_transport.webpush")
    async def test_runs_without_lock_by_default(self, mock_webpush, db_session, make_user, make_group):
        make_group(members=[make_user(endpoints=["https://push/a"])])

        summary = await run_ping_dispatcher(db_session, "test-run", now=NOW)

        assert summary.skipped is False
        assert summary.results[0].sent == 1
        mock_webpush.assert_called_once()

    @pytest.mark.asyncio
    @patch("app.services.notifications.push_transport.webpush")
    async def test_skips_when_lock_is_held(self, mock_webpush, db_session, make_user, make_group):
        group = make_group(members=[make_user(endpoints=["https://push/a"])])

        with patch(
            "app.services.notifications.ping_orchestrator.settings.PING_SINGLE_FLIGHT", True
        ), patch(
            "app.services.notifications.ping_orchestrator.single_flight",
            return_value=nullcontext(False),
        ):
            summary = await run_ping_dispatcher(db_session, "test-run", now=NOW)

        assert summary.skipped is True
        assert summary.groups_processed == 0
        mock_webpush.assert_not_called()
        assert reload_group(db_session, group.id).last_ping_time is None

    @pytest.mark.asyncio
    @patch("app.services.notifications.push_transport.webpush")
    async def test_runs_when_lock_is_acquired(self, mock_webpush, db_session, make_user, make_group):
        make_group(members=[make_user(endpoints=["https://push/a"])])

        with patch(
            "app.services.notifications.ping_orchestrator.settings.PING_SINGLE_FLIGHT", True
        ), patch(
            "app.services.notifications.ping_orchestrator.single_flight",
            return_value=nullcontext(True),
        ) as lock:
            summary = await run_ping_dispatcher(db_session, "test-run", now=NOW)

        lock.assert_called_once_with("ping-dispatcher")
        assert summary.skipped is False
        assert summary.groups_processed == 1


class TestScheduleStatus:
    """Test the schedule status listing."""

    @pytest.mark.asyncio
    async def test_reports_eligibility_and_member_count(self, db_session, make_user, make_group):
        make_group(members=[make_user(), make_user()], name="Due", next_ping_time=NOW - timedelta(hours=1))
        make_group(name="Later", next_ping_time=NOW + timedelta(hours=1))
        make_group(name="New", next_ping_time=None)

        statuses = {status.name: status for status in await get_schedule_status(db_session, NOW)}

        assert statuses["Due"].is_eligible_now is True
        assert statuses["Due"].member_count == 2
        assert statuses["Later"].is_eligible_now is False
        assert statuses["New"].is_eligible_now is False
        assert statuses["New"].interval_mode == "fixed"


def test_check_in_payload():
    payload = build_check_in_payload()
    assert payload.title == "Vibe Check! 🎯"
    assert payload.url == "/check-in"
