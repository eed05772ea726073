from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.config.settings import settings
from app.schemas.ping_schemas import (
    GroupInitialization,
    GroupPingResult,
    GroupScheduleStatus,
    RunSummary,
)
from app.schemas.push_schemas import FanoutCounts, PushPayload
from app.services.notifications.group_fanout import GroupFanoutCoordinator
from app.services.notifications.interval_scheduler import (
    UniformSource,
    calculate_next_ping_time,
    initialize_next_ping_time,
)
from app.services.notifications.push_dispatcher import (
    PushNotificationDispatcher,
    VapidConfig,
)
from app.services.notifications.store import NotificationStore
from app.utils.datetime_utils import to_naive_utc, utc_now
from app.utils.errors import PushConfigurationError
from app.utils.logging import get_logger
from app.utils.run_lock import single_flight

PING_LOCK_NAME = "ping-dispatcher"


def build_check_in_payload() -> PushPayload:
    return PushPayload(
        title="Vibe Check! 🎯",
        body="How are you feeling right now?",
        url="/check-in",
        icon="/icons/icon-192x192.png",
    )


class PingOrchestrator:
    """
    One pass of the ping dispatcher.

    Seeds never-scheduled groups, pings every due group and reschedules it,
    then pings solo users. Holds no state between runs; everything it needs
    is read from the store.
    """

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: PushNotificationDispatcher,
        fanout: GroupFanoutCoordinator,
        uniform: Optional[UniformSource] = None,
        request_id: Optional[str] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.fanout = fanout
        self.uniform = uniform
        self.logger = get_logger().bind(request_id=request_id or "ping_dispatcher")

    async def run(self, now: Optional[datetime] = None) -> RunSummary:
        """
        Execute one dispatcher pass.

        Errors inside a single group or user are logged and reported in the
        summary. Discovery errors and missing VAPID keys propagate and end the run.
        """
        now = to_naive_utc(now or utc_now())
        summary = RunSummary(timestamp=now)

        due_groups = await self.store.get_due_groups(now)
        uninitialized_groups = await self.store.get_uninitialized_groups()

        self.logger.info(
            f"Ping dispatcher started: due={len(due_groups)}, uninitialized={len(uninitialized_groups)}"
        )

        for group in uninitialized_groups:
            summary.initialized.append(await self._initialize_group(group, now))
        summary.groups_initialized = sum(
            1 for item in summary.initialized if item.error is None
        )

        payload = build_check_in_payload()

        for group in due_groups:
            summary.results.append(await self._ping_group(group, payload, now))
        summary.groups_processed = len(summary.results)

        await self._ping_solo_users(summary, payload)

        self.logger.info(
            f"Ping dispatcher finished: groups_processed={summary.groups_processed}, "
            f"groups_initialized={summary.groups_initialized}, "
            f"failed_groups={len(summary.failed_groups)}, "
            f"solo_sent={summary.solo_users.sent}, solo_failed={summary.solo_users.failed}"
        )

        return summary

    async def _initialize_group(self, group, now: datetime) -> GroupInitialization:
        group_id, group_name = group.id, group.name

        try:
            next_ping_time = initialize_next_ping_time(
                group.frequency, group.interval_mode, now, self.uniform
            )
            await self.store.initialize_group_schedule(group_id, next_ping_time)
            self.logger.info(
                f"Initialized group {group_name} ({group_id}), first ping at {next_ping_time.isoformat()}"
            )
            return GroupInitialization(
                group_id=group_id, group_name=group_name, next_ping_time=next_ping_time
            )
        except Exception as e:
            self.store.rollback()
            self.logger.error(f"Failed to initialize group {group_id}: {str(e)}")
            return GroupInitialization(
                group_id=group_id, group_name=group_name, error=str(e)
            )

    async def _ping_group(
        self, group, payload: PushPayload, now: datetime
    ) -> GroupPingResult:
        group_id, group_name = group.id, group.name
        frequency, interval_mode = group.frequency, group.interval_mode
        quiet_start, quiet_end = group.quiet_hours_start, group.quiet_hours_end

        result = GroupPingResult(group_id=group_id, group_name=group_name)
        counts = FanoutCounts()

        try:
            counts = await self.fanout.fanout_to_group(
                group_id, payload, quiet_start, quiet_end, now
            )
        except PushConfigurationError:
            raise
        except Exception as e:
            self.store.rollback()
            self.logger.error(f"Fan-out failed for group {group_id}: {str(e)}")
            result.error = str(e)

        result.sent = counts.sent
        result.failed = counts.failed
        result.skipped_quiet_hours = counts.skipped_quiet_hours

        # The schedule always advances, otherwise a failing group is retried every run
        try:
            next_ping_time = calculate_next_ping_time(
                frequency, interval_mode, now, self.uniform
            )
            await self.store.update_group_schedule(group_id, now, next_ping_time)
            result.next_ping_time = next_ping_time
        except Exception as e:
            self.store.rollback()
            self.logger.error(f"Failed to reschedule group {group_id}: {str(e)}")
            result.error = result.error or str(e)

        self.logger.info(
            f"Pinged group {group_name}: sent={result.sent}, failed={result.failed}, "
            f"skipped_quiet_hours={result.skipped_quiet_hours}, next={result.next_ping_time}"
        )

        return result

    async def _ping_solo_users(self, summary: RunSummary, payload: PushPayload) -> None:
        solo_users = await self.store.get_solo_users_with_endpoints()
        totals = summary.solo_users

        for user in solo_users:
            user_id = user.id
            try:
                counts = await self.fanout.deliver_all(user.push_subscriptions, payload)
                totals.sent += counts.sent
                totals.failed += counts.failed
                totals.users_processed += 1
            except PushConfigurationError:
                raise
            except Exception as e:
                self.store.rollback()
                totals.users_failed += 1
                self.logger.error(f"Failed to ping solo user {user_id}: {str(e)}")


def build_ping_orchestrator(
    db_session: Session,
    request_id: Optional[str] = None,
    uniform: Optional[UniformSource] = None,
) -> PingOrchestrator:
    """Wire the orchestrator with production collaborators."""
    store = NotificationStore(db_session)
    dispatcher = PushNotificationDispatcher(store, VapidConfig.from_settings())
    fanout = GroupFanoutCoordinator(store, dispatcher)
    return PingOrchestrator(
        store, dispatcher, fanout, uniform=uniform, request_id=request_id
    )


async def run_ping_dispatcher(
    db_session: Session,
    request_id: str,
    now: Optional[datetime] = None,
) -> RunSummary:
    """Entry point shared by the HTTP trigger and the Celery beat task."""
    orchestrator = build_ping_orchestrator(db_session, request_id=request_id)

    if not settings.PING_SINGLE_FLIGHT:
        return await orchestrator.run(now)

    with single_flight(PING_LOCK_NAME) as acquired:
        if not acquired:
            orchestrator.logger.warning(
                "Ping dispatcher already running elsewhere, skipping this run"
            )
            return RunSummary(skipped=True, timestamp=to_naive_utc(now or utc_now()))
        return await orchestrator.run(now)


async def get_schedule_status(
    db_session: Session, now: Optional[datetime] = None
) -> list:
    """Cadence configuration and schedule state of every group."""
    now = to_naive_utc(now or utc_now())
    store = NotificationStore(db_session)

    groups = await store.get_all_groups()
    member_counts = await store.get_member_counts()

    return [
        GroupScheduleStatus(
            id=group.id,
            name=group.name,
            frequency=group.frequency,
            interval_mode=group.interval_mode.value,
            quiet_hours_start=group.quiet_hours_start,
            quiet_hours_end=group.quiet_hours_end,
            last_ping_time=group.last_ping_time,
            next_ping_time=group.next_ping_time,
            is_eligible_now=group.next_ping_time is not None
            and group.next_ping_time <= now,
            member_count=member_counts.get(group.id, 0),
        )
        for group in groups
    ]
