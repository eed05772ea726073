import asyncio
from datetime import datetime
from typing import List, Optional

from app.config.settings import settings
from app.db.models import PushSubscription
from app.schemas.push_schemas import FanoutCounts, PushPayload
from app.services.notifications.push_dispatcher import PushNotificationDispatcher
from app.services.notifications.quiet_hours import is_quiet_now
from app.services.notifications.store import NotificationStore
from app.utils.errors import PushConfigurationError
from app.utils.logging import get_logger

logger = get_logger()


class GroupFanoutCoordinator:
    """Sends one payload to every reachable member endpoint of a group."""

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: PushNotificationDispatcher,
        max_concurrency: int = settings.PUSH_MAX_CONCURRENCY,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.max_concurrency = max(1, max_concurrency)

    async def deliver_all(
        self, subscriptions: List[PushSubscription], payload: PushPayload
    ) -> FanoutCounts:
        """Dispatch to each endpoint independently, at most `max_concurrency` at a time."""
        counts = FanoutCounts()
        if not subscriptions:
            return counts

        owners = [s.user_id for s in subscriptions]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _deliver(subscription: PushSubscription):
            async with semaphore:
                return await self.dispatcher.send(subscription, payload)

        # Settle every send before counting
        results = await asyncio.gather(
            *(_deliver(s) for s in subscriptions), return_exceptions=True
        )

        for owner, result in zip(owners, results):
            if isinstance(result, PushConfigurationError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Delivery to user {owner} raised: {str(result)}")
                counts.failed += 1
            elif result.success:
                counts.sent += 1
            else:
                counts.failed += 1

        return counts

    async def fanout_to_group(
        self,
        group_id: str,
        payload: PushPayload,
        quiet_start: Optional[int],
        quiet_end: Optional[int],
        now: Optional[datetime] = None,
    ) -> FanoutCounts:
        """
        Notify every member of a group, honouring quiet hours in each member's timezone.

        Args:
            group_id: Group to notify
            payload: Check-in payload
            quiet_start: Group quiet window start hour, or None
            quiet_end: Group quiet window end hour, or None
            now: Reference instant for the quiet hours check

        Returns:
            FanoutCounts: sent/failed per endpoint, skipped_quiet_hours per member
        """
        members = await self.store.get_group_members(group_id)

        skipped = 0
        targets: List[PushSubscription] = []

        for member in members:
            if not member.push_subscriptions:
                continue
            if is_quiet_now(quiet_start, quiet_end, member.timezone, now):
                skipped += 1
                continue
            targets.extend(member.push_subscriptions)

        counts = await self.deliver_all(targets, payload)
        counts.skipped_quiet_hours = skipped

        logger.info(
            f"Group {group_id} fan-out: members={len(members)}, sent={counts.sent}, "
            f"failed={counts.failed}, skipped_quiet_hours={skipped}"
        )

        return counts
