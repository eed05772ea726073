from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update, delete, and_, exists, func
from sqlalchemy.orm import Session, selectinload

from app.db.models import Group, GroupMembership, PushSubscription, User
from app.utils.datetime_utils import to_naive_utc
from app.utils.logging import get_logger

logger = get_logger()


class NotificationStore:
    """
    Data access for the ping dispatcher: groups, their members, and push endpoints.

    Every write commits on its own so one group's schedule update never
    depends on another group's.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def rollback(self) -> None:
        self.db.rollback()

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def get_due_groups(self, now: datetime) -> List[Group]:
        """Groups whose next_ping_time is at or before `now`."""
        result = self.db.execute(
            select(Group)
            .where(
                and_(
                    Group.next_ping_time.is_not(None),
                    Group.next_ping_time <= to_naive_utc(now),
                )
            )
            .order_by(Group.next_ping_time)
        )
        return list(result.scalars().all())

    async def get_uninitialized_groups(self) -> List[Group]:
        """Groups that have never been scheduled."""
        result = self.db.execute(
            select(Group).where(Group.next_ping_time.is_(None)).order_by(Group.created_at)
        )
        return list(result.scalars().all())

    async def get_all_groups(self) -> List[Group]:
        result = self.db.execute(select(Group).order_by(Group.name))
        return list(result.scalars().all())

    async def get_member_counts(self) -> Dict[str, int]:
        result = self.db.execute(
            select(GroupMembership.group_id, func.count(GroupMembership.id)).group_by(
                GroupMembership.group_id
            )
        )
        return {group_id: count for group_id, count in result.all()}

    async def initialize_group_schedule(
        self, group_id: str, next_ping_time: datetime
    ) -> bool:
        """
        Seed next_ping_time for a never-scheduled group.

        Only applies while the column is still NULL, so a concurrent run that
        already seeded the group wins.
        """
        result = self.db.execute(
            update(Group)
            .where(and_(Group.id == group_id, Group.next_ping_time.is_(None)))
            .values(next_ping_time=to_naive_utc(next_ping_time))
        )
        self.db.commit()
        return result.rowcount > 0

    async def update_group_schedule(
        self, group_id: str, last_ping_time: datetime, next_ping_time: datetime
    ) -> None:
        """Persist the outcome of a ping: when it happened and when the next one is due."""
        self.db.execute(
            update(Group)
            .where(Group.id == group_id)
            .values(
                last_ping_time=to_naive_utc(last_ping_time),
                next_ping_time=to_naive_utc(next_ping_time),
            )
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Notification targets
    # ------------------------------------------------------------------

    async def get_group_members(self, group_id: str) -> List[User]:
        """Members of a group with their timezone and push subscriptions loaded."""
        result = self.db.execute(
            select(User)
            .join(GroupMembership, GroupMembership.user_id == User.id)
            .where(GroupMembership.group_id == group_id)
            .options(selectinload(User.push_subscriptions))
            .order_by(User.created_at, User.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    async def get_solo_users_with_endpoints(self) -> List[User]:
        """Users without any group membership that have at least one push subscription."""
        has_membership = exists().where(GroupMembership.user_id == User.id)
        has_subscription = exists().where(PushSubscription.user_id == User.id)

        result = self.db.execute(
            select(User)
            .where(and_(~has_membership, has_subscription))
            .options(selectinload(User.push_subscriptions))
            .order_by(User.created_at, User.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    # ------------------------------------------------------------------
    # Push endpoints
    # ------------------------------------------------------------------

    async def get_endpoint(self, endpoint: str) -> Optional[PushSubscription]:
        result = self.db.execute(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
        return result.scalar_one_or_none()

    async def list_endpoints_for_user(self, user_id: str) -> List[PushSubscription]:
        result = self.db.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def upsert_endpoint(
        self,
        user_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        session_id: Optional[str] = None,
    ) -> PushSubscription:
        """
        Register a push subscription.

        Re-subscribing an existing endpoint refreshes its keys and reattaches
        it to the current user and session instead of creating a duplicate.
        """
        subscription = await self.get_endpoint(endpoint)

        if subscription:
            subscription.user_id = user_id
            subscription.session_id = session_id
            subscription.p256dh = p256dh
            subscription.auth = auth
            logger.info(f"Push subscription updated for user {user_id}")
        else:
            subscription = PushSubscription(
                user_id=user_id,
                session_id=session_id,
                endpoint=endpoint,
                p256dh=p256dh,
                auth=auth,
            )
            self.db.add(subscription)
            logger.info(f"Push subscription created for user {user_id}")

        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    async def delete_endpoint(self, endpoint: str) -> int:
        """Delete a subscription by endpoint URL. Deleting a missing one is a no-op."""
        result = self.db.execute(
            delete(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
        self.db.commit()
        return result.rowcount

    async def remove_endpoint_for_user(self, user_id: str, endpoint: str) -> int:
        """Unsubscribe: only removes the endpoint if it belongs to `user_id`."""
        result = self.db.execute(
            delete(PushSubscription).where(
                and_(
                    PushSubscription.user_id == user_id,
                    PushSubscription.endpoint == endpoint,
                )
            )
        )
        self.db.commit()
        return result.rowcount

    async def delete_endpoints_for_session(self, session_id: str) -> int:
        """Drop every subscription registered under a session that has ended."""
        result = self.db.execute(
            delete(PushSubscription).where(PushSubscription.session_id == session_id)
        )
        self.db.commit()
        if result.rowcount:
            logger.info(
                f"Removed {result.rowcount} push subscription(s) for ended session"
            )
        return result.rowcount


def get_notification_store(db_session: Session) -> NotificationStore:
    """Dependency function to create NotificationStore instance"""
    return NotificationStore(db_session)
