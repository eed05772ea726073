import asyncio
from typing import Optional

from app.config.settings import settings
from app.db.models import PushSubscription
from app.schemas.push_schemas import DeliveryResult, PushPayload, PushTestResult
from app.services.notifications.push_transport import WebPushTransport
from app.services.notifications.store import NotificationStore
from app.utils.errors import PushConfigurationError, PushDeliveryError, PushGoneError
from app.utils.logging import get_logger

logger = get_logger()


class VapidConfig:
    """VAPID keypair and contact claim used to sign push requests."""

    def __init__(
        self,
        public_key: Optional[str],
        private_key: Optional[str],
        claims_sub: str,
    ):
        self.public_key = public_key
        self.private_key = private_key
        self.claims_sub = claims_sub

    @classmethod
    def from_settings(cls) -> "VapidConfig":
        return cls(
            public_key=settings.VAPID_PUBLIC_KEY,
            private_key=settings.VAPID_PRIVATE_KEY,
            claims_sub=settings.VAPID_CLAIMS_SUB,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.public_key) and bool(self.private_key)

    def validate(self) -> None:
        if not self.is_configured:
            raise PushConfigurationError()


class PushNotificationDispatcher:
    """
    Delivers one payload to one endpoint per call and classifies the outcome.

    VAPID credentials are checked on the first send rather than at start-up,
    so processes that never send do not need them.
    """

    def __init__(
        self,
        store: NotificationStore,
        vapid_config: VapidConfig,
        transport: Optional[WebPushTransport] = None,
    ):
        self.store = store
        self.vapid_config = vapid_config
        self.transport = transport or WebPushTransport()
        self._configured = False

    def _ensure_configured(self) -> None:
        if self._configured:
            return
        self.vapid_config.validate()
        self._configured = True

    async def send(
        self, subscription: PushSubscription, payload: PushPayload
    ) -> DeliveryResult:
        """
        Make exactly one delivery attempt.

        Args:
            subscription: Target endpoint with its encryption keys
            payload: Notification data for the service worker

        Returns:
            DeliveryResult: success, or the failure message and whether the
            endpoint was removed as permanently invalid

        Raises:
            PushConfigurationError: VAPID keys are missing
        """
        self._ensure_configured()

        endpoint = subscription.endpoint
        user_id = subscription.user_id

        try:
            # pywebpush blocks on HTTP; keep the event loop free for other endpoints
            await asyncio.to_thread(
                self.transport.send, subscription, payload.to_json(), self.vapid_config
            )
            return DeliveryResult(success=True)

        except PushGoneError as e:
            logger.info(
                f"Push endpoint gone ({e.status_code}), removing subscription for user {user_id}"
            )
            try:
                await self.store.delete_endpoint(endpoint)
            except Exception as delete_error:
                self.store.rollback()
                logger.error(
                    f"Failed to remove gone subscription for user {user_id}: {str(delete_error)}"
                )
            return DeliveryResult(success=False, error=e.message, endpoint_gone=True)

        except PushDeliveryError as e:
            logger.warning(
                f"Push delivery failed for user {user_id}: {e.message}"
            )
            return DeliveryResult(success=False, error=e.message)

        except Exception as e:
            logger.error(
                f"Unexpected push error for user {user_id}: {str(e)}"
            )
            return DeliveryResult(success=False, error=str(e))

    async def send_test_notification(self, user_id: str) -> PushTestResult:
        """Send a test push to every endpoint the user has registered."""
        subscriptions = await self.store.list_endpoints_for_user(user_id)

        if not subscriptions:
            return PushTestResult(
                success=False, error="No push subscriptions found"
            )

        payload = PushPayload(
            title="Test Notification",
            body="Push notifications are working!",
            url="/",
            icon="/icons/icon-192x192.png",
        )

        sent = 0
        failed = 0
        last_error = None

        for subscription in subscriptions:
            result = await self.send(subscription, payload)
            if result.success:
                sent += 1
            else:
                failed += 1
                last_error = result.error

        logger.info(f"Test notification for user {user_id}: sent={sent}, failed={failed}")

        return PushTestResult(
            success=sent > 0, sent=sent, failed=failed, error=last_error
        )
