from pywebpush import webpush, WebPushException
from requests.exceptions import RequestException

from app.config.settings import settings
from app.db.models import PushSubscription
from app.utils.errors import PushDeliveryError, PushGoneError

# Push services answer these when the subscription no longer exists
GONE_STATUS_CODES = (404, 410)


class WebPushTransport:
    """Blocking Web Push sender backed by pywebpush."""

    def __init__(
        self,
        ttl: int = settings.PUSH_TTL_SECONDS,
        timeout: float = settings.PUSH_TIMEOUT_SECONDS,
    ):
        self.ttl = ttl
        self.timeout = timeout

    def send(self, subscription: PushSubscription, payload_json: str, vapid) -> None:
        """
        Deliver one encrypted payload to one endpoint.

        Raises:
            PushGoneError: The push service reported the endpoint as gone (404/410)
            PushDeliveryError: Any other failure, including timeouts
        """
        try:
            webpush(
                subscription_info=subscription.subscription_info(),
                data=payload_json,
                vapid_private_key=vapid.private_key,
                vapid_claims={"sub": vapid.claims_sub},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            if response is not None and response.status_code in GONE_STATUS_CODES:
                raise PushGoneError(subscription.endpoint, response.status_code) from e
            raise PushDeliveryError(str(e)) from e
        except RequestException as e:
            raise PushDeliveryError(f"Push service unreachable: {e}") from e
