import secrets
from typing import Optional

from fastapi import Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import settings
from app.utils.errors import AuthenticationError


class CronSecretBearer(HTTPBearer):
    """Bearer check for scheduler-only endpoints, compared against CRON_SECRET."""

    def __init__(self, secret: Optional[str] = None):
        # Missing headers are reported through AuthenticationError, not HTTPBearer's 403
        super().__init__(auto_error=False)
        self._secret = secret

    @property
    def secret(self) -> Optional[str]:
        return self._secret if self._secret is not None else settings.CRON_SECRET

    async def __call__(self, request: Request) -> HTTPAuthorizationCredentials:
        expected = self.secret
        if not expected:
            raise AuthenticationError(
                "Cron secret is not configured", "CRON_SECRET_NOT_CONFIGURED"
            )

        credentials = await super().__call__(request)

        if not credentials:
            raise AuthenticationError(
                "Invalid authorization credentials", "INVALID_CREDENTIALS"
            )

        if credentials.scheme.lower() != "bearer":
            raise AuthenticationError("Invalid authentication scheme", "INVALID_SCHEME")

        if not secrets.compare_digest(
            credentials.credentials.encode(), expected.encode()
        ):
            raise AuthenticationError("Invalid cron secret", "INVALID_CRON_SECRET")

        return credentials


verify_cron_secret = CronSecretBearer()
