import json
from typing import Optional

from pydantic import BaseModel, Field


class PushPayload(BaseModel):
    """Notification data sent to the service worker."""

    title: str
    body: str
    url: Optional[str] = None
    icon: Optional[str] = None
    badge: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), ensure_ascii=False)


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt. Never persisted."""

    success: bool
    error: Optional[str] = None
    endpoint_gone: bool = False


class FanoutCounts(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped_quiet_hours: int = 0


class PushTestResult(BaseModel):
    """Outcome of a test notification sent to every endpoint of one user."""

    success: bool
    sent: int = 0
    failed: int = 0
    error: Optional[str] = Field(default=None)
