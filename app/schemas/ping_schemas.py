from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class GroupPingResult(BaseModel):
    """Per-group entry of the run summary."""

    group_id: str = Field(..., description="Group identifier")
    group_name: str = Field(..., description="Group display name")
    sent: int = Field(default=0, description="Deliveries accepted by the push service")
    failed: int = Field(default=0, description="Deliveries that failed")
    skipped_quiet_hours: int = Field(
        default=0, description="Members suppressed by quiet hours"
    )
    next_ping_time: Optional[datetime] = Field(
        default=None, description="Newly persisted next ping time"
    )
    error: Optional[str] = Field(
        default=None, description="Unexpected error raised while processing the group"
    )


class GroupInitialization(BaseModel):
    group_id: str
    group_name: str
    next_ping_time: Optional[datetime] = None
    error: Optional[str] = None


class SoloPingTotals(BaseModel):
    users_processed: int = 0
    users_failed: int = 0
    sent: int = 0
    failed: int = 0


class RunSummary(BaseModel):
    """Aggregate of one ping dispatcher invocation. Logged and returned, never stored."""

    success: bool = True
    skipped: bool = False
    timestamp: datetime
    groups_processed: int = 0
    groups_initialized: int = 0
    results: List[GroupPingResult] = Field(default_factory=list)
    initialized: List[GroupInitialization] = Field(default_factory=list)
    solo_users: SoloPingTotals = Field(default_factory=SoloPingTotals)

    @property
    def failed_groups(self) -> List[GroupPingResult]:
        return [result for result in self.results if result.error]


class GroupScheduleStatus(BaseModel):
    """Cadence and schedule state of one group, as reported by the status endpoint."""

    id: str
    name: str
    frequency: int
    interval_mode: str
    quiet_hours_start: Optional[int] = None
    quiet_hours_end: Optional[int] = None
    last_ping_time: Optional[datetime] = None
    next_ping_time: Optional[datetime] = None
    is_eligible_now: bool = False
    member_count: int = 0
