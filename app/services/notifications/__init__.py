from .quiet_hours import is_quiet_now
from .interval_scheduler import calculate_next_ping_time, initialize_next_ping_time
from .store import NotificationStore
from .push_dispatcher import PushNotificationDispatcher, VapidConfig
from .group_fanout import GroupFanoutCoordinator
from .ping_orchestrator import PingOrchestrator, run_ping_dispatcher

__all__ = [
    "is_quiet_now",
    "calculate_next_ping_time",
    "initialize_next_ping_time",
    "NotificationStore",
    "PushNotificationDispatcher",
    "VapidConfig",
    "GroupFanoutCoordinator",
    "PingOrchestrator",
    "run_ping_dispatcher",
]
