from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "ping_dispatcher_task",
]
