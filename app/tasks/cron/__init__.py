from .ping_dispatcher import ping_dispatcher_task

__all__ = [
    "ping_dispatcher_task",
]
