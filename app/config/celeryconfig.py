from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration. Quiet hours are evaluated per user, so beat runs in UTC.
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# A ping run that dies halfway is picked up by the next beat tick, not redelivered.
task_acks_late = False
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 0

beat_schedule = {
    # Check-in pings - every few minutes
    "ping-dispatcher": {
        "task": "app.tasks.cron.ping_dispatcher.ping_dispatcher_task",
        "schedule": crontab(minute=f"*/{settings.PING_CRON_MINUTES}"),
        "args": ("ping_dispatcher_cron",),
    },
}

# Default Queue
task_default_queue = "vibecheck"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
