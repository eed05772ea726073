import asyncio

from app.celery import celery
from app.db.session import get_sync_session
from app.services.notifications.ping_orchestrator import run_ping_dispatcher
from app.utils.context import new_run_id
from app.utils.errors import PushConfigurationError
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def ping_dispatcher_task(self, request_id: str):
    """
    Beat task that runs one pass of the check-in ping dispatcher.

    Failed runs are not retried; the next beat tick picks up whatever is still due.

    Args:
        request_id: Prefix for the run ID (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_ping_dispatcher(request_id))


async def _async_ping_dispatcher(request_id: str):
    run_id = new_run_id(request_id)
    logger = get_logger().bind(request_id=run_id)

    for db_session in get_sync_session():
        try:
            summary = await run_ping_dispatcher(db_session, run_id)

            return {
                "success": True,
                "skipped": summary.skipped,
                "groups_processed": summary.groups_processed,
                "groups_initialized": summary.groups_initialized,
                "failed_groups": len(summary.failed_groups),
                "solo_sent": summary.solo_users.sent,
                "solo_failed": summary.solo_users.failed,
                "request_id": run_id,
            }

        except PushConfigurationError as e:
            logger.error(f"Ping dispatcher aborted: {e.message}")
            return {
                "success": False,
                "error": e.message,
                "error_code": e.error_code,
                "request_id": run_id,
            }

        except Exception as e:
            logger.exception(f"Ping dispatcher task exception: {str(e)}")
            return {
                "success": False,
                "error": str(e),
                "request_id": run_id,
            }
