from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_sync_session
from app.middlewares.cron_auth import verify_cron_secret
from app.services.notifications.ping_orchestrator import (
    get_schedule_status,
    run_ping_dispatcher,
)
from app.utils.datetime_utils import isoformat_utc, naive_utc_now
from app.utils.responses import ResponseBuilder

cron_router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@cron_router.api_route("/ping", methods=["GET", "POST"])
async def ping_dispatcher(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Run one pass of the check-in ping dispatcher.

    Called by an external scheduler with `Authorization: Bearer <CRON_SECRET>`.
    Returns the run summary with per-group counts and next ping times.
    """
    summary = await run_ping_dispatcher(db, request_id=request.state.request_id)

    if summary.skipped:
        return ResponseBuilder.warning(
            request=request,
            data=summary.model_dump(by_alias=True),
            message="Ping dispatcher already running, run skipped",
            warnings=["A previous run still holds the dispatcher lock"],
        )

    failed_groups = summary.failed_groups
    if failed_groups:
        return ResponseBuilder.warning(
            request=request,
            data=summary.model_dump(by_alias=True),
            message=f"Processed {summary.groups_processed} groups with errors",
            warnings=[f"{item.group_name}: {item.error}" for item in failed_groups],
        )

    return ResponseBuilder.success(
        request=request,
        data=summary.model_dump(by_alias=True),
        message=f"Processed {summary.groups_processed} groups, initialized {summary.groups_initialized}",
    )


@cron_router.get("/status")
async def schedule_status(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """List every group's cadence and whether it is due right now."""
    now = naive_utc_now()
    groups = await get_schedule_status(db, now)

    return ResponseBuilder.success(
        request=request,
        data={
            "now": isoformat_utc(now),
            "groups": [group.model_dump(by_alias=True) for group in groups],
        },
        message=f"Retrieved schedule status for {len(groups)} groups",
    )
