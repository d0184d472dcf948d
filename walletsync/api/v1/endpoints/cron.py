"""
Scheduler trigger called by the external cron.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from walletsync.api.deps import get_scheduler, require_cron_secret
from walletsync.jobs.scheduler import WalletJobScheduler
from walletsync.models.schemas.jobs import CronTickResponse
from walletsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.api_route(
    "/wallet-jobs",
    methods=["GET", "POST"],
    response_model=CronTickResponse,
    dependencies=[Depends(require_cron_secret)],
    summary="Process due wallet push jobs",
)
def process_wallet_jobs(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Batch size override"),
    scheduler: WalletJobScheduler = Depends(get_scheduler),
) -> CronTickResponse:
    """Run one scheduler tick. Per-job failures are reported in the summary, not as errors."""
    request_id = getattr(request.state, "request_id", None)
    logger.info("Wallet job tick triggered", limit=limit, request_id=request_id)
    summary = scheduler.tick(limit)
    return CronTickResponse(**summary.model_dump())
