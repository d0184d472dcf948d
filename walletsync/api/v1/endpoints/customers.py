"""
Membership points changes (triggers the wallet fan-out).
"""
import time
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from walletsync.api.deps import get_db, get_queue
from walletsync.jobs.queue import WalletJobQueue
from walletsync.models.schemas.registrations import PointsUpdate, PointsUpdateResult
from walletsync.services.points import update_points
from walletsync.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.put(
    "/{customer_program_id}/points",
    response_model=PointsUpdateResult,
    summary="Change a membership's points",
)
def change_points(
    customer_program_id: int,
    body: PointsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    queue: WalletJobQueue = Depends(get_queue),
) -> PointsUpdateResult:
    """Apply set/add/subtract, then enqueue wallet sync jobs (best effort)."""
    start_time = time.time()
    try:
        program, job_ids = update_points(
            db,
            queue,
            customer_program_id,
            points=body.points,
            update_type=body.update_type,
            tier=body.tier,
            request_id=getattr(request.state, "request_id", None),
        )
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    log_performance(
        operation="change_points",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"jobs_enqueued": len(job_ids)},
    )
    return PointsUpdateResult(
        customer_program_id=program.id,
        points=program.points,
        tier=program.tier,
        jobs_enqueued=len(job_ids),
    )
