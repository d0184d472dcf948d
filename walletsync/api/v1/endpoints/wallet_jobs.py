"""
Wallet job inspection and manual enqueue (operator tooling).
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from walletsync.api.deps import get_queue
from walletsync.errors import ValidationError
from walletsync.jobs.queue import WalletJobQueue
from walletsync.models.schemas.jobs import EnqueueRequest, EnqueueResponse, QueueSnapshot, WalletJobRead
from walletsync.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.get("/", response_model=List[WalletJobRead], summary="List wallet jobs")
async def list_wallet_jobs(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(pending|failed_retryable|in_flight|done)$"),
    limit: int = Query(50, ge=1, le=500),
    queue: WalletJobQueue = Depends(get_queue),
) -> List[WalletJobRead]:
    jobs = queue.list_jobs(status=status_filter, limit=limit)
    return [WalletJobRead.model_validate(job) for job in jobs]


@router.get("/snapshot", response_model=QueueSnapshot, summary="Queue depth per status")
async def queue_snapshot(queue: WalletJobQueue = Depends(get_queue)) -> QueueSnapshot:
    return queue.snapshot()


@router.get("/{job_id}", response_model=WalletJobRead, summary="Get a wallet job")
async def get_wallet_job(job_id: str, queue: WalletJobQueue = Depends(get_queue)) -> WalletJobRead:
    job = queue.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet job not found")
    return WalletJobRead.model_validate(job)


@router.post("/", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED, summary="Enqueue a wallet job")
async def enqueue_wallet_job(
    request: Request,
    body: EnqueueRequest,
    queue: WalletJobQueue = Depends(get_queue),
) -> EnqueueResponse:
    request_id = getattr(request.state, "request_id", None)
    try:
        job_id = queue.enqueue(
            body.job_type,
            body.payload,
            max_attempts=body.max_attempts,
            delay_seconds=body.delay_seconds,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    log_business_event("wallet_job_manual_enqueue", {"job_id": job_id, "job_type": body.job_type}, request_id=request_id)
    return EnqueueResponse(id=job_id, job_type=body.job_type)
