"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter, Depends
from walletsync.api.deps import require_cron_secret
from .endpoints import apple_web_service, cron, customers, registrations, wallet_jobs

api_router = APIRouter()

api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["cron"]
)

api_router.include_router(
    wallet_jobs.router,
    prefix="/wallet-jobs",
    tags=["wallet-jobs"],
    dependencies=[Depends(require_cron_secret)]
)

api_router.include_router(
    registrations.router,
    prefix="/passes",
    tags=["registrations"]
)

api_router.include_router(
    customers.router,
    prefix="/customers",
    tags=["customers"]
)

api_router.include_router(
    apple_web_service.router,
    prefix="/apple/v1",
    tags=["apple-web-service"]
)
