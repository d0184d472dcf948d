"""
Dependencies for authentication, database sessions, and the wallet pipeline services.
"""
import secrets
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from walletsync import config
from walletsync.database import SessionLocal
from walletsync.integrations.pass_storage import FilesystemPassPublisher
from walletsync.jobs.factory import WalletServices
from walletsync.jobs.queue import WalletJobQueue
from walletsync.jobs.scheduler import WalletJobScheduler
from walletsync.models.db import Pass
from walletsync.services.registration_ledger import find_pass_by_serial
from walletsync.utils import get_logger

logger = get_logger(__name__)
bearer = HTTPBearer(auto_error=False)

APPLE_AUTH_SCHEME = "ApplePass "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> None:
    """
    Guard for the scheduler trigger and job inspection routes.

    Expects ``Authorization: Bearer <CRON_SECRET>``. With no secret configured
    every call is refused.
    """
    expected = config.CRON_SECRET
    if not expected:
        logger.warning("CRON_SECRET is not configured; refusing trigger call")
    supplied = credentials.credentials if credentials else ""
    if not expected or not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_wallet_services(request: Request) -> WalletServices:
    services = getattr(request.app.state, "wallet_services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Wallet services not initialised")
    return services


def get_queue(services: WalletServices = Depends(get_wallet_services)) -> WalletJobQueue:
    return services.queue


def get_scheduler(services: WalletServices = Depends(get_wallet_services)) -> WalletJobScheduler:
    return services.scheduler


def get_publisher(services: WalletServices = Depends(get_wallet_services)) -> FilesystemPassPublisher:
    return services.publisher


def check_pass_type(pass_type_identifier: str) -> str:
    """PassKit routes only serve our own pass type."""
    configured = config.APPLE_WALLET_SETTINGS.get("pass_type_id")
    if configured and pass_type_identifier != configured:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown pass type")
    return pass_type_identifier


def get_authenticated_pass(
    serial_number: str,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Pass:
    """
    Resolve the pass for a PassKit call authenticated with
    ``Authorization: ApplePass <authenticationToken>``.
    """
    if not authorization or not authorization.startswith(APPLE_AUTH_SCHEME):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    token = authorization[len(APPLE_AUTH_SCHEME):].strip()
    wallet_pass = find_pass_by_serial(db, serial_number)
    if wallet_pass is None or not secrets.compare_digest(token.encode(), wallet_pass.authentication_token.encode()):
        logger.warning("PassKit authentication failed", serial_number=serial_number)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return wallet_pass
