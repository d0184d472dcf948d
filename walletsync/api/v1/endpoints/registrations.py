"""
Wallet registration endpoint: records that a pass was added to a wallet.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session
from walletsync.api.deps import get_db
from walletsync.models.schemas.registrations import RegistrationCreate, RegistrationRead
from walletsync.services.registration_ledger import upsert_registration
from walletsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/{pass_id}/register",
    response_model=RegistrationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a pass in a wallet",
)
async def register_pass(
    pass_id: str,
    body: RegistrationCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> RegistrationRead:
    """Create or refresh the registration; 201 when new, 200 when it already existed."""
    try:
        registration, created = upsert_registration(
            db,
            pass_id=pass_id,
            customer_program_id=body.customer_program_id,
            wallet=body.wallet,
            device_token=body.device_token,
        )
        db.commit()
    except LookupError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    db.refresh(registration)
    if not created:
        response.status_code = status.HTTP_200_OK
    logger.info(
        "Pass registered",
        pass_id=pass_id,
        wallet=body.wallet,
        created=created,
        request_id=getattr(request.state, "request_id", None),
    )
    return RegistrationRead.model_validate(registration)
