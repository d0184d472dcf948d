"""
Apple PassKit web service (device registration and pass updates).

Devices call these routes themselves, following Apple's "Adding a Web Service
to Update Passes" protocol. Mutating routes and the pass download are
authenticated with ``Authorization: ApplePass <authenticationToken>``.
"""
from datetime import timezone
from email.utils import format_datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from walletsync.api.deps import check_pass_type, get_authenticated_pass, get_db, get_publisher
from walletsync.integrations.pass_storage import PKPASS_CONTENT_TYPE, FilesystemPassPublisher
from walletsync.models.db import Pass
from walletsync.models.schemas.registrations import DeviceLogRequest, DeviceRegistrationRequest, SerialNumbersResponse
from walletsync.services import registration_ledger
from walletsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

REGISTRATION_PATH = "/devices/{device_library_identifier}/registrations/{pass_type_identifier}/{serial_number}"


@router.post(REGISTRATION_PATH, summary="Register a device for pass updates")
async def register_device(
    device_library_identifier: str,
    serial_number: str,
    body: DeviceRegistrationRequest,
    response: Response,
    pass_type_identifier: str = Depends(check_pass_type),
    wallet_pass: Pass = Depends(get_authenticated_pass),
    db: Session = Depends(get_db),
) -> None:
    try:
        _, created = registration_ledger.stamp_push_token(
            db,
            wallet_pass=wallet_pass,
            device_library_id=device_library_identifier,
            push_token=body.push_token,
        )
        db.commit()
    except LookupError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK


@router.delete(REGISTRATION_PATH, summary="Unregister a device")
async def unregister_device(
    device_library_identifier: str,
    serial_number: str,
    pass_type_identifier: str = Depends(check_pass_type),
    wallet_pass: Pass = Depends(get_authenticated_pass),
    db: Session = Depends(get_db),
) -> Response:
    removed = registration_ledger.remove_device_registration(
        db,
        serial_number=wallet_pass.serial_number,
        device_library_id=device_library_identifier,
    )
    db.commit()
    if not removed:
        logger.debug("Unregister for unknown device", serial_number=serial_number)
    return Response(status_code=status.HTTP_200_OK)


@router.get(
    "/devices/{device_library_identifier}/registrations/{pass_type_identifier}",
    response_model=SerialNumbersResponse,
    responses={204: {"description": "No matching passes"}},
    summary="Serial numbers of updated passes on a device",
)
async def updated_serials(
    device_library_identifier: str,
    pass_type_identifier: str = Depends(check_pass_type),
    passes_updated_since: Optional[str] = Query(None, alias="passesUpdatedSince"),
    db: Session = Depends(get_db),
):
    since: Optional[int] = None
    if passes_updated_since:
        try:
            since = int(passes_updated_since)
        except ValueError:
            since = None
    serials, last_updated = registration_ledger.serials_for_device(db, device_library_identifier, since)
    if not serials:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return SerialNumbersResponse(serial_numbers=serials, last_updated=str(last_updated))


@router.get("/passes/{pass_type_identifier}/{serial_number}", summary="Latest version of a pass")
async def latest_pass(
    serial_number: str,
    pass_type_identifier: str = Depends(check_pass_type),
    wallet_pass: Pass = Depends(get_authenticated_pass),
    publisher: FilesystemPassPublisher = Depends(get_publisher),
) -> Response:
    data = publisher.load(wallet_pass.id, wallet_pass.serial_number)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pass has not been generated yet")
    headers = {}
    if wallet_pass.updated_at is not None:
        modified = wallet_pass.updated_at
        if modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        headers["Last-Modified"] = format_datetime(modified, usegmt=True)
    return Response(content=data, media_type=PKPASS_CONTENT_TYPE, headers=headers)


@router.post("/log", summary="Device error log sink")
async def device_log(body: DeviceLogRequest) -> Response:
    for line in body.logs:
        logger.warning("PassKit device log", entry=line[:500])
    return Response(status_code=status.HTTP_200_OK)
