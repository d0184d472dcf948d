"""
Pydantic schemas for wallet sync jobs: typed payloads, API views and tick summaries.

Payloads keep the camelCase keys rows have always been stored with
(``objectId``, ``passId``...) so older rows still validate.
"""
from datetime import datetime
from typing import Optional, Dict, Any, Union

from pydantic import BaseModel, Field, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from walletsync.errors import ValidationError
from walletsync.models.db.enums import WalletJobType
from .base import CamelModel


class GooglePatchPayload(CamelModel):
    object_id: str = Field(alias="objectId", min_length=1, description="Google Wallet object id")
    balance: int = Field(description="Points balance to write to the object")


class ApplePassRegeneratePayload(CamelModel):
    pass_id: str = Field(alias="passId", min_length=1)
    registration_id: Optional[int] = Field(None, alias="registrationId")
    device_token: Optional[str] = Field(None, alias="deviceToken", description="APNs push token; no push when absent")


class ApplePushPayload(CamelModel):
    serial_number: str = Field(alias="serialNumber", min_length=1)
    device_token: str = Field(alias="deviceToken", min_length=1)
    pass_id: Optional[str] = Field(None, alias="passId")


JobPayload = Union[GooglePatchPayload, ApplePassRegeneratePayload, ApplePushPayload]

PAYLOAD_MODELS: Dict[str, type] = {
    WalletJobType.GOOGLE_PATCH.value: GooglePatchPayload,
    WalletJobType.REGENERATE_PKPASS.value: ApplePassRegeneratePayload,
    WalletJobType.APPLE_PUSH.value: ApplePushPayload,
}


def is_known_job_type(job_type: str) -> bool:
    return job_type in PAYLOAD_MODELS


def parse_payload(job_type: str, payload: Any) -> JobPayload:
    """Validate ``payload`` for ``job_type`` or raise :class:`ValidationError`."""
    model = PAYLOAD_MODELS.get(job_type)
    if model is None:
        raise ValidationError(f"unknown job type {job_type!r}")
    if not isinstance(payload, dict):
        raise ValidationError(f"payload for {job_type} must be an object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"invalid {job_type} payload: {fields}") from e


def dump_payload(model: JobPayload) -> Dict[str, Any]:
    """Serialise to the stored camelCase shape, dropping unset optionals."""
    return model.model_dump(by_alias=True, exclude_none=True)


class WalletJobRead(BaseModel):
    id: str
    job_type: str
    payload: Dict[str, Any]
    status: str = Field(description="pending, failed_retryable, in_flight or done")
    outcome: Optional[str] = Field(None, description="Set once done: succeeded, given_up, abandoned_unknown_type, abandoned_not_found")
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    claimed_by: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EnqueueRequest(CamelModel):
    job_type: str = Field(alias="jobType", min_length=1)
    payload: Dict[str, Any]
    max_attempts: Optional[int] = Field(None, alias="maxAttempts", ge=1, le=50)
    delay_seconds: float = Field(0.0, alias="delaySeconds", ge=0)


class TickSummary(BaseModel):
    """Result of one scheduler tick. ``processed``/``failed``/``total`` keep the cron response shape."""
    processed: int = 0
    failed: int = 0
    total: int = 0
    succeeded: int = 0
    retried: int = 0
    given_up: int = 0
    abandoned: int = 0
    skipped: int = 0
    duration_ms: float = 0.0


class CronTickResponse(TickSummary):
    message: str = "Processed wallet push jobs"


class EnqueueResponse(BaseModel):
    id: str
    job_type: str
    status: str = "pending"


class QueueSnapshot(BaseModel):
    counts: Dict[str, int] = Field(default_factory=dict, description="Jobs per status")
    outcomes: Dict[str, int] = Field(default_factory=dict, description="Done jobs per outcome")
    due: int = 0
    oldest_due_at: Optional[datetime] = None
