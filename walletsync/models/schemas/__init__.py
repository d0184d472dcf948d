from .base import CamelModel
from .jobs import (
    GooglePatchPayload,
    ApplePassRegeneratePayload,
    ApplePushPayload,
    JobPayload,
    parse_payload,
    dump_payload,
    is_known_job_type,
    WalletJobRead,
    EnqueueRequest,
    TickSummary,
    CronTickResponse,
    EnqueueResponse,
    QueueSnapshot,
)
from .registrations import (
    RegistrationCreate,
    RegistrationRead,
    DeviceRegistrationRequest,
    SerialNumbersResponse,
    DeviceLogRequest,
    PointsUpdate,
    PointsUpdateResult,
)

__all__ = [
    # Base
    "CamelModel",

    # Jobs
    "GooglePatchPayload",
    "ApplePassRegeneratePayload",
    "ApplePushPayload",
    "JobPayload",
    "parse_payload",
    "dump_payload",
    "is_known_job_type",
    "WalletJobRead",
    "EnqueueRequest",
    "TickSummary",
    "CronTickResponse",
    "EnqueueResponse",
    "QueueSnapshot",

    # Registrations / PassKit / points
    "RegistrationCreate",
    "RegistrationRead",
    "DeviceRegistrationRequest",
    "SerialNumbersResponse",
    "DeviceLogRequest",
    "PointsUpdate",
    "PointsUpdateResult",
]
