"""
Pydantic schemas for wallet registrations, the PassKit web service and points changes.
"""
from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ConfigDict

from .base import CamelModel


class RegistrationCreate(CamelModel):
    customer_program_id: int = Field(alias="customerProgramId")
    wallet: Literal["apple", "google"]
    device_token: Optional[str] = Field(None, alias="deviceToken")


class RegistrationRead(BaseModel):
    id: int
    pass_id: str
    customer_program_id: int
    wallet_type: str
    google_object_id: Optional[str] = None
    apple_serial_number: Optional[str] = None
    apple_device_token: Optional[str] = None
    device_library_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeviceRegistrationRequest(CamelModel):
    push_token: str = Field(alias="pushToken", min_length=1)


class SerialNumbersResponse(CamelModel):
    serial_numbers: List[str] = Field(alias="serialNumbers")
    last_updated: str = Field(alias="lastUpdated")


class DeviceLogRequest(BaseModel):
    logs: List[str] = Field(default_factory=list)


class PointsUpdate(CamelModel):
    points: int = Field(ge=0)
    update_type: Literal["set", "add", "subtract"] = Field("set", alias="updateType")
    tier: Optional[str] = Field(None, max_length=64)


class PointsUpdateResult(CamelModel):
    customer_program_id: int = Field(serialization_alias="customerProgramId")
    points: int
    tier: Optional[str] = None
    jobs_enqueued: int = Field(0, serialization_alias="jobsEnqueued")
