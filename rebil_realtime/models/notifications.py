"""Typed payloads delivered to subscribers."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class CarStatus(str, Enum):
    """Values of the `car_status` database enum."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class CarStatusChange(BaseModel):
    """A vehicle listing moved from one status to another."""

    id: str = Field(..., description="Car ID")
    old_status: Optional[CarStatus] = Field(
        default=None, description="Previous status, unknown for inserts or partial replicas"
    )
    new_status: CarStatus = Field(..., description="Current status")
    host_id: str = Field(..., description="Owning host user ID")
    make: str
    model: str
    year: int
    updated_at: str = Field(..., description="Row update timestamp as sent by the database")


class AdminNotification(BaseModel):
    """Notification shown to an administrator about a vehicle listing."""

    id: str
    type: Literal["CAR_SUBMITTED_FOR_APPROVAL", "CAR_STATUS_CHANGED"]
    car_id: str
    host_id: str
    host_name: Optional[str] = None
    host_email: Optional[str] = None
    car_make: str
    car_model: str
    car_year: int
    old_status: Optional[CarStatus] = None
    new_status: CarStatus
    timestamp: str
    read: bool = False
