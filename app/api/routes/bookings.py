"""
Booking API Endpoints.

Creating a booking re-checks overlap under a provider lock, so two requests
for the same slot cannot both succeed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import ErrorResponse, get_repository
from app.core.scheduling.models import Location, format_time, parse_date
from app.core.scheduling.repository import SchedulingRepository
from app.core.scheduling.service import BookingService
from app.core.scheduling.state import BookingStatus
from app.models.database import Booking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    repository: SchedulingRepository = Depends(get_repository),
) -> BookingService:
    return BookingService(repository)


class BookingLocation(BaseModel):
    """Where the service takes place."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class CreateBookingRequest(BaseModel):
    """Booking request."""

    provider_id: str
    service_id: str
    customer_id: str
    date: str = Field(..., description="YYYY-MM-DD", examples=["2025-03-14"])
    start_time: str = Field(..., description="HH:MM", examples=["10:00"])
    location: Optional[BookingLocation] = None
    is_manual_booking: bool = Field(
        default=False,
        description="Entered by the provider; starts confirmed",
    )
    customer_notes: Optional[str] = Field(default=None, max_length=2000)


class BookingStatusRequest(BaseModel):
    """Booking status change."""

    status: BookingStatus
    reason: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Cancellation reason",
    )


def booking_to_dict(booking: Booking) -> dict:
    return {
        "id": str(booking.id),
        "provider_id": str(booking.provider_id),
        "service_id": str(booking.service_id),
        "customer_id": str(booking.customer_id),
        "date": booking.booking_date.isoformat(),
        "start_time": format_time(booking.start_time),
        "end_time": format_time(booking.end_time),
        "status": booking.status.value,
        "is_manual_booking": booking.is_manual_booking,
        "cancellation_reason": booking.cancellation_reason,
    }


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create booking",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        404: {"model": ErrorResponse, "description": "Provider or service not found"},
        409: {"model": ErrorResponse, "description": "Slot already taken"},
    },
)
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
) -> dict:
    """Create a booking."""
    location = None
    if request.location is not None:
        location = Location(
            latitude=request.location.latitude,
            longitude=request.location.longitude,
            address=request.location.address,
        )

    booking = await service.create_booking(
        provider_id=request.provider_id,
        service_id=request.service_id,
        customer_id=request.customer_id,
        day=parse_date(request.date),
        start_time=request.start_time,
        location=location,
        is_manual_booking=request.is_manual_booking,
        customer_notes=request.customer_notes,
    )
    return booking_to_dict(booking)


@router.patch(
    "/{booking_id}/status",
    response_model=dict,
    summary="Change booking status",
    responses={
        404: {"model": ErrorResponse, "description": "Booking not found"},
        409: {"model": ErrorResponse, "description": "Transition not allowed"},
    },
)
async def change_booking_status(
    booking_id: str,
    request: BookingStatusRequest,
    service: BookingService = Depends(get_booking_service),
) -> dict:
    """Move a booking through its lifecycle."""
    booking = await service.transition_status(booking_id, request.status, request.reason)
    return booking_to_dict(booking)
