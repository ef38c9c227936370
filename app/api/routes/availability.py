"""
Availability API Endpoints.

Read-only slot queries for a provider, optionally filtered by whether the
provider can drive to the customer in time.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.dependencies import ErrorResponse, get_repository
from app.config import settings
from app.core.errors import ValidationError
from app.core.scheduling.engine import AvailabilityEngine
from app.core.scheduling.models import Location, parse_date
from app.core.scheduling.repository import SchedulingRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Availability"])


def get_engine(
    repository: SchedulingRepository = Depends(get_repository),
) -> AvailabilityEngine:
    return AvailabilityEngine(repository)


def customer_location(lat: Optional[float], lon: Optional[float]) -> Optional[Location]:
    """Build the customer location from query params; both or neither."""
    if lat is None and lon is None:
        return None
    if lat is None or lon is None:
        raise ValidationError("lat and lon must be given together")
    return Location(latitude=lat, longitude=lon)


async def resolve_duration(
    repository: SchedulingRepository,
    duration_minutes: Optional[int],
    service_id: Optional[str],
) -> int:
    """Explicit duration wins; otherwise take it from the service."""
    if duration_minutes is not None:
        return duration_minutes
    if service_id is not None:
        service = await repository.get_service(service_id)
        return service.duration_minutes
    raise ValidationError("Either duration_minutes or service_id is required")


@router.get(
    "/{provider_id}/availability",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Day availability",
    description="Bookable slots for one provider on one date.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        404: {"model": ErrorResponse, "description": "Provider not found"},
    },
)
async def day_availability(
    provider_id: str,
    date: str = Query(..., description="Provider-local date, YYYY-MM-DD"),
    duration_minutes: Optional[int] = Query(default=None, description="Service length"),
    service_id: Optional[str] = Query(default=None, description="Take duration from service"),
    lat: Optional[float] = Query(default=None, description="Customer latitude"),
    lon: Optional[float] = Query(default=None, description="Customer longitude"),
    repository: SchedulingRepository = Depends(get_repository),
    engine: AvailabilityEngine = Depends(get_engine),
) -> dict:
    """Get availability for a single day."""
    day = parse_date(date)
    location = customer_location(lat, lon)
    duration = await resolve_duration(repository, duration_minutes, service_id)

    availability = await engine.get_day_availability(provider_id, day, location, duration)
    return {"provider_id": provider_id, **availability.to_dict()}


@router.get(
    "/{provider_id}/availability/week",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Multi-day availability",
    description="Availability for consecutive days starting at `start`.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        404: {"model": ErrorResponse, "description": "Provider not found"},
    },
)
async def week_availability(
    provider_id: str,
    start: str = Query(..., description="First date, YYYY-MM-DD"),
    days: int = Query(default=7, description="Number of days"),
    duration_minutes: Optional[int] = Query(default=None),
    service_id: Optional[str] = Query(default=None),
    lat: Optional[float] = Query(default=None),
    lon: Optional[float] = Query(default=None),
    repository: SchedulingRepository = Depends(get_repository),
    engine: AvailabilityEngine = Depends(get_engine),
) -> dict:
    """Get availability for a range of days."""
    first = parse_date(start)
    location = customer_location(lat, lon)
    duration = await resolve_duration(repository, duration_minutes, service_id)

    results = await engine.get_week_availability(
        provider_id, first, days, location, duration
    )
    return {
        "provider_id": provider_id,
        "days": [day.to_dict() for day in results],
        "max_days": settings.max_week_days,
    }
