"""
Route Order API Endpoints.

Sequencing, manual reordering, stop removal and status changes for a
provider's day route.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import ErrorResponse, get_repository
from app.core.scheduling.repository import SchedulingRepository
from app.core.scheduling.service import RouteService
from app.core.scheduling.state import RouteOrderStatus, RouteStopStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["Routes"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Route or stop not found"},
    409: {"model": ErrorResponse, "description": "Transition not allowed"},
}


def get_route_service(
    repository: SchedulingRepository = Depends(get_repository),
) -> RouteService:
    return RouteService(repository)


class SequenceRequest(BaseModel):
    """Optional constraints for automatic sequencing."""

    fixed_first_stop_id: Optional[str] = Field(
        default=None,
        description="Stop that must be visited first",
    )


class ReorderRequest(BaseModel):
    """Manual stop order."""

    stop_ids: list[str] = Field(
        ...,
        description="Every stop id of the route, in the desired order",
    )


class RouteStatusRequest(BaseModel):
    """Route status change."""

    status: RouteOrderStatus


class StopStatusRequest(BaseModel):
    """Stop outcome."""

    status: RouteStopStatus
    problem_note: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Required when status is 'problem'",
    )


@router.post(
    "/{route_id}/sequence",
    response_model=dict,
    summary="Sequence route",
    description="Order stops by nearest neighbor and compute ETAs.",
    responses=_ERRORS,
)
async def sequence_route(
    route_id: str,
    request: Optional[SequenceRequest] = None,
    service: RouteService = Depends(get_route_service),
) -> dict:
    """Auto-sequence a route."""
    fixed_first = request.fixed_first_stop_id if request else None
    result = await service.sequence_route(route_id, fixed_first_stop_id=fixed_first)
    return {"route_id": route_id, **result.to_dict()}


@router.put(
    "/{route_id}/stops/order",
    response_model=dict,
    summary="Reorder stops",
    description="Apply a manual stop order; ETAs are recomputed.",
    responses=_ERRORS,
)
async def reorder_stops(
    route_id: str,
    request: ReorderRequest,
    service: RouteService = Depends(get_route_service),
) -> dict:
    """Manually reorder a route's stops."""
    result = await service.reorder_stops(route_id, request.stop_ids)
    return {"route_id": route_id, **result.to_dict()}


@router.delete(
    "/{route_id}/stops/{stop_id}",
    response_model=dict,
    summary="Remove stop",
    description="Delete a stop; remaining stops are re-packed and ETAs recomputed.",
    responses=_ERRORS,
)
async def remove_stop(
    route_id: str,
    stop_id: str,
    service: RouteService = Depends(get_route_service),
) -> dict:
    """Remove a stop from a route."""
    result = await service.remove_stop(route_id, stop_id)
    return {"route_id": route_id, **result.to_dict()}


@router.patch(
    "/{route_id}/status",
    response_model=dict,
    summary="Change route status",
    responses=_ERRORS,
)
async def change_route_status(
    route_id: str,
    request: RouteStatusRequest,
    service: RouteService = Depends(get_route_service),
) -> dict:
    """Move a route through its lifecycle."""
    route = await service.transition_status(route_id, request.status)
    return {"route_id": str(route.id), "status": route.status.value}


@router.patch(
    "/{route_id}/stops/{stop_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Report stop outcome",
    responses=_ERRORS,
)
async def change_stop_status(
    route_id: str,
    stop_id: str,
    request: StopStatusRequest,
    service: RouteService = Depends(get_route_service),
) -> dict:
    """Mark a stop completed, skipped or problem."""
    stop = await service.transition_stop_status(
        route_id,
        stop_id,
        request.status,
        problem_note=request.problem_note,
    )
    return {
        "route_id": route_id,
        "stop_id": str(stop.id),
        "status": stop.status.value,
        "problem_note": stop.problem_note,
        "actual_departure": (
            stop.actual_departure.isoformat() if stop.actual_departure else None
        ),
    }
