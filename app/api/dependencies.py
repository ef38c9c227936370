"""
Shared FastAPI dependencies and response models.
"""

from typing import Optional

from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.scheduling.repository import SchedulingRepository
from app.infra.database import get_db


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    message: str
    details: Optional[dict] = None


def get_repository(db: AsyncSession = Depends(get_db)) -> SchedulingRepository:
    """Repository bound to the request's session."""
    return SchedulingRepository(db)
