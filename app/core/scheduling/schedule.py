"""
Schedule resolution.

Merges a provider's weekly template with a date-specific exception into the
effective open interval for one day. The exception always wins for whatever
it specifies; a missing template row means closed.
"""

import logging
from datetime import date
from typing import Mapping, Optional

from app.core.scheduling.models import (
    DateException,
    Location,
    ResolvedDay,
    ScheduleSource,
    WeeklyTemplate,
)

logger = logging.getLogger(__name__)


def resolve_day(
    day: date,
    templates: Mapping[int, WeeklyTemplate],
    exception: Optional[DateException] = None,
    base_location: Optional[Location] = None,
) -> ResolvedDay:
    """Resolve the effective hours and location for one date.

    Args:
        day: Calendar date (provider-local)
        templates: Weekly template rows keyed by weekday (0 = Monday)
        exception: Date exception for this exact date, if any
        base_location: Provider's registered base address

    Returns:
        ResolvedDay (closed, or with open_start/open_end)
    """
    template = templates.get(day.weekday())

    if exception is not None:
        return _resolve_with_exception(day, template, exception, base_location)

    if template is None:
        logger.debug(f"No template row for weekday {day.weekday()}, treating {day} as closed")
        return ResolvedDay.closed(day, ScheduleSource.MISSING, location=base_location)

    if template.is_closed:
        return ResolvedDay.closed(day, ScheduleSource.TEMPLATE, location=base_location)

    return ResolvedDay(
        day=day,
        is_closed=False,
        source=ScheduleSource.TEMPLATE,
        open_start=template.start_time,
        open_end=template.end_time,
        location=base_location,
    )


def _resolve_with_exception(
    day: date,
    template: Optional[WeeklyTemplate],
    exception: DateException,
    base_location: Optional[Location],
) -> ResolvedDay:
    location = exception.work_location or base_location

    if exception.is_closed:
        return ResolvedDay.closed(
            day,
            ScheduleSource.EXCEPTION,
            location=location,
            reason=exception.reason,
        )

    if exception.has_hours:
        return ResolvedDay(
            day=day,
            is_closed=False,
            source=ScheduleSource.EXCEPTION,
            open_start=exception.start_time,
            open_end=exception.end_time,
            location=location,
            work_location=exception.work_location,
        )

    # Location-only exception: hours come from the template
    if template is None or template.is_closed:
        return ResolvedDay.closed(
            day,
            ScheduleSource.EXCEPTION,
            location=location,
            reason=exception.reason,
        )

    return ResolvedDay(
        day=day,
        is_closed=False,
        source=ScheduleSource.EXCEPTION,
        open_start=template.start_time,
        open_end=template.end_time,
        location=location,
        work_location=exception.work_location,
    )
