"""Tests for calendar loading against a mocked session."""

import uuid
from datetime import date, time
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.core.scheduling.repository import SchedulingRepository
from app.core.scheduling.schedule import resolve_day
from app.models.database import Provider

MONDAY = date(2025, 3, 10)
SUNDAY = date(2025, 3, 16)
PROVIDER_ID = uuid.uuid4()


def rows_result(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


def template_row(day_of_week, is_closed=False, start=time(9), end=time(17)):
    return SimpleNamespace(
        day_of_week=day_of_week, is_closed=is_closed, start_time=start, end_time=end
    )


def exception_row(day, is_closed=False, start=None, end=None, reason=None):
    return SimpleNamespace(
        exception_date=day,
        is_closed=is_closed,
        start_time=start,
        end_time=end,
        reason=reason,
        latitude=None,
        longitude=None,
        location_name=None,
        address=None,
    )


def make_repository(templates=(), exceptions=(), bookings=()):
    session = MagicMock()
    session.execute = AsyncMock(
        side_effect=[
            rows_result(list(templates)),
            rows_result(list(exceptions)),
            rows_result(list(bookings)),
        ]
    )
    repo = SchedulingRepository(session)
    repo.get_provider = AsyncMock(
        return_value=Provider(id=PROVIDER_ID, name="Anna", timezone="Europe/Stockholm")
    )
    return repo


class TestLoadCalendar:
    """Test SchedulingRepository.load_calendar."""

    @pytest.mark.asyncio
    async def test_valid_rows(self):
        repo = make_repository(
            templates=[template_row(0), template_row(6, is_closed=True, start=None, end=None)]
        )

        calendar = await repo.load_calendar(str(PROVIDER_ID), MONDAY, MONDAY)

        assert calendar.provider_id == str(PROVIDER_ID)
        assert calendar.timezone == "Europe/Stockholm"
        assert calendar.templates[0].start_time == time(9)
        assert calendar.templates[6].is_closed

    @pytest.mark.asyncio
    async def test_open_template_without_hours_loads_as_closed(self):
        repo = make_repository(
            templates=[template_row(0), template_row(6, start=None, end=None)]
        )

        calendar = await repo.load_calendar(str(PROVIDER_ID), MONDAY, SUNDAY)

        assert calendar.templates[6].is_closed
        assert not resolve_day(MONDAY, calendar.templates).is_closed
        assert resolve_day(SUNDAY, calendar.templates).is_closed

    @pytest.mark.asyncio
    async def test_inverted_template_hours_load_as_closed(self):
        repo = make_repository(templates=[template_row(0, start=time(17), end=time(9))])

        calendar = await repo.load_calendar(str(PROVIDER_ID), MONDAY, MONDAY)

        assert calendar.templates[0].is_closed

    @pytest.mark.asyncio
    async def test_out_of_range_weekday_is_skipped(self):
        repo = make_repository(templates=[template_row(0), template_row(9)])

        calendar = await repo.load_calendar(str(PROVIDER_ID), MONDAY, MONDAY)

        assert set(calendar.templates) == {0}

    @pytest.mark.asyncio
    async def test_invalid_exception_closes_the_date(self):
        repo = make_repository(
            templates=[template_row(0)],
            exceptions=[exception_row(MONDAY, start=time(12), end=None, reason="Half day")],
        )

        calendar = await repo.load_calendar(str(PROVIDER_ID), MONDAY, MONDAY)

        exception = calendar.exception_on(MONDAY)
        assert exception.is_closed
        assert exception.reason == "Half day"
        assert resolve_day(MONDAY, calendar.templates, exception).is_closed
