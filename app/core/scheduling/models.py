"""
Scheduling value types.

Immutable read models handed to the engine per call (templates, exceptions,
booking snapshots, locations) and the result types it produces.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from app.core.errors import ValidationError
from app.core.scheduling.state import BookingStatus, OCCUPYING_STATUSES

EARTH_RADIUS_KM = 6371.0

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])(?::([0-5][0-9]))?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# === Time helpers ===


def parse_time(value: Any) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time. Seconds are dropped."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time: {value!r}")

    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValidationError(
            f"Invalid time {value!r}, expected HH:MM (00:00-23:59)"
        )
    return time(int(match.group(1)), int(match.group(2)))


def parse_date(value: Any) -> date:
    """Parse a YYYY-MM-DD string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid date {value!r}: {e}") from e


def to_minutes(t: time) -> int:
    """Minutes since midnight."""
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    """Inverse of to_minutes. Only valid within a single day."""
    if minutes < 0 or minutes >= 24 * 60:
        raise ValidationError(f"Time out of range: {minutes} minutes")
    return time(minutes // 60, minutes % 60)


def format_time(t: Optional[time]) -> Optional[str]:
    """Format as HH:MM."""
    return t.strftime("%H:%M") if t is not None else None


# === Locations ===


@dataclass(frozen=True)
class Location:
    """A geographic point with optional display data."""

    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self) -> None:
        for label, value, bound in (
            ("latitude", self.latitude, 90.0),
            ("longitude", self.longitude, 180.0),
        ):
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValidationError(f"Invalid {label}: {value!r}")
            if not math.isfinite(value) or abs(value) > bound:
                raise ValidationError(
                    f"{label.capitalize()} must be between -{bound:g} and {bound:g}"
                )

    @classmethod
    def from_optional(
        cls,
        latitude: Optional[float],
        longitude: Optional[float],
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Optional["Location"]:
        """Build a location, or None when either coordinate is missing."""
        if latitude is None or longitude is None:
            return None
        return cls(latitude=latitude, longitude=longitude, name=name, address=address)

    @classmethod
    def from_dict(cls, data: dict) -> "Location":
        """Create from API payload dict."""
        return cls(
            latitude=data.get("latitude", data.get("lat")),
            longitude=data.get("longitude", data.get("lon", data.get("lng"))),
            name=data.get("name"),
            address=data.get("address"),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result: dict = {"latitude": self.latitude, "longitude": self.longitude}
        if self.name:
            result["name"] = self.name
        if self.address:
            result["address"] = self.address
        return result

    @property
    def coordinates(self) -> tuple[float, float]:
        """(lat, lon) pair."""
        return (self.latitude, self.longitude)

    def distance_km_to(self, other: "Location") -> float:
        """Great-circle (haversine) distance in kilometres."""
        lat1, lon1 = math.radians(self.latitude), math.radians(self.longitude)
        lat2, lon2 = math.radians(other.latitude), math.radians(other.longitude)
        d_lat = lat2 - lat1
        d_lon = lon2 - lon1

        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
        )
        return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


# === Schedule inputs ===


@dataclass(frozen=True)
class WeeklyTemplate:
    """Recurring hours for one weekday (0 = Monday)."""

    day_of_week: int
    is_closed: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    def __post_init__(self) -> None:
        if not 0 <= self.day_of_week <= 6:
            raise ValidationError(f"day_of_week must be 0-6, got {self.day_of_week}")
        if not self.is_closed:
            if self.start_time is None or self.end_time is None:
                raise ValidationError("Open weekdays need both start and end time")
            if self.start_time >= self.end_time:
                raise ValidationError("Start time must be before end time")


@dataclass(frozen=True)
class DateException:
    """Override of the weekly template for exactly one date."""

    day: date
    is_closed: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None
    work_location: Optional[Location] = None

    def __post_init__(self) -> None:
        if (self.start_time is None) != (self.end_time is None):
            raise ValidationError("Exception hours need both start and end time")
        if (
            not self.is_closed
            and self.start_time is not None
            and self.start_time >= self.end_time
        ):
            raise ValidationError("Start time must be before end time")

    @property
    def has_hours(self) -> bool:
        return self.start_time is not None and self.end_time is not None


class ScheduleSource(str, Enum):
    """Where the effective hours for a day came from."""

    EXCEPTION = "exception"
    TEMPLATE = "template"
    MISSING = "missing"


@dataclass(frozen=True)
class ResolvedDay:
    """Effective open interval for one provider on one date."""

    day: date
    is_closed: bool
    source: ScheduleSource
    open_start: Optional[time] = None
    open_end: Optional[time] = None
    location: Optional[Location] = None
    closed_reason: Optional[str] = None
    work_location: Optional[Location] = None

    @classmethod
    def closed(
        cls,
        day: date,
        source: ScheduleSource,
        location: Optional[Location] = None,
        reason: Optional[str] = None,
    ) -> "ResolvedDay":
        return cls(
            day=day,
            is_closed=True,
            source=source,
            location=location,
            closed_reason=reason,
        )


# === Bookings ===


@dataclass(frozen=True)
class BookingSnapshot:
    """A provider booking as seen by the engine for one date."""

    id: str
    day: date
    start_time: time
    end_time: time
    status: BookingStatus
    location: Optional[Location] = None

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)


@dataclass
class ProviderCalendar:
    """Everything the engine reads for one provider over a date range."""

    provider_id: str
    timezone: str
    base_location: Optional[Location] = None
    templates: dict[int, WeeklyTemplate] = field(default_factory=dict)
    exceptions: dict[date, DateException] = field(default_factory=dict)
    bookings: dict[date, list[BookingSnapshot]] = field(default_factory=dict)

    def exception_on(self, day: date) -> Optional[DateException]:
        return self.exceptions.get(day)

    def bookings_on(self, day: date) -> list[BookingSnapshot]:
        return self.bookings.get(day, [])


# === Slots ===


@dataclass(frozen=True)
class CandidateSlot:
    """A generated start/end pair, before any filtering."""

    start_time: time
    end_time: time

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)


class UnavailableReason(str, Enum):
    """Why a slot cannot be booked."""

    BOOKED = "booked"
    TRAVEL_TIME = "travel-time"
    PAST = "past"


@dataclass
class SlotAvailability:
    """A candidate slot with its availability verdict."""

    start_time: time
    end_time: time
    is_available: bool = True
    unavailable_reason: Optional[UnavailableReason] = None

    @classmethod
    def from_candidate(cls, candidate: CandidateSlot) -> "SlotAvailability":
        return cls(start_time=candidate.start_time, end_time=candidate.end_time)

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end_time)

    def mark_unavailable(self, reason: UnavailableReason) -> None:
        self.is_available = False
        self.unavailable_reason = reason

    def to_dict(self) -> dict:
        result = {
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "is_available": self.is_available,
        }
        if self.unavailable_reason is not None:
            result["unavailable_reason"] = self.unavailable_reason.value
        return result


class AvailabilitySummary(str, Enum):
    """Lets callers tell a closed day from a full or degraded one."""

    CLOSED = "closed"
    AVAILABLE = "available"
    FULLY_BOOKED = "fully_booked"
    NO_FIT = "no_fit"
    DEGRADED = "degraded"


@dataclass
class DayAvailability:
    """Availability response for one provider and date."""

    day: date
    is_closed: bool
    open_start: Optional[time] = None
    open_end: Optional[time] = None
    closed_reason: Optional[str] = None
    slots: list[SlotAvailability] = field(default_factory=list)
    routing_degraded: bool = False
    degraded_slots: int = 0

    @property
    def available_slots(self) -> list[SlotAvailability]:
        return [s for s in self.slots if s.is_available]

    @property
    def summary(self) -> AvailabilitySummary:
        if self.is_closed:
            return AvailabilitySummary.CLOSED
        if not self.slots:
            return AvailabilitySummary.NO_FIT
        if self.available_slots:
            return AvailabilitySummary.AVAILABLE
        if self.routing_degraded:
            return AvailabilitySummary.DEGRADED
        return AvailabilitySummary.FULLY_BOOKED

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "date": self.day.isoformat(),
            "is_closed": self.is_closed,
            "closed_reason": self.closed_reason,
            "open_start": format_time(self.open_start),
            "open_end": format_time(self.open_end),
            "summary": self.summary.value,
            "routing_degraded": self.routing_degraded,
            "degraded_slots": self.degraded_slots,
            "slots": [s.to_dict() for s in self.slots],
        }


# === Routes ===


@dataclass(frozen=True)
class RouteStopInput:
    """A stop to place in a route. `sequence` is the creation rank used to
    break ties."""

    id: str
    location: Location
    estimated_duration_min: int
    sequence: int = 0
    location_name: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self) -> None:
        if self.estimated_duration_min < 0:
            raise ValidationError("estimated_duration_min cannot be negative")


@dataclass
class SequencedStop:
    """A stop with its assigned order and ETA."""

    stop_id: str
    stop_order: int
    estimated_arrival: datetime
    estimated_departure: datetime
    travel_seconds: float
    distance_meters: float
    is_estimated: bool = False

    def to_dict(self) -> dict:
        return {
            "stop_id": self.stop_id,
            "stop_order": self.stop_order,
            "estimated_arrival": self.estimated_arrival.isoformat(),
            "estimated_departure": self.estimated_departure.isoformat(),
            "travel_minutes": round(self.travel_seconds / 60, 1),
            "distance_meters": round(self.distance_meters),
            "is_estimated": self.is_estimated,
        }


@dataclass
class SequencedRoute:
    """Output of the route sequencer."""

    stops: list[SequencedStop]
    start_time: datetime
    is_estimated: bool = False

    @property
    def total_distance_meters(self) -> float:
        return sum(s.distance_meters for s in self.stops)

    @property
    def ends_at(self) -> datetime:
        return self.stops[-1].estimated_departure if self.stops else self.start_time

    @property
    def total_duration_minutes(self) -> int:
        return round((self.ends_at - self.start_time).total_seconds() / 60)

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "is_estimated": self.is_estimated,
            "total_distance_meters": round(self.total_distance_meters),
            "total_duration_minutes": self.total_duration_minutes,
            "stops": [s.to_dict() for s in self.stops],
        }
