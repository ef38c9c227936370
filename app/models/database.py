"""
Database Models

SQLAlchemy ORM models for provider schedules, bookings and day routes.
"""

import uuid
from datetime import date, datetime, time
from typing import Optional, List

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    Time, UniqueConstraint, Enum as SQLEnum, text
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.core.scheduling.state import (
    BookingStatus,
    RouteOrderStatus,
    RouteOrderType,
    RouteStopStatus,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


def _enum(enum_cls) -> SQLEnum:
    """Store enum values (not names) so the columns read like the API."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


class Provider(Base, TimestampMixin):
    """
    Provider model (farriers, vets, instructors).

    The base address is the default start point of a day's route.
    """

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="Europe/Stockholm")
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    services: Mapped[List["Service"]] = relationship(
        "Service",
        back_populates="provider"
    )
    weekly_availability: Mapped[List["WeeklyAvailability"]] = relationship(
        "WeeklyAvailability",
        back_populates="provider"
    )
    exceptions: Mapped[List["AvailabilityException"]] = relationship(
        "AvailabilityException",
        back_populates="provider"
    )
    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="provider"
    )
    route_orders: Mapped[List["RouteOrder"]] = relationship(
        "RouteOrder",
        back_populates="provider"
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name='{self.name}')>"


class Service(Base, TimestampMixin):
    """A service a provider offers, with its duration."""

    __tablename__ = "services"
    __table_args__ = (
        Index("idx_service_provider", "provider_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    recommended_interval_weeks: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="services")

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', minutes={self.duration_minutes})>"


class WeeklyAvailability(Base, TimestampMixin):
    """
    Weekly template row. One per provider and weekday (0 = Monday).

    Rows are overwritten, never deleted; a missing row means closed.
    """

    __tablename__ = "weekly_availability"
    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", name="uq_weekly_provider_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)

    provider: Mapped["Provider"] = relationship(
        "Provider",
        back_populates="weekly_availability"
    )


class AvailabilityException(Base, TimestampMixin):
    """
    Date-specific override of the weekly template.

    May close the day, change hours, or only move where the provider works.
    """

    __tablename__ = "availability_exceptions"
    __table_args__ = (
        UniqueConstraint("provider_id", "exception_date", name="uq_exception_provider_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    exception_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="exceptions")


class Booking(Base, TimestampMixin):
    """
    Booking model.

    The customer's coordinates are frozen at booking time so later address
    changes do not move existing commitments.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_booking_provider_date", "provider_id", "booking_date"),
        Index("idx_booking_customer", "customer_id"),
        Index("idx_booking_status", "provider_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus),
        default=BookingStatus.PENDING
    )
    is_manual_booking: Mapped[bool] = mapped_column(Boolean, default=False)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="bookings")
    service: Mapped["Service"] = relationship("Service")

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, provider_id={self.provider_id}, "
            f"date={self.booking_date}, start={self.start_time}, "
            f"status={self.status.value})>"
        )


class RouteOrder(Base, TimestampMixin):
    """
    A provider's itinerary for one day.

    Owns its stops; stop_order is dense and zero-based.
    """

    __tablename__ = "route_orders"
    __table_args__ = (
        Index("idx_route_provider_date", "provider_id", "route_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    order_type: Mapped[RouteOrderType] = mapped_column(
        _enum(RouteOrderType),
        default=RouteOrderType.PROVIDER_ANNOUNCED
    )
    status: Mapped[RouteOrderStatus] = mapped_column(
        _enum(RouteOrderStatus),
        default=RouteOrderStatus.PENDING
    )
    route_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_estimated: Mapped[bool] = mapped_column(Boolean, default=False)
    total_distance_meters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="route_orders")
    stops: Mapped[List["RouteStop"]] = relationship(
        "RouteStop",
        back_populates="route_order",
        order_by="RouteStop.stop_order",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<RouteOrder(id={self.id}, provider_id={self.provider_id}, "
            f"date={self.route_date}, status={self.status.value})>"
        )


class RouteStop(Base, TimestampMixin):
    """One visit within a route order."""

    __tablename__ = "route_stops"
    __table_args__ = (
        UniqueConstraint("route_order_id", "stop_order", name="uq_route_stop_order"),
        Index("idx_route_stop_booking", "booking_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    route_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("route_orders.id", ondelete="CASCADE"),
        nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True
    )
    stop_order: Mapped[int] = mapped_column(Integer, nullable=False)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_arrival: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    estimated_duration_min: Mapped[int] = mapped_column(Integer, default=60)
    status: Mapped[RouteStopStatus] = mapped_column(
        _enum(RouteStopStatus),
        default=RouteStopStatus.PENDING
    )
    problem_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actual_departure: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    route_order: Mapped["RouteOrder"] = relationship("RouteOrder", back_populates="stops")

    def __repr__(self) -> str:
        return (
            f"<RouteStop(id={self.id}, route_order_id={self.route_order_id}, "
            f"order={self.stop_order}, status={self.status.value})>"
        )
