"""
E2E Smoke Tests for the Rutt Planner API.

These tests call a running instance over HTTP. Scenarios that need seeded
data read provider and service ids from the environment and are skipped
otherwise.

Scenarios:
1. Health check - verify service is up
2. Request validation - malformed dates, durations and coordinates
3. Day availability - slots for a seeded provider
4. Week availability - one entry per requested day
5. Booking - create, double-book, cancel

Usage:
    pytest tests/e2e/smoke_test_e2e.py -v
    pytest tests/e2e/smoke_test_e2e.py -v -k "availability"

Prerequisites:
    - Rutt Planner running at http://localhost:8000
    - PostgreSQL with at least one provider (E2E_PROVIDER_ID)
    - Routing server reachable (OSRM) for travel-time checks
"""

import os
import uuid
from datetime import date, timedelta

import httpx
import pytest

# Configuration from environment
PLANNER_URL = os.getenv("PLANNER_URL", "http://localhost:8000")
PROVIDER_ID = os.getenv("E2E_PROVIDER_ID", "")
SERVICE_ID = os.getenv("E2E_SERVICE_ID", "")
TIMEOUT = float(os.getenv("E2E_TIMEOUT", "30"))

requires_provider = pytest.mark.skipif(
    not PROVIDER_ID,
    reason="E2E_PROVIDER_ID not configured",
)
requires_service = pytest.mark.skipif(
    not (PROVIDER_ID and SERVICE_ID),
    reason="E2E_PROVIDER_ID / E2E_SERVICE_ID not configured",
)


def next_weekday(weekday: int = 0) -> date:
    """Next date falling on `weekday` (0 = Monday), at least a day ahead."""
    day = date.today() + timedelta(days=1)
    while day.weekday() != weekday:
        day += timedelta(days=1)
    return day


class PlannerClient:
    """Simple HTTP client for the planner API."""

    def __init__(self, base_url: str = PLANNER_URL):
        self.base_url = base_url.rstrip("/")

    def get(self, path: str, **params) -> httpx.Response:
        with httpx.Client(timeout=TIMEOUT) as client:
            return client.get(f"{self.base_url}{path}", params=params)

    def post(self, path: str, payload: dict) -> httpx.Response:
        with httpx.Client(timeout=TIMEOUT) as client:
            return client.post(f"{self.base_url}{path}", json=payload)

    def patch(self, path: str, payload: dict) -> httpx.Response:
        with httpx.Client(timeout=TIMEOUT) as client:
            return client.patch(f"{self.base_url}{path}", json=payload)


@pytest.fixture
def client():
    return PlannerClient()


# =============================================================================
# Test 1: Health Check
# =============================================================================


class TestHealthCheck:
    """Verify the service is up and responding."""

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json().get("status") == "healthy"

    def test_ready_lists_routing(self, client):
        response = client.get("/health/ready")

        assert response.status_code in (200, 503)
        assert set(response.json()["checks"]) == {"database", "redis", "routing"}


# =============================================================================
# Test 2: Request Validation
# =============================================================================


class TestValidation:
    """Malformed input is rejected before any data is read."""

    @pytest.mark.parametrize("bad_date", ["2025-02-30", "14/03/2025", "tomorrow"])
    def test_bad_date(self, client, bad_date):
        response = client.get(
            f"/providers/{uuid.uuid4()}/availability",
            date=bad_date,
            duration_minutes=60,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.parametrize("duration", [0, 5, 481])
    def test_bad_duration(self, client, duration):
        response = client.get(
            f"/providers/{uuid.uuid4()}/availability",
            date=next_weekday().isoformat(),
            duration_minutes=duration,
        )

        assert response.status_code == 400

    def test_half_a_coordinate(self, client):
        response = client.get(
            f"/providers/{uuid.uuid4()}/availability",
            date=next_weekday().isoformat(),
            duration_minutes=60,
            lat=59.3,
        )

        assert response.status_code == 400

    def test_unknown_provider(self, client):
        response = client.get(
            f"/providers/{uuid.uuid4()}/availability",
            date=next_weekday().isoformat(),
            duration_minutes=60,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


# =============================================================================
# Test 3: Day Availability
# =============================================================================


class TestDayAvailability:
    """Slots for a seeded provider."""

    @requires_provider
    def test_slots_shape(self, client):
        response = client.get(
            f"/providers/{PROVIDER_ID}/availability",
            date=next_weekday().isoformat(),
            duration_minutes=60,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"] in ("available", "fully_booked", "no_fit", "closed", "degraded")
        for slot in data["slots"]:
            assert slot["start_time"] < slot["end_time"]
            if not slot["is_available"]:
                assert slot["unavailable_reason"] in ("booked", "past", "travel_time")

    @requires_provider
    def test_customer_location_accepted(self, client):
        response = client.get(
            f"/providers/{PROVIDER_ID}/availability",
            date=next_weekday().isoformat(),
            duration_minutes=60,
            lat=59.33,
            lon=18.06,
        )

        assert response.status_code == 200
        assert "routing_degraded" in response.json()


# =============================================================================
# Test 4: Week Availability
# =============================================================================


class TestWeekAvailability:
    """Multi-day queries."""

    @requires_provider
    def test_one_entry_per_day(self, client):
        start = next_weekday()
        response = client.get(
            f"/providers/{PROVIDER_ID}/availability/week",
            start=start.isoformat(),
            days=7,
            duration_minutes=60,
        )

        assert response.status_code == 200
        days = response.json()["days"]
        assert [d["date"] for d in days] == [
            (start + timedelta(days=i)).isoformat() for i in range(7)
        ]

    @requires_provider
    @pytest.mark.parametrize("days", [0, 15])
    def test_day_bounds(self, client, days):
        response = client.get(
            f"/providers/{PROVIDER_ID}/availability/week",
            start=next_weekday().isoformat(),
            days=days,
            duration_minutes=60,
        )

        assert response.status_code == 400


# =============================================================================
# Test 5: Booking
# =============================================================================


class TestBooking:
    """Create, double-book and cancel."""

    @requires_service
    def test_double_booking_rejected(self, client):
        day = next_weekday(2)
        availability = client.get(
            f"/providers/{PROVIDER_ID}/availability",
            date=day.isoformat(),
            service_id=SERVICE_ID,
        ).json()
        free = [s for s in availability["slots"] if s["is_available"]]
        if not free:
            pytest.skip("No free slot on the test day")

        payload = {
            "provider_id": PROVIDER_ID,
            "service_id": SERVICE_ID,
            "customer_id": str(uuid.uuid4()),
            "date": day.isoformat(),
            "start_time": free[0]["start_time"],
        }
        first = client.post("/bookings", payload)
        assert first.status_code == 201
        booking_id = first.json()["id"]

        try:
            second = client.post("/bookings", {**payload, "customer_id": str(uuid.uuid4())})
            assert second.status_code == 409
        finally:
            cancelled = client.patch(
                f"/bookings/{booking_id}/status",
                {"status": "cancelled", "reason": "e2e cleanup"},
            )
            assert cancelled.json()["status"] == "cancelled"
