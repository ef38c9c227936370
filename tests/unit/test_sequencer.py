"""Tests for nearest-neighbor route sequencing."""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from app.core.errors import ValidationError
from app.core.scheduling.models import Location, RouteStopInput
from app.core.scheduling.sequencer import RouteSequencer
from app.infra.routing import RoutingError

from routing_fakes import linear_route

START = Location(59.0, 18.0, name="Home")
START_TIME = datetime(2025, 3, 10, 7, 0, tzinfo=timezone.utc)


def stop(stop_id: str, lon: float, minutes: int = 30, sequence: int = 0) -> RouteStopInput:
    return RouteStopInput(
        id=stop_id,
        location=Location(59.0, lon, name=stop_id),
        estimated_duration_min=minutes,
        sequence=sequence,
    )


class TestRouteSequencer:
    """Test RouteSequencer."""

    @pytest.fixture
    def sequencer(self, estimator):
        return RouteSequencer(estimator=estimator)

    @pytest.fixture
    def stops(self):
        # Created far-first so ordering must come from distances
        return [
            stop("far", 18.3, sequence=0),
            stop("near", 18.1, sequence=1),
            stop("middle", 18.2, sequence=2),
        ]

    @pytest.mark.asyncio
    async def test_nearest_neighbor_order(self, sequencer, stops):
        route = await sequencer.sequence(stops, START, START_TIME)

        assert [s.stop_id for s in route.stops] == ["near", "middle", "far"]
        assert [s.stop_order for s in route.stops] == [0, 1, 2]
        assert not route.is_estimated

    @pytest.mark.asyncio
    async def test_etas_accumulate_travel_and_service(self, sequencer, stops):
        """0.1 degrees is 1000 s of driving; each stop takes 30 minutes."""
        route = await sequencer.sequence(stops, START, START_TIME)

        first, second = route.stops[0], route.stops[1]
        assert first.estimated_arrival == START_TIME + timedelta(seconds=1000)
        assert first.estimated_departure == first.estimated_arrival + timedelta(minutes=30)
        assert second.estimated_arrival == first.estimated_departure + timedelta(seconds=1000)
        assert route.ends_at == route.stops[-1].estimated_departure
        assert route.total_duration_minutes == round((3000 + 90 * 60) / 60)

    @pytest.mark.asyncio
    async def test_ties_broken_by_creation_order(self, sequencer):
        stops = [
            stop("second", 18.1, sequence=1),
            stop("first", 18.1, sequence=0),
        ]

        route = await sequencer.sequence(stops, START, START_TIME)

        assert [s.stop_id for s in route.stops] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_fixed_first_stop(self, sequencer, stops):
        route = await sequencer.sequence(stops, START, START_TIME, fixed_first_stop_id="far")

        assert [s.stop_id for s in route.stops] == ["far", "middle", "near"]

    @pytest.mark.asyncio
    async def test_unknown_fixed_first_stop(self, sequencer, stops):
        with pytest.raises(ValidationError):
            await sequencer.sequence(stops, START, START_TIME, fixed_first_stop_id="nope")

    @pytest.mark.asyncio
    async def test_routing_failure_falls_back(self, sequencer, stops, routing_client):
        """Haversine keeps the route usable and flags it as estimated."""
        routing_client.route = AsyncMock(side_effect=RoutingError("down"))

        route = await sequencer.sequence(stops, START, START_TIME)

        assert [s.stop_id for s in route.stops] == ["near", "middle", "far"]
        assert route.is_estimated
        assert all(s.is_estimated for s in route.stops)
        assert route.stops[0].estimated_arrival > START_TIME

    @pytest.mark.asyncio
    async def test_partial_fallback_flags_route(self, sequencer, stops, routing_client):
        routed = linear_route()

        async def flaky(coordinates):
            if tuple(coordinates[-1]) == (59.0, 18.3):
                raise RoutingError("no route to far")
            return await routed(coordinates)

        routing_client.route = AsyncMock(side_effect=flaky)

        route = await sequencer.sequence(stops, START, START_TIME)

        by_id = {s.stop_id: s for s in route.stops}
        assert route.is_estimated
        assert by_id["far"].is_estimated
        assert not by_id["near"].is_estimated
        assert route.stops[0].stop_id == "near"

    @pytest.mark.asyncio
    async def test_empty_route(self, sequencer):
        route = await sequencer.sequence([], START, START_TIME)

        assert route.stops == []
        assert route.ends_at == START_TIME
        assert route.total_distance_meters == 0

    @pytest.mark.asyncio
    async def test_duplicate_stop_ids(self, sequencer):
        with pytest.raises(ValidationError):
            await sequencer.sequence(
                [stop("a", 18.1), stop("a", 18.2)], START, START_TIME
            )

    @pytest.mark.asyncio
    async def test_recompute_keeps_order(self, sequencer, stops):
        route = await sequencer.recompute(stops, START, START_TIME)

        assert [s.stop_id for s in route.stops] == ["far", "near", "middle"]
        assert route.stops[0].estimated_arrival == START_TIME + timedelta(seconds=3000)
        assert route.stops[1].travel_seconds == pytest.approx(2000)

    @pytest.mark.asyncio
    async def test_to_dict(self, sequencer, stops):
        d = (await sequencer.sequence(stops, START, START_TIME)).to_dict()

        assert d["is_estimated"] is False
        assert d["stops"][0]["stop_id"] == "near"
        assert d["stops"][0]["travel_minutes"] == pytest.approx(16.7)
