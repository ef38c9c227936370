"""
Travel-time estimation.

Wraps the routing client with a hard timeout, one retry, a Redis cache and
an optional straight-line fallback. Outcomes are returned as TravelEstimate
values instead of exceptions so callers can decide how to degrade:
availability fails closed, route sequencing falls back to haversine.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from app.config import get_settings
from app.core.scheduling.models import Location
from app.infra.redis import TravelCache, get_travel_cache
from app.infra.routing import RoutingClient, RoutingError, get_routing_client

logger = logging.getLogger(__name__)


class EstimateSource(str, Enum):
    """Where a travel estimate came from."""

    ROUTED = "routed"
    CACHED = "cached"
    HAVERSINE = "haversine"
    FAILED = "failed"


@dataclass(frozen=True)
class TravelEstimate:
    """Outcome of estimating travel between two points."""

    origin: Location
    destination: Location
    source: EstimateSource
    duration_seconds: Optional[float] = None
    distance_meters: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.source != EstimateSource.FAILED

    @property
    def is_fallback(self) -> bool:
        return self.source == EstimateSource.HAVERSINE

    @property
    def minutes(self) -> Optional[int]:
        """Travel time rounded up to whole minutes."""
        if self.duration_seconds is None:
            return None
        return math.ceil(self.duration_seconds / 60)


PairKey = tuple[tuple[float, float], tuple[float, float]]


def pair_key(origin: Location, destination: Location) -> PairKey:
    """Hashable key for an origin/destination pair."""
    return (origin.coordinates, destination.coordinates)


class TravelTimeEstimator:
    """
    Estimates driving time between locations.

    Features:
    - Hard per-call timeout
    - One retry with a short backoff
    - Redis cache of routed answers
    - Optional haversine fallback (distance x margin at average speed)
    """

    def __init__(
        self,
        routing_client: Optional[RoutingClient] = None,
        cache: Optional[TravelCache] = None,
        use_cache: bool = True,
        timeout: Optional[float] = None,
        retry_backoff: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        average_speed_kmh: Optional[float] = None,
        margin_factor: Optional[float] = None,
    ):
        settings = get_settings()
        self._routing_client = routing_client
        self._cache = cache
        self._use_cache = use_cache
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds
        self.retry_backoff = (
            retry_backoff
            if retry_backoff is not None
            else settings.routing_retry_backoff_seconds
        )
        self.max_concurrency = max_concurrency or settings.routing_max_concurrency
        self.average_speed_kmh = average_speed_kmh or settings.fallback_average_speed_kmh
        self.margin_factor = margin_factor or settings.fallback_margin_factor

    def _get_routing_client(self) -> RoutingClient:
        """Get routing client."""
        if self._routing_client is None:
            self._routing_client = get_routing_client()
        return self._routing_client

    async def _get_cache(self) -> Optional[TravelCache]:
        """Get travel cache, if caching is enabled."""
        if self._cache is not None:
            return self._cache
        if not self._use_cache:
            return None
        return await get_travel_cache()

    def new_limiter(self) -> asyncio.Semaphore:
        """Semaphore bounding routing calls for one engine operation."""
        return asyncio.Semaphore(self.max_concurrency)

    def haversine_estimate(self, origin: Location, destination: Location) -> TravelEstimate:
        """Straight-line estimate converted via the assumed average speed."""
        road_km = origin.distance_km_to(destination) * self.margin_factor
        duration_seconds = road_km / self.average_speed_kmh * 3600
        return TravelEstimate(
            origin=origin,
            destination=destination,
            source=EstimateSource.HAVERSINE,
            duration_seconds=duration_seconds,
            distance_meters=road_km * 1000,
        )

    async def estimate(
        self,
        origin: Location,
        destination: Location,
        fallback: bool = False,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> TravelEstimate:
        """Estimate travel between two points.

        Args:
            origin: Start point
            destination: End point
            fallback: Use haversine instead of reporting FAILED
            limiter: Semaphore bounding concurrent routing calls

        Returns:
            TravelEstimate (never raises for upstream trouble)
        """
        if origin.coordinates == destination.coordinates:
            return TravelEstimate(
                origin=origin,
                destination=destination,
                source=EstimateSource.ROUTED,
                duration_seconds=0.0,
                distance_meters=0.0,
            )

        cache = await self._get_cache()
        if cache is not None:
            cached = await cache.get(origin.coordinates, destination.coordinates)
            if cached is not None:
                duration, distance = cached
                return TravelEstimate(
                    origin=origin,
                    destination=destination,
                    source=EstimateSource.CACHED,
                    duration_seconds=duration,
                    distance_meters=distance,
                )

        try:
            if limiter is not None:
                async with limiter:
                    result = await self._route_with_retry(origin, destination)
            else:
                result = await self._route_with_retry(origin, destination)
        except RoutingError as e:
            if fallback:
                logger.info(
                    f"Routing failed for {origin.coordinates} -> "
                    f"{destination.coordinates}, using haversine estimate: {e}"
                )
                return self.haversine_estimate(origin, destination)
            return TravelEstimate(
                origin=origin,
                destination=destination,
                source=EstimateSource.FAILED,
                error=str(e),
            )

        if cache is not None:
            await cache.set(
                origin.coordinates,
                destination.coordinates,
                result.duration_seconds,
                result.distance_meters,
            )

        return TravelEstimate(
            origin=origin,
            destination=destination,
            source=EstimateSource.ROUTED,
            duration_seconds=result.duration_seconds,
            distance_meters=result.distance_meters,
        )

    async def _route_with_retry(self, origin: Location, destination: Location):
        """Call the routing client with timeout, retrying once."""
        client = self._get_routing_client()
        last_error: Optional[RoutingError] = None

        for attempt in range(2):
            try:
                return await asyncio.wait_for(
                    client.route([origin.coordinates, destination.coordinates]),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                last_error = RoutingError(f"Routing call exceeded {self.timeout}s")
            except RoutingError as e:
                last_error = e

            logger.warning(f"Routing attempt {attempt + 1} failed: {last_error}")
            if attempt == 0:
                await asyncio.sleep(self.retry_backoff)

        raise last_error or RoutingError("Routing failed")

    async def estimate_many(
        self,
        pairs: Iterable[tuple[Location, Location]],
        fallback: bool = False,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> dict[PairKey, TravelEstimate]:
        """Estimate several pairs concurrently, de-duplicating identical pairs.

        Returns:
            Estimates keyed by pair_key(origin, destination)
        """
        unique: dict[PairKey, tuple[Location, Location]] = {}
        for origin, destination in pairs:
            unique.setdefault(pair_key(origin, destination), (origin, destination))

        if not unique:
            return {}

        limiter = limiter or self.new_limiter()
        keys = list(unique)
        results = await asyncio.gather(
            *(
                self.estimate(*unique[key], fallback=fallback, limiter=limiter)
                for key in keys
            )
        )
        return dict(zip(keys, results))


# Singleton
_estimator: Optional[TravelTimeEstimator] = None


def get_travel_estimator() -> TravelTimeEstimator:
    """Get singleton TravelTimeEstimator."""
    global _estimator
    if _estimator is None:
        _estimator = TravelTimeEstimator()
    return _estimator
