"""
HTTP client for the driving-directions provider.

Talks to an OSRM-compatible server:
- GET /route/v1/{profile}/{lon,lat;lon,lat;...}

Pure I/O adapter. Any failure (timeout, non-2xx, code != "Ok", malformed
payload) raises RoutingError; it is never reported as "no route".
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from app.config import get_settings
from app.core.errors import UpstreamDegradedError

logger = logging.getLogger(__name__)


class RoutingError(UpstreamDegradedError):
    """Raised when the routing provider cannot answer a query."""

    error_code = "routing_unavailable"


@dataclass
class RouteResult:
    """Route between an ordered list of points."""

    distance_meters: float
    duration_seconds: float
    path: list[tuple[float, float]] = field(default_factory=list)  # (lat, lon)

    @classmethod
    def from_osrm(cls, data: dict) -> "RouteResult":
        """Create from an OSRM /route response body."""
        if not isinstance(data, dict):
            raise RoutingError("Malformed routing response")

        code = data.get("code")
        if code != "Ok":
            raise RoutingError(
                f"Routing provider returned code {code!r}",
                details={"code": code, "message": data.get("message")},
            )

        routes = data.get("routes")
        if not isinstance(routes, list) or not routes:
            raise RoutingError("Routing response contained no routes")

        route = routes[0]
        try:
            distance = float(route["distance"])
            duration = float(route["duration"])
        except (KeyError, TypeError, ValueError) as e:
            raise RoutingError(f"Malformed route entry: {e}") from e

        if distance < 0 or duration < 0:
            raise RoutingError("Routing response had negative distance or duration")

        geometry = route.get("geometry")
        coordinates = geometry.get("coordinates", []) if isinstance(geometry, dict) else []
        # OSRM returns lon,lat; convert back to lat,lon
        try:
            path = [
                (float(point[1]), float(point[0]))
                for point in coordinates
                if isinstance(point, (list, tuple)) and len(point) >= 2
            ]
        except (TypeError, ValueError) as e:
            raise RoutingError(f"Malformed route geometry: {e}") from e

        return cls(distance_meters=distance, duration_seconds=duration, path=path)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "path": [list(p) for p in self.path],
        }


class RoutingClient:
    """
    HTTP client for an OSRM routing server.

    Coordinates are accepted as (lat, lon) and converted to the lon,lat
    order OSRM expects.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        profile: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize client.

        Args:
            base_url: Routing server base URL (defaults to settings)
            profile: OSRM profile (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self.base_url = (base_url or settings.routing_base_url).rstrip("/")
        self.profile = profile or settings.routing_profile
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_path(profile: str, coordinates: Sequence[tuple[float, float]]) -> str:
        """Build the OSRM route path for (lat, lon) coordinates."""
        points = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        return f"/route/v1/{profile}/{points}"

    async def route(self, coordinates: Sequence[tuple[float, float]]) -> RouteResult:
        """Route through an ordered list of (lat, lon) points.

        Args:
            coordinates: At least two (lat, lon) pairs

        Returns:
            RouteResult with distance, duration and path

        Raises:
            ValueError: Fewer than two coordinates
            RoutingError: Upstream failure of any kind
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required")

        client = await self._get_client()
        path = self.build_path(self.profile, coordinates)

        try:
            response = await client.get(
                path,
                params={"overview": "full", "geometries": "geojson"},
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Routing request timed out: {e}")
            raise RoutingError("Routing request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Routing request failed: {e}")
            raise RoutingError(f"Routing request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(f"Routing provider returned HTTP {response.status_code}")
            raise RoutingError(
                f"Routing provider returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RoutingError("Routing response was not valid JSON") from e

        return RouteResult.from_osrm(data)

    async def check_health(self) -> bool:
        """Probe the routing server with a trivial query."""
        try:
            await self.route([(59.3293, 18.0686), (59.3326, 18.0649)])
            return True
        except RoutingError:
            return False


# Singleton
_client: Optional[RoutingClient] = None


def get_routing_client() -> RoutingClient:
    """Get singleton RoutingClient."""
    global _client
    if _client is None:
        _client = RoutingClient()
    return _client


async def close_routing_client() -> None:
    """Close the singleton client, if one was created."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
