"""Shared fixtures for unit tests."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.core.scheduling.travel import TravelTimeEstimator

from routing_fakes import linear_route


@pytest.fixture
def routing_client():
    """Mock routing client with linear fake durations."""
    client = MagicMock()
    client.route = AsyncMock(side_effect=linear_route())
    return client


@pytest.fixture
def estimator(routing_client):
    """Estimator with no cache, no backoff and a short timeout."""
    return TravelTimeEstimator(
        routing_client=routing_client,
        use_cache=False,
        timeout=1.0,
        retry_backoff=0,
        max_concurrency=4,
    )
