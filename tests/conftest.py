# tests/conftest.py
import asyncio
import os
import sys
from typing import List, Optional

import networkx as nx
import pytest

# Add the project root directory to sys.path so that "import rescue_tracker" works
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from rescue_tracker.core.errors import ProviderNotReady  # noqa: E402
from rescue_tracker.models.tracking import (  # noqa: E402
    Coordinate,
    PositionSample,
    RouteError,
    RouteLeg,
    RouteResult,
    RouteStatus,
)
from rescue_tracker.services.geo import (  # noqa: E402
    format_distance_text,
    format_duration_text,
    haversine_distance_m,
)
from rescue_tracker.services.route_controller import RouteRefreshController  # noqa: E402

BENGALURU = Coordinate(lat=12.9716, lon=77.5946)
CHENNAI = Coordinate(lat=13.0827, lon=80.2707)


def make_result(distance_m: float = 290_120.0, duration_s: float = 18_720.0) -> RouteResult:
    leg = RouteLeg(
        distance_m=distance_m,
        distance_text=format_distance_text(distance_m),
        duration_s=duration_s,
        duration_text=format_duration_text(duration_s),
        path=[[BENGALURU.lat, BENGALURU.lon], [CHENNAI.lat, CHENNAI.lon]],
    )
    return RouteResult.from_legs("stub", [leg])


def sample(lat: float, lon: float, t_ms: int) -> PositionSample:
    return PositionSample(coordinate=Coordinate(lat=lat, lon=lon), timestamp_ms=t_ms)


class StubRouteService:
    """
    Routing provider double. Answers with the straight-line distance
    unless outcomes are queued; queued gates hold a query until released.
    """

    name = "stub"

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.calls: List[tuple] = []
        self.outcomes: List[object] = []
        self.gates: List[Optional[asyncio.Event]] = []

    def ensure_ready(self) -> None:
        if not self.ready:
            raise ProviderNotReady("stub provider is not ready")

    def fail_next(self, status: RouteStatus = RouteStatus.SERVICE_ERROR, reason: str = "boom") -> None:
        self.outcomes.append(RouteError(status=status, reason=reason))

    async def route(self, origin: Coordinate, destination: Coordinate):
        self.calls.append((origin, destination))
        gate = self.gates.pop(0) if self.gates else None
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if gate is not None:
            await gate.wait()
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            outcome = make_result(distance_m=haversine_distance_m(origin, destination))
        return outcome


class Clock:
    def __init__(self, now_ms: int = 0) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture
def route_service() -> StubRouteService:
    return StubRouteService()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def controller(route_service, clock) -> RouteRefreshController:
    return RouteRefreshController(
        route_service,
        recompute_distance_m=20.0,
        recompute_interval_ms=10_000,
        route_timeout_s=1.0,
        max_notices=5,
        clock=clock,
    )


@pytest.fixture
def milan_graph() -> nx.MultiDiGraph:
    """
    Very small road graph near Milan: chain 1 -> 2 -> 3 plus a longer
    direct edge 1 -> 3, and an unreachable node 4.
    """
    G = nx.MultiDiGraph()
    G.add_node(1, x=9.19, y=45.4642)
    G.add_node(2, x=9.22, y=45.4720)
    G.add_node(3, x=9.25, y=45.4800)
    G.add_node(4, x=9.30, y=45.5000)

    G.add_edge(1, 2, length=1000.0)
    G.add_edge(2, 3, length="1500.0")
    G.add_edge(1, 3, length=2600.0)
    return G
