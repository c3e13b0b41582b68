# tests/test_osm_route_service.py
import asyncio
import threading

import pytest

from rescue_tracker.core.errors import ProviderNotReady
from rescue_tracker.models.tracking import Coordinate, RouteError, RouteResult, RouteStatus
from rescue_tracker.services.graph_manager import GraphManager
from rescue_tracker.services.route_service import OsmRouteService

ORIGIN = Coordinate(lat=45.4642, lon=9.19)
DESTINATION = Coordinate(lat=45.48, lon=9.25)


@pytest.fixture
def loader_calls():
    return []


@pytest.fixture
def service(milan_graph, loader_calls):
    def loader(center_lat, center_lon, radius_m):
        loader_calls.append((center_lat, center_lon, radius_m))
        return milan_graph

    return OsmRouteService(GraphManager(loader=loader), speed_kmh=36.0)


def test_route_follows_shortest_chain(service):
    outcome = asyncio.run(service.route(ORIGIN, DESTINATION))

    assert isinstance(outcome, RouteResult)
    assert outcome.provider == "osm"
    # 1 -> 2 -> 3 (2500 m) beats the direct 2600 m edge
    assert outcome.distance_m == pytest.approx(2500.0)
    assert outcome.distance_text == "2.5 km"
    # 36 km/h == 10 m/s
    assert outcome.duration_s == pytest.approx(250.0)
    assert outcome.duration_text == "4 mins"
    assert outcome.legs[0].path == [[45.4642, 9.19], [45.4720, 9.22], [45.4800, 9.25]]


def test_graph_is_reused_inside_bbox(service, loader_calls):
    service.compute_route(ORIGIN, DESTINATION)
    service.compute_route(Coordinate(lat=45.47, lon=9.21), DESTINATION)

    assert len(loader_calls) == 1
    _, _, radius_m = loader_calls[0]
    assert radius_m <= service.graph_manager.max_radius_m


def test_unreachable_node_is_no_route(service):
    outcome = asyncio.run(service.route(ORIGIN, Coordinate(lat=45.5, lon=9.30)))

    assert isinstance(outcome, RouteError)
    assert outcome.status is RouteStatus.NO_ROUTE


def test_loader_failure_is_service_error():
    def loader(center_lat, center_lon, radius_m):
        raise ConnectionError("overpass unavailable")

    service = OsmRouteService(GraphManager(loader=loader))
    outcome = asyncio.run(service.route(ORIGIN, DESTINATION))

    assert isinstance(outcome, RouteError)
    assert outcome.status is RouteStatus.SERVICE_ERROR
    assert "overpass" in outcome.reason


def test_string_lengths_become_numeric_weights(service, milan_graph):
    service.compute_route(ORIGIN, DESTINATION)
    weights = [data["weight"] for _, _, data in service.graph_manager.graph.edges(data=True)]
    assert all(isinstance(w, float) for w in weights)


def test_ensure_ready_rejects_bad_speed(milan_graph):
    service = OsmRouteService(GraphManager(loader=lambda *_: milan_graph), speed_kmh=-1.0)
    with pytest.raises(ProviderNotReady):
        service.ensure_ready()


def test_zero_speed_is_kept_and_rejected(milan_graph):
    service = OsmRouteService(GraphManager(loader=lambda *_: milan_graph), speed_kmh=0.0)

    assert service.speed_kmh == 0.0
    with pytest.raises(ProviderNotReady):
        service.ensure_ready()


def test_timed_out_queries_share_one_worker(milan_graph):
    release = threading.Event()
    entered = []

    def slow_loader(center_lat, center_lon, radius_m):
        entered.append(threading.get_ident())
        release.wait(5)
        return milan_graph

    service = OsmRouteService(GraphManager(loader=slow_loader), speed_kmh=36.0)

    async def scenario():
        timeouts = 0
        for _ in range(5):
            try:
                await asyncio.wait_for(service.route(ORIGIN, DESTINATION), 0.05)
            except asyncio.TimeoutError:
                timeouts += 1
        busy = service.busy
        release.set()
        outcome = await asyncio.wait_for(service.route(ORIGIN, DESTINATION), 5)
        return timeouts, busy, outcome

    timeouts, busy, outcome = asyncio.run(scenario())

    assert timeouts == 5
    # Only the first query reached a thread; the rest waited and gave up
    assert busy is True
    assert len(entered) == 1
    assert isinstance(outcome, RouteResult)
    assert not service.busy
