# rescue_tracker/services/route_service.py

import asyncio
import threading
from functools import partial
from time import perf_counter
from typing import List, Optional, Protocol, Union

import networkx as nx
import requests

from rescue_tracker.core.config import Settings, settings
from rescue_tracker.core.errors import ProviderNotReady, RouteServiceError
from rescue_tracker.core.logger import logger
from rescue_tracker.models.tracking import (
    Coordinate,
    RouteError,
    RouteLeg,
    RouteResult,
    RouteStatus,
)
from rescue_tracker.services.geo import (
    decode_path,
    format_distance_text,
    format_duration_text,
)
from rescue_tracker.services.graph_manager import GraphManager

RouteOutcome = Union[RouteResult, RouteError]


class RouteService(Protocol):
    """
    Boundary to a driving-directions provider.
    """

    name: str

    def ensure_ready(self) -> None:
        """Raise ProviderNotReady if the provider cannot serve routes."""

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteOutcome:
        """Route origin -> destination. Failures come back as RouteError."""


class OsmRouteService:
    """
    Local driving routes over an OpenStreetMap road graph:
    - ensures a suitable graph is available
    - snaps origin/destination to the nearest graph nodes
    - computes the shortest path by edge length
    - builds the leg path from edge shapes where available
    """

    name = "osm"

    def __init__(
        self,
        graph_manager: Optional[GraphManager] = None,
        speed_kmh: Optional[float] = None,
    ) -> None:
        self.graph_manager = graph_manager or GraphManager()
        self.speed_kmh = settings.OSM_DEFAULT_SPEED_KMH if speed_kmh is None else speed_kmh
        # The graph may be rebuilt by any query; one query at a time.
        self._lock = threading.Lock()
        # At most one worker thread; waiting queries queue on the event loop
        self._gate: Optional[asyncio.Lock] = None
        logger.info("OsmRouteService initialised at {:.1f} km/h.", self.speed_kmh)

    @property
    def busy(self) -> bool:
        return self._gate is not None and self._gate.locked()

    def ensure_ready(self) -> None:
        if self.speed_kmh <= 0:
            raise ProviderNotReady("OSM routing needs a positive OSM_DEFAULT_SPEED_KMH.")

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteOutcome:
        """
        Run one query in a worker thread.

        A caller that times out stops waiting, but the gate stays held until
        the worker thread itself finishes, so abandoned queries never stack
        up threads behind a slow graph download.
        """
        if self._gate is None:
            self._gate = asyncio.Lock()
        gate = self._gate

        await gate.acquire()
        worker = asyncio.ensure_future(asyncio.to_thread(self.compute_route, origin, destination))
        worker.add_done_callback(partial(self._worker_done, gate))

        try:
            return await asyncio.shield(worker)
        except RouteServiceError as exc:
            return RouteError(status=exc.status, reason=exc.reason)

    @staticmethod
    def _worker_done(gate: asyncio.Lock, worker: asyncio.Future) -> None:
        gate.release()
        # Abandoned workers still have their failure collected
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("OSM worker finished with {!r}", worker.exception())

    # ------------------------------------------------------------------ #
    # Blocking implementation (runs in a worker thread)
    # ------------------------------------------------------------------ #

    def compute_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        t0 = perf_counter()

        with self._lock:
            try:
                G = self.graph_manager.ensure_graph_for_points(origin, destination)
                origin_node = self.graph_manager.find_nearest_node(origin)
                destination_node = self.graph_manager.find_nearest_node(destination)
                path: List[int] = nx.shortest_path(
                    G,
                    source=origin_node,
                    target=destination_node,
                    weight="weight",
                )
            except (nx.NetworkXNoPath, nx.NodeNotFound) as exc:
                raise RouteServiceError(RouteStatus.NO_ROUTE, str(exc) or "No route found.") from exc
            except (OSError, ValueError, RuntimeError) as exc:
                raise RouteServiceError(RouteStatus.SERVICE_ERROR, str(exc)) from exc

            coords = self._build_coordinates_from_path(G, path)
            distance_m = self._path_distance(G, path)

        duration_s = self._compute_duration_from_distance(distance_m)

        logger.info(
            "OSM route: {} nodes, distance={:.1f} m, duration={:.1f} s, took {:.2f} ms",
            len(path),
            distance_m,
            duration_s,
            (perf_counter() - t0) * 1000.0,
        )

        leg = RouteLeg(
            distance_m=distance_m,
            distance_text=format_distance_text(distance_m),
            duration_s=duration_s,
            duration_text=format_duration_text(duration_s),
            path=coords,
        )
        return RouteResult.from_legs(self.name, [leg])

    def _build_coordinates_from_path(
        self,
        G: nx.MultiDiGraph,
        path: List[int],
    ) -> List[List[float]]:
        """
        Build polyline coordinates for the route using edge geometries.

        Edges with a shapely 'geometry' contribute all their points; the
        rest fall back to straight segments between nodes. Output is
        [ [lat, lon], ... ].
        """
        if not path:
            return []

        if len(path) == 1:
            nd = G.nodes[path[0]]
            return [[nd.get("y"), nd.get("x")]]

        coords: List[List[float]] = []

        for i, (u, v) in enumerate(zip(path[:-1], path[1:])):
            edge_dict = G.get_edge_data(u, v, default=None)
            geom = None

            if edge_dict:
                # MultiDiGraph: pick the first edge key
                data = edge_dict[next(iter(edge_dict))]
                geom = data.get("geometry")

            if geom is not None:
                # shapely coords are (x, y) = (lon, lat)
                for j, (x, y) in enumerate(geom.coords):
                    if i > 0 and j == 0:
                        continue
                    coords.append([y, x])
            else:
                node_u = G.nodes[u]
                node_v = G.nodes[v]
                if i == 0:
                    coords.append([node_u.get("y"), node_u.get("x")])
                coords.append([node_v.get("y"), node_v.get("x")])

        return coords

    @staticmethod
    def _path_distance(G: nx.MultiDiGraph, path: List[int]) -> float:
        total = 0.0
        for u, v in zip(path[:-1], path[1:]):
            edge_dict = G.get_edge_data(u, v, default=None)
            if not edge_dict:
                continue
            w = edge_dict[next(iter(edge_dict))].get("weight")
            if isinstance(w, (int, float)):
                total += float(w)
        return total

    def _compute_duration_from_distance(self, distance_m: float) -> float:
        if distance_m <= 0:
            return 0.0
        return distance_m / (self.speed_kmh * 1000.0 / 3600.0)


class DirectionsRouteService:
    """
    Google Directions API client (driving, best-guess traffic, no alternatives).
    """

    name = "google"

    NO_ROUTE_STATUSES = frozenset({"ZERO_RESULTS", "NOT_FOUND"})

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.base_url = base_url or settings.GOOGLE_DIRECTIONS_URL
        self.timeout_s = settings.ROUTE_TIMEOUT_S if timeout_s is None else timeout_s
        self.session = session or requests.Session()

    def ensure_ready(self) -> None:
        if not self.api_key:
            raise ProviderNotReady(
                "Google Maps API key is not configured (GOOGLE_MAPS_API_KEY)."
            )

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteOutcome:
        try:
            return await asyncio.to_thread(self.fetch_route, origin, destination)
        except RouteServiceError as exc:
            return RouteError(status=exc.status, reason=exc.reason)

    def fetch_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        params = {
            "origin": f"{origin.lat},{origin.lon}",
            "destination": f"{destination.lat},{destination.lon}",
            "mode": "driving",
            "departure_time": "now",
            "traffic_model": "best_guess",
            "alternatives": "false",
            "key": self.api_key,
        }

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout_s)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise RouteServiceError(RouteStatus.SERVICE_ERROR, f"Directions request failed: {exc}") from exc
        except ValueError as exc:
            raise RouteServiceError(RouteStatus.SERVICE_ERROR, "Directions response is not JSON.") from exc

        return self.parse_directions(data)

    def parse_directions(self, data: dict) -> RouteResult:
        """
        Turn a Directions API payload into a RouteResult built from the
        first leg of the first route.
        """
        status = data.get("status", "UNKNOWN_ERROR")
        if status in self.NO_ROUTE_STATUSES:
            raise RouteServiceError(RouteStatus.NO_ROUTE, status)
        if status != "OK":
            message = data.get("error_message")
            raise RouteServiceError(
                RouteStatus.SERVICE_ERROR,
                f"{status}: {message}" if message else status,
            )

        routes = data.get("routes") or []
        if not routes or not routes[0].get("legs"):
            raise RouteServiceError(RouteStatus.NO_ROUTE, "ZERO_RESULTS")

        route = routes[0]
        try:
            path = decode_path(route.get("overview_polyline", {}).get("points", ""))
        except ValueError:
            logger.warning("Could not decode overview polyline; route drawn without a path.")
            path = []

        legs: List[RouteLeg] = []
        for leg in route["legs"]:
            distance = leg.get("distance") or {}
            # duration_in_traffic is present when departure_time is set
            duration = leg.get("duration_in_traffic") or leg.get("duration") or {}
            distance_m = float(distance.get("value", 0.0))
            duration_s = float(duration.get("value", 0.0))
            legs.append(
                RouteLeg(
                    distance_m=distance_m,
                    distance_text=distance.get("text") or format_distance_text(distance_m),
                    duration_s=duration_s,
                    duration_text=duration.get("text") or format_duration_text(duration_s),
                    path=path if not legs else [],
                )
            )

        return RouteResult.from_legs(self.name, legs)


def build_route_service(config: Settings = settings) -> RouteService:
    """
    Pick the routing provider named by ROUTING_PROVIDER.
    """
    provider = config.ROUTING_PROVIDER.lower()
    if provider == "osm":
        return OsmRouteService(
            GraphManager(max_radius_m=config.OSM_MAX_GRAPH_RADIUS_M),
            speed_kmh=config.OSM_DEFAULT_SPEED_KMH,
        )
    if provider == "google":
        return DirectionsRouteService(
            api_key=config.GOOGLE_MAPS_API_KEY,
            base_url=config.GOOGLE_DIRECTIONS_URL,
            timeout_s=config.ROUTE_TIMEOUT_S,
        )
    raise ProviderNotReady(f"Unknown routing provider: {config.ROUTING_PROVIDER!r}")
