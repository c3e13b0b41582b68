# rescue_tracker/services/graph_manager.py
from typing import Any, Callable, Optional, Tuple

import networkx as nx
import osmnx as ox

from rescue_tracker.core.config import settings
from rescue_tracker.core.logger import logger
from rescue_tracker.models.tracking import Coordinate
from rescue_tracker.services.geo import haversine_distance_m

# (center_lat, center_lon, radius_m) -> drivable graph
GraphLoader = Callable[[float, float, float], nx.MultiDiGraph]


def download_drive_graph(center_lat: float, center_lon: float, radius_m: float) -> nx.MultiDiGraph:
    """
    Download a drivable OSM graph around a point.
    """
    return ox.graph_from_point(
        center_point=(center_lat, center_lon),
        dist=radius_m,
        network_type="drive",
        simplify=True,
    )


class GraphManager:
    # Holds the road graph used for local routing, rebuilt when a query leaves its bbox.

    def __init__(
        self,
        loader: Optional[GraphLoader] = None,
        max_radius_m: Optional[float] = None,
    ) -> None:
        self.loader: GraphLoader = loader or download_drive_graph
        self.max_radius_m = settings.OSM_MAX_GRAPH_RADIUS_M if max_radius_m is None else max_radius_m
        # Current routing graph (or None if not initialised yet)
        self.graph: Optional[nx.MultiDiGraph] = None
        # Bounding box of the current graph as (north, south, east, west)
        self.bbox: Optional[Tuple[float, float, float, float]] = None
        logger.info("GraphManager initialised (graph will be built on demand).")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def ensure_graph_for_points(self, origin: Coordinate, destination: Coordinate) -> nx.MultiDiGraph:
        """
        Ensure we have a graph that covers both origin and destination.

        A responder moving toward a fixed case location keeps hitting the
        same bbox, so the graph is only rebuilt when one of the points
        falls outside it.
        """
        if self.graph is None or not self._bbox_contains_points(origin, destination):
            self._build_graph_for_points(origin, destination)
        return self.graph

    def find_nearest_node(self, coord: Coordinate) -> Any:
        """
        Find nearest node in the current graph to the given coordinate.

        Graphs without a CRS (hand-built ones) are searched directly in
        degree space; downloaded graphs go through osmnx.
        """
        if self.graph is None:
            raise RuntimeError("Graph not initialised. Call ensure_graph_for_points() first.")

        if self.graph.graph.get("crs") is None:
            nearest_node = None
            best_dist = float("inf")

            for node_id, data in self.graph.nodes(data=True):
                x = data.get("x")
                y = data.get("y")
                if x is None or y is None:
                    continue
                dx = x - coord.lon
                dy = y - coord.lat
                d2 = dx * dx + dy * dy
                if d2 < best_dist:
                    best_dist = d2
                    nearest_node = node_id

            if nearest_node is None:
                raise nx.NodeNotFound("No node with coordinates in graph.")
            return nearest_node

        node_id = ox.distance.nearest_nodes(self.graph, X=coord.lon, Y=coord.lat)
        node_data = self.graph.nodes[node_id]
        logger.debug(
            "Nearest node for ({:.6f}, {:.6f}) -> node {} ({:.6f}, {:.6f})",
            coord.lat,
            coord.lon,
            node_id,
            node_data.get("y"),
            node_data.get("x"),
        )
        return node_id

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _bbox_contains_points(self, origin: Coordinate, destination: Coordinate) -> bool:
        if self.bbox is None:
            return False

        north, south, east, west = self.bbox

        for c in (origin, destination):
            if not (south <= c.lat <= north and west <= c.lon <= east):
                return False

        return True

    def _build_graph_for_points(self, origin: Coordinate, destination: Coordinate) -> None:
        """
        Build a graph around the origin/destination midpoint with
        radius = min(1.5 * distance + 2000 m, max_radius_m).
        """
        distance_m = haversine_distance_m(origin, destination)

        # A circle of radius R only covers both endpoints if they are <= 2R apart.
        if distance_m > 2.0 * self.max_radius_m:
            logger.warning(
                "Requested OD distance ~{:.1f} m exceeds 2x max graph radius {:.1f} m; "
                "routing may fail due to limited network extent.",
                distance_m,
                self.max_radius_m,
            )

        radius_m = min(1.5 * distance_m + 2_000.0, self.max_radius_m)

        # Midpoint (approx; fine for city scale)
        center_lat = (origin.lat + destination.lat) / 2.0
        center_lon = (origin.lon + destination.lon) / 2.0

        logger.info(
            "Building road graph around ({:.6f}, {:.6f}) with radius={:.1f} m (OD distance ~{:.1f} m)",
            center_lat,
            center_lon,
            radius_m,
            distance_m,
        )

        G = self._ensure_numeric_weights(self.loader(center_lat, center_lon, radius_m))

        xs = [data.get("x") for _, data in G.nodes(data=True) if data.get("x") is not None]
        ys = [data.get("y") for _, data in G.nodes(data=True) if data.get("y") is not None]
        if xs and ys:
            self.bbox = (max(ys), min(ys), max(xs), min(xs))
        else:
            self.bbox = (center_lat + 1.0, center_lat - 1.0, center_lon + 1.0, center_lon - 1.0)

        self.graph = G

        logger.info(
            "Graph ready: {} nodes, {} edges; bbox N={:.6f}, S={:.6f}, E={:.6f}, W={:.6f}",
            G.number_of_nodes(),
            G.number_of_edges(),
            *self.bbox,
        )

    def _ensure_numeric_weights(self, G: nx.MultiDiGraph) -> nx.MultiDiGraph:
        """
        Ensure that every edge has a numeric 'weight' attribute (float, metres).
        """
        num_fixed = 0
        num_missing = 0

        for u, v, _k, data in G.edges(keys=True, data=True):
            length = data.get("length")

            if isinstance(length, str):
                try:
                    length = float(length)
                except ValueError:
                    length = None

            if length is None:
                lat_u, lon_u = G.nodes[u].get("y"), G.nodes[u].get("x")
                lat_v, lon_v = G.nodes[v].get("y"), G.nodes[v].get("x")

                if None in (lat_u, lon_u, lat_v, lon_v):
                    num_missing += 1
                    continue

                length = haversine_distance_m(
                    Coordinate(lat=lat_u, lon=lon_u),
                    Coordinate(lat=lat_v, lon=lon_v),
                )

            try:
                data["weight"] = float(length)
            except (TypeError, ValueError):
                num_missing += 1
                continue
            num_fixed += 1

        logger.info(
            "Edge weights normalised: {} edges with numeric weights, {} without valid length/coords.",
            num_fixed,
            num_missing,
        )

        return G
