# rescue_tracker/models/session.py

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Deque, Optional, Set

from rescue_tracker.models.tracking import (
    Action,
    Coordinate,
    MarkerState,
    Notice,
    PolylineState,
    RouteError,
    RouteResult,
    SessionState,
)

if TYPE_CHECKING:
    from rescue_tracker.services.location import LocationFeed, SubscriptionHandle


class Marker:
    # Long-lived marker handle, moved in place on every fix.

    def __init__(self, title: str, position: Optional[Coordinate] = None) -> None:
        self.title = title
        self.position = position
        self.moves = 0

    def move_to(self, position: Coordinate) -> None:
        self.position = position
        self.moves += 1

    def snapshot(self) -> MarkerState:
        return MarkerState(
            title=self.title,
            position=self.position,
            visible=self.position is not None,
        )


class RoutePolyline:
    # Long-lived route line handle; the path is replaced, the object is not.

    def __init__(self) -> None:
        self.path: list = []
        self.sequence = 0

    def set_path(self, path: list, sequence: int) -> None:
        self.path = path
        self.sequence = sequence

    def snapshot(self) -> PolylineState:
        return PolylineState(path=self.path, sequence=self.sequence)


class MapHandles:
    """
    Map resources owned by one tracking session. Created once when the
    session opens and updated in place afterwards.
    """

    def __init__(self, destination: Coordinate) -> None:
        self.origin_marker = Marker("Responder")
        self.destination_marker = Marker("Rescue case", destination)
        self.route_line = RoutePolyline()


@dataclass
class TrackingSession:
    """
    Process-local state for one visit of the tracking view.
    """

    session_id: str
    destination: Coordinate
    case_id: Optional[str] = None
    origin: Optional[Coordinate] = None
    origin_timestamp_ms: Optional[int] = None
    last_routed_origin: Optional[Coordinate] = None
    last_route_timestamp_ms: Optional[int] = None
    live_tracking: bool = False
    active: bool = True
    route: Optional[RouteResult] = None
    last_error: Optional[RouteError] = None
    last_action: Optional[Action] = None
    # Sequence of the most recently issued query and of the applied result
    issued_sequence: int = 0
    applied_sequence: int = 0
    feed: Optional["LocationFeed"] = None
    subscription: Optional["SubscriptionHandle"] = None
    inflight: Set[asyncio.Task] = field(default_factory=set)
    notices: Deque[Notice] = field(default_factory=lambda: deque(maxlen=20))
    handles: MapHandles = field(init=False)

    def __post_init__(self) -> None:
        self.handles = MapHandles(self.destination)

    def next_sequence(self) -> int:
        self.issued_sequence += 1
        return self.issued_sequence

    def add_notice(self, level: str, message: str, at_ms: int) -> None:
        self.notices.append(Notice(level=level, message=message, at_ms=at_ms))

    def snapshot(self) -> SessionState:
        return SessionState(
            session_id=self.session_id,
            case_id=self.case_id,
            destination=self.destination,
            origin=self.origin,
            origin_timestamp_ms=self.origin_timestamp_ms,
            last_routed_origin=self.last_routed_origin,
            last_route_timestamp_ms=self.last_route_timestamp_ms,
            live_tracking=self.live_tracking,
            route=self.route,
            last_error=self.last_error,
            pending_routes=len(self.inflight),
            origin_marker=self.handles.origin_marker.snapshot(),
            destination_marker=self.handles.destination_marker.snapshot(),
            route_line=self.handles.route_line.snapshot(),
            notices=list(self.notices),
        )
