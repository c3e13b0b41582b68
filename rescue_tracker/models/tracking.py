# rescue_tracker/models/tracking.py

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    """
    Immutable latitude/longitude coordinate, in degrees.
    """
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class PositionSample(BaseModel):
    """
    One fix from a location sensor: a coordinate plus its capture time
    (epoch milliseconds).
    """
    model_config = ConfigDict(frozen=True)

    coordinate: Coordinate
    timestamp_ms: int = Field(ge=0)
    accuracy_m: Optional[float] = Field(default=None, ge=0.0)


class RouteQuery(BaseModel):
    """
    Origin/destination pair submitted to a routing provider. `sequence`
    increases by one for every query issued within a session.
    """
    model_config = ConfigDict(frozen=True)

    origin: Coordinate
    destination: Coordinate
    sequence: int = 0


class RouteLeg(BaseModel):
    """
    One leg of a route with both machine values and display text.

    path is a list of [lat, lon] pairs.
    """
    distance_m: float
    distance_text: str
    duration_s: float
    duration_text: str
    path: List[List[float]] = []


class RouteResult(BaseModel):
    """
    Route returned by a provider. The summary fields are taken from the
    first leg; everything else is display-only.
    """
    provider: str
    legs: List[RouteLeg]
    distance_m: float
    distance_text: str
    duration_s: float
    duration_text: str
    sequence: int = 0
    computed_at_ms: Optional[int] = None

    @classmethod
    def from_legs(cls, provider: str, legs: List[RouteLeg]) -> "RouteResult":
        if not legs:
            raise ValueError("A route needs at least one leg.")
        first = legs[0]
        return cls(
            provider=provider,
            legs=legs,
            distance_m=first.distance_m,
            distance_text=first.distance_text,
            duration_s=first.duration_s,
            duration_text=first.duration_text,
        )


class RouteStatus(str, Enum):
    NO_ROUTE = "NO_ROUTE"
    SERVICE_ERROR = "SERVICE_ERROR"
    TIMEOUT = "TIMEOUT"
    PROVIDER_NOT_READY = "PROVIDER_NOT_READY"


class RouteError(BaseModel):
    """
    Recoverable routing failure. Returned as a value, never raised.
    """
    status: RouteStatus
    reason: str
    sequence: int = 0


class Action(str, Enum):
    IGNORE = "IGNORE"
    UPDATE_MARKER_ONLY = "UPDATE_MARKER_ONLY"
    UPDATE_MARKER_AND_RECOMPUTE = "UPDATE_MARKER_AND_RECOMPUTE"


class Notice(BaseModel):
    """
    User-visible message attached to a session (shown as a toast by clients).
    """
    level: str
    message: str
    at_ms: int


# ---------------------------------------------------------------------- #
# API payloads
# ---------------------------------------------------------------------- #


class CreateSessionRequest(BaseModel):
    """
    Request body for POST /tracking/sessions.

    destination is optional at the schema level so that a missing
    destination reaches the controller and is reported as a configuration
    error rather than a generic validation failure.
    """
    destination: Optional[Coordinate] = None
    origin: Optional[Coordinate] = None
    case_id: Optional[str] = None
    live_tracking: bool = False


class LiveTrackingRequest(BaseModel):
    enabled: bool


class SensorErrorRequest(BaseModel):
    reason: str = "Location permission denied or unavailable."


class MarkerState(BaseModel):
    title: str
    position: Optional[Coordinate] = None
    visible: bool = False


class PolylineState(BaseModel):
    path: List[List[float]] = []
    sequence: int = 0


class SessionState(BaseModel):
    """
    Snapshot of a tracking session as returned by the API.
    """
    session_id: str
    case_id: Optional[str] = None
    destination: Coordinate
    origin: Optional[Coordinate] = None
    origin_timestamp_ms: Optional[int] = None
    last_routed_origin: Optional[Coordinate] = None
    last_route_timestamp_ms: Optional[int] = None
    live_tracking: bool
    route: Optional[RouteResult] = None
    last_error: Optional[RouteError] = None
    pending_routes: int = 0
    origin_marker: MarkerState
    destination_marker: MarkerState
    route_line: PolylineState
    notices: List[Notice] = []


class PositionResponse(BaseModel):
    action: Action
    session: SessionState


class DirectionsLink(BaseModel):
    url: str
