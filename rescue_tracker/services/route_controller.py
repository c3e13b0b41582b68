# rescue_tracker/services/route_controller.py

import asyncio
import math
import time
import uuid
from collections import deque
from functools import partial
from typing import Callable, Optional

from rescue_tracker.core.config import settings
from rescue_tracker.core.errors import (
    ConfigurationError,
    ProviderNotReady,
    RouteServiceError,
    SensorError,
)
from rescue_tracker.core.logger import logger
from rescue_tracker.models.session import TrackingSession
from rescue_tracker.models.tracking import (
    Action,
    Coordinate,
    PositionSample,
    RouteError,
    RouteQuery,
    RouteResult,
    RouteStatus,
)
from rescue_tracker.services.geo import haversine_distance_m
from rescue_tracker.services.location import LocationFeed
from rescue_tracker.services.route_service import RouteOutcome, RouteService


def epoch_ms() -> int:
    return int(time.time() * 1000)


class RouteRefreshController:
    """
    Keeps the route between a moving responder and a fixed case location
    current without querying the routing provider on every fix.

    A route is recomputed when the responder has moved more than
    `recompute_distance_m` from the last routed origin, or when more than
    `recompute_interval_ms` have passed since the last route. Only
    successful routes move that baseline, so a failure is retried on the
    next sample.

    All methods are meant to run on one event loop; route queries run as
    tasks on it and never block sample handling.
    """

    def __init__(
        self,
        route_service: RouteService,
        *,
        recompute_distance_m: Optional[float] = None,
        recompute_interval_ms: Optional[int] = None,
        route_timeout_s: Optional[float] = None,
        max_notices: Optional[int] = None,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.route_service = route_service
        self.recompute_distance_m = (
            settings.RECOMPUTE_DISTANCE_M if recompute_distance_m is None else recompute_distance_m
        )
        self.recompute_interval_ms = (
            settings.RECOMPUTE_INTERVAL_MS if recompute_interval_ms is None else recompute_interval_ms
        )
        self.route_timeout_s = settings.ROUTE_TIMEOUT_S if route_timeout_s is None else route_timeout_s
        self.max_notices = settings.MAX_NOTICES if max_notices is None else max_notices
        self.clock = clock
        self._provider_ready = False

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #

    def ensure_provider_ready(self) -> None:
        """
        Check once that the routing provider can serve routes.
        """
        if not self._provider_ready:
            self.route_service.ensure_ready()
            self._provider_ready = True
            logger.info("Routing provider '{}' is ready.", self.route_service.name)

    def initialize(
        self,
        destination: Optional[Coordinate],
        initial_origin: Optional[Coordinate] = None,
        *,
        case_id: Optional[str] = None,
        feed: Optional[LocationFeed] = None,
    ) -> TrackingSession:
        """
        Create a tracking session toward `destination`.

        With an `initial_origin` a baseline route query is scheduled right
        away, which needs a running event loop; await `drain()` to wait
        for it.
        """
        if destination is None:
            raise ConfigurationError(
                "Destination coordinates are missing; a tracking session needs a destination."
            )
        self.ensure_provider_ready()

        session_id = uuid.uuid4().hex
        session = TrackingSession(
            session_id=session_id,
            destination=destination,
            case_id=case_id,
            feed=feed or LocationFeed(session_id),
            notices=deque(maxlen=self.max_notices),
        )
        logger.info(
            "Tracking session {} opened toward ({:.6f}, {:.6f}) case={}",
            session_id,
            destination.lat,
            destination.lon,
            case_id,
        )

        if initial_origin is not None:
            now = self.clock()
            session.origin = initial_origin
            # No device timestamp yet; the first fix always passes the order check
            session.handles.origin_marker.move_to(initial_origin)
            self._schedule_route(session, initial_origin, now)

        return session

    def close(self, session: TrackingSession) -> None:
        """
        Stop consuming samples. Routes still in flight finish but are not applied.
        """
        self.toggle_live_tracking(session, False)
        session.active = False
        logger.info("Tracking session {} closed.", session.session_id)

    async def drain(self, session: TrackingSession) -> None:
        """Wait for every in-flight route query of the session."""
        while session.inflight:
            await asyncio.gather(*list(session.inflight), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Live tracking
    # ------------------------------------------------------------------ #

    def toggle_live_tracking(self, session: TrackingSession, enabled: bool) -> None:
        if enabled == session.live_tracking:
            return

        if enabled:
            if not session.active:
                logger.warning("Ignoring live tracking request for closed session {}.", session.session_id)
                return
            session.subscription = session.feed.subscribe(
                partial(self.handle_sample, session),
                partial(self.handle_sensor_error, session),
            )
            session.live_tracking = True
        else:
            if session.subscription is not None:
                session.feed.unsubscribe(session.subscription)
                session.subscription = None
            session.live_tracking = False

        logger.info(
            "Live tracking {} for session {}.",
            "enabled" if enabled else "disabled",
            session.session_id,
        )

    def handle_sample(self, session: TrackingSession, sample: PositionSample) -> Action:
        """
        Location feed callback: decide, then start a route query if needed.
        """
        now = self.clock()
        action = self.on_position_sample(session, sample, now)
        if action is Action.UPDATE_MARKER_AND_RECOMPUTE:
            self._schedule_route(session, sample.coordinate, now)
        session.last_action = action
        return action

    def handle_sensor_error(self, session: TrackingSession, error: SensorError) -> None:
        logger.warning("Location sensor failed for session {}: {}", session.session_id, error)
        session.add_notice(
            "error",
            f"Unable to get live position: {error}",
            self.clock(),
        )
        self.toggle_live_tracking(session, False)

    def on_position_sample(
        self,
        session: TrackingSession,
        sample: PositionSample,
        now_ms: Optional[int] = None,
    ) -> Action:
        """
        Apply a fix to the session and decide whether the route is stale.

        Elapsed time is measured on the controller clock (`now_ms`, the
        time the fix was received). The device timestamp only orders fixes
        against each other.
        """
        if not session.live_tracking or not session.active:
            return Action.IGNORE

        if session.origin_timestamp_ms is not None and sample.timestamp_ms < session.origin_timestamp_ms:
            logger.debug(
                "Session {}: dropping out-of-order sample at {} (origin at {}).",
                session.session_id,
                sample.timestamp_ms,
                session.origin_timestamp_ms,
            )
            return Action.IGNORE

        session.origin = sample.coordinate
        session.origin_timestamp_ms = sample.timestamp_ms
        session.handles.origin_marker.move_to(sample.coordinate)

        if session.last_routed_origin is not None:
            moved_m = haversine_distance_m(session.last_routed_origin, sample.coordinate)
        else:
            moved_m = math.inf
        now_ms = self.clock() if now_ms is None else now_ms
        elapsed_ms = now_ms - (session.last_route_timestamp_ms or 0)

        recompute = moved_m > self.recompute_distance_m or elapsed_ms > self.recompute_interval_ms
        logger.debug(
            "Session {}: moved={:.1f} m elapsed={} ms recompute={}",
            session.session_id,
            moved_m,
            elapsed_ms,
            recompute,
        )
        return Action.UPDATE_MARKER_AND_RECOMPUTE if recompute else Action.UPDATE_MARKER_ONLY

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    async def compute_route(
        self,
        session: TrackingSession,
        origin: Coordinate,
        requested_at_ms: Optional[int] = None,
    ) -> RouteOutcome:
        """
        Route `origin` -> session destination. Never raises; failures come
        back as RouteError and leave the throttle baseline untouched.
        """
        requested_at_ms = self.clock() if requested_at_ms is None else requested_at_ms
        return await self._run_route(session, origin, session.next_sequence(), requested_at_ms)

    def _schedule_route(self, session: TrackingSession, origin: Coordinate, requested_at_ms: int) -> asyncio.Task:
        sequence = session.next_sequence()
        task = asyncio.get_running_loop().create_task(
            self._run_route(session, origin, sequence, requested_at_ms)
        )
        session.inflight.add(task)
        task.add_done_callback(session.inflight.discard)
        return task

    async def _run_route(
        self,
        session: TrackingSession,
        origin: Coordinate,
        sequence: int,
        requested_at_ms: int,
    ) -> RouteOutcome:
        query = RouteQuery(origin=origin, destination=session.destination, sequence=sequence)
        logger.info(
            "Session {}: route #{} from ({:.6f}, {:.6f}) via {}",
            session.session_id,
            sequence,
            origin.lat,
            origin.lon,
            self.route_service.name,
        )

        try:
            outcome = await asyncio.wait_for(
                self.route_service.route(query.origin, query.destination),
                timeout=self.route_timeout_s,
            )
        except asyncio.TimeoutError:
            outcome = RouteError(
                status=RouteStatus.TIMEOUT,
                reason=f"No answer from routing provider within {self.route_timeout_s:.0f} s.",
            )
        except RouteServiceError as exc:
            outcome = RouteError(status=exc.status, reason=exc.reason)
        except ProviderNotReady as exc:
            outcome = RouteError(status=RouteStatus.PROVIDER_NOT_READY, reason=str(exc))
        except Exception as exc:
            logger.exception("Session {}: routing provider raised unexpectedly.", session.session_id)
            outcome = RouteError(status=RouteStatus.SERVICE_ERROR, reason=str(exc) or type(exc).__name__)

        if isinstance(outcome, RouteResult):
            outcome = outcome.model_copy(update={"sequence": sequence, "computed_at_ms": requested_at_ms})
        else:
            outcome = outcome.model_copy(update={"sequence": sequence})

        self._apply(session, query, outcome, requested_at_ms)
        return outcome

    def _apply(
        self,
        session: TrackingSession,
        query: RouteQuery,
        outcome: RouteOutcome,
        requested_at_ms: int,
    ) -> None:
        if not session.active:
            logger.info("Session {}: dropping route #{} for closed session.", session.session_id, query.sequence)
            return

        if query.sequence <= session.applied_sequence:
            logger.info(
                "Session {}: discarding stale route #{} (showing #{}).",
                session.session_id,
                query.sequence,
                session.applied_sequence,
            )
            return

        if isinstance(outcome, RouteError):
            logger.warning(
                "Session {}: route #{} failed: {} ({})",
                session.session_id,
                query.sequence,
                outcome.status.value,
                outcome.reason,
            )
            session.last_error = outcome
            session.add_notice(
                "error",
                f"Could not compute route: {outcome.status.value}",
                self.clock(),
            )
            return

        session.route = outcome
        session.applied_sequence = query.sequence
        session.last_routed_origin = query.origin
        session.last_route_timestamp_ms = requested_at_ms
        session.last_error = None
        session.handles.route_line.set_path(outcome.legs[0].path, query.sequence)
        logger.info(
            "Session {}: route #{} applied: {} / {}",
            session.session_id,
            query.sequence,
            outcome.distance_text,
            outcome.duration_text,
        )
