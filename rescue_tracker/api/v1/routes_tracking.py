# rescue_tracker/api/v1/routes_tracking.py
from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Response, status

from rescue_tracker.api.deps import get_case_client, get_controller, get_registry
from rescue_tracker.core.errors import SensorError
from rescue_tracker.models.tracking import (
    Action,
    CreateSessionRequest,
    DirectionsLink,
    LiveTrackingRequest,
    PositionResponse,
    PositionSample,
    RouteError,
    RouteResult,
    SensorErrorRequest,
    SessionState,
)
from rescue_tracker.services.case_client import CaseClient, external_directions_url
from rescue_tracker.services.route_controller import RouteRefreshController
from rescue_tracker.services.session_registry import SessionRegistry

router = APIRouter(
    prefix="/tracking",
    tags=["tracking"],
)


@router.post(
    "/sessions",
    response_model=SessionState,
    status_code=status.HTTP_201_CREATED,
    summary="Open a tracking session toward a rescue case",
)
async def create_session(
    request: CreateSessionRequest,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    """
    Open a session. With an origin, a baseline route is computed before
    the response is sent.
    """
    session = controller.initialize(
        request.destination,
        request.origin,
        case_id=request.case_id,
    )
    registry.add(session)
    if request.live_tracking:
        controller.toggle_live_tracking(session, True)
    await controller.drain(session)
    return session.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionState, summary="Session state")
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    return registry.get(session_id).snapshot()


@router.post(
    "/sessions/{session_id}/positions",
    response_model=PositionResponse,
    summary="Push a position fix from the responder's device",
)
async def push_position(
    session_id: str,
    sample: PositionSample,
    wait: bool = False,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> PositionResponse:
    """
    Feed one fix into the session's location feed.

    Fixes are ignored while live tracking is off. A recompute runs in the
    background unless `wait=true`, in which case the response carries the
    refreshed route.
    """
    session = registry.get(session_id)
    delivered = session.feed.publish(sample)
    action = session.last_action if delivered else Action.IGNORE
    if wait:
        await controller.drain(session)
    return PositionResponse(action=action, session=session.snapshot())


@router.post("/sessions/{session_id}/live", response_model=SessionState, summary="Start or stop live tracking")
async def toggle_live_tracking(
    session_id: str,
    request: LiveTrackingRequest,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    session = registry.get(session_id)
    controller.toggle_live_tracking(session, request.enabled)
    return session.snapshot()


@router.post(
    "/sessions/{session_id}/sensor-error",
    response_model=SessionState,
    summary="Report that the device cannot provide positions",
)
async def report_sensor_error(
    session_id: str,
    request: SensorErrorRequest,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    """
    Live tracking is switched off and stays off until re-enabled.
    """
    session = registry.get(session_id)
    error = SensorError(request.reason)
    if not session.feed.fail(error):
        controller.handle_sensor_error(session, error)
    return session.snapshot()


@router.post(
    "/sessions/{session_id}/route",
    response_model=Union[RouteResult, RouteError],
    summary="Recompute the route from the current origin now",
)
async def recompute_route(
    session_id: str,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> Union[RouteResult, RouteError]:
    session = registry.get(session_id)
    if session.origin is None:
        raise HTTPException(status_code=409, detail="Origin is not known yet.")
    return await controller.compute_route(session, session.origin)


@router.get(
    "/sessions/{session_id}/directions-link",
    response_model=DirectionsLink,
    summary="Link to open the route in Google Maps",
)
async def directions_link(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> DirectionsLink:
    session = registry.get(session_id)
    if session.origin is None:
        raise HTTPException(status_code=409, detail="Missing origin or destination coordinates.")
    return DirectionsLink(url=external_directions_url(session.origin, session.destination))


@router.post("/sessions/{session_id}/complete", summary="Mark the rescue case completed")
async def complete_case(
    session_id: str,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
    case_client: CaseClient = Depends(get_case_client),
):
    """
    Mark the case completed on the platform backend, then discard the session.
    """
    session = registry.get(session_id)
    if not session.case_id:
        raise HTTPException(status_code=409, detail="No case ID provided.")

    await case_client.mark_completed(session.case_id)
    controller.close(session)
    registry.discard(session_id)
    return {"status": "completed", "case_id": session.case_id}


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a tracking session",
)
async def close_session(
    session_id: str,
    controller: RouteRefreshController = Depends(get_controller),
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    controller.close(registry.discard(session_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
