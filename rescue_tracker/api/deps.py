# rescue_tracker/api/deps.py
from functools import lru_cache

from rescue_tracker.services.case_client import CaseClient
from rescue_tracker.services.route_controller import RouteRefreshController
from rescue_tracker.services.route_service import build_route_service
from rescue_tracker.services.session_registry import SessionRegistry

# Single shared instances, built on first use and overridable in tests


@lru_cache
def get_controller() -> RouteRefreshController:
    return RouteRefreshController(build_route_service())


@lru_cache
def get_registry() -> SessionRegistry:
    return SessionRegistry()


@lru_cache
def get_case_client() -> CaseClient:
    return CaseClient()
