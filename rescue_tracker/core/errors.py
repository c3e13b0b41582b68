# rescue_tracker/core/errors.py
"""Error types raised across the tracking service."""


class TrackingError(RuntimeError):
    """Base error for tracking failures."""


class ConfigurationError(TrackingError):
    """Raised when a tracking session cannot be created (e.g. no destination)."""


class ProviderNotReady(TrackingError):
    """Raised when the routing provider is not usable (e.g. missing API key)."""


class RouteServiceError(TrackingError):
    """Raised inside a routing provider; converted to a RouteError at its boundary."""

    def __init__(self, status: str, reason: str) -> None:
        super().__init__(f"{status}: {reason}")
        self.status = status
        self.reason = reason


class SensorError(TrackingError):
    """Raised when the location sensor is denied or unavailable."""


class SessionNotFound(TrackingError):
    """Raised when a tracking session id is unknown."""


class CaseUpdateError(TrackingError):
    """Raised when the platform backend refuses a case update."""


__all__ = [
    "TrackingError",
    "ConfigurationError",
    "ProviderNotReady",
    "RouteServiceError",
    "SensorError",
    "SessionNotFound",
    "CaseUpdateError",
]
