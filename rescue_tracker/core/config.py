# rescue_tracker/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables (.env file).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Rescue Tracking API"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # "osm" (local OpenStreetMap graph) or "google" (Directions API)
    ROUTING_PROVIDER: str = "osm"
    GOOGLE_MAPS_API_KEY: str | None = None
    GOOGLE_DIRECTIONS_URL: str = "https://maps.googleapis.com/maps/api/directions/json"

    # OSM graph routing
    OSM_DEFAULT_SPEED_KMH: float = 40.0
    OSM_MAX_GRAPH_RADIUS_M: float = 15_000.0

    # Route refresh throttle: recompute when moved > distance OR idle > interval
    RECOMPUTE_DISTANCE_M: float = 20.0
    RECOMPUTE_INTERVAL_MS: int = 10_000
    ROUTE_TIMEOUT_S: float = 10.0

    # Notices kept per session (oldest dropped first)
    MAX_NOTICES: int = 20

    # Platform backend, used to mark a case completed
    CASE_API_BASE_URL: str = "http://127.0.0.1:3000"
    CASE_API_TIMEOUT_S: float = 5.0


settings = Settings()
