# rescue_tracker/services/case_client.py

import asyncio
from typing import Optional
from urllib.parse import quote, urlencode

import requests

from rescue_tracker.core.config import settings
from rescue_tracker.core.errors import CaseUpdateError
from rescue_tracker.core.logger import logger
from rescue_tracker.models.tracking import Coordinate

EXTERNAL_DIRECTIONS_URL = "https://www.google.com/maps/dir/"


def external_directions_url(origin: Coordinate, destination: Coordinate) -> str:
    """
    Link that opens turn-by-turn driving directions in Google Maps.

    Tracking stops while the responder navigates in the external app.
    """
    query = urlencode(
        {
            "api": "1",
            "origin": f"{origin.lat},{origin.lon}",
            "destination": f"{destination.lat},{destination.lon}",
            "travelmode": "driving",
        }
    )
    return f"{EXTERNAL_DIRECTIONS_URL}?{query}"


class CaseClient:
    """
    Talks to the platform backend about rescue cases.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or settings.CASE_API_BASE_URL).rstrip("/")
        self.timeout_s = settings.CASE_API_TIMEOUT_S if timeout_s is None else timeout_s
        self.session = session or requests.Session()

    async def mark_completed(self, case_id: str) -> None:
        await asyncio.to_thread(self.update_status, case_id, "completed")

    def update_status(self, case_id: str, status: str) -> None:
        if not case_id:
            raise CaseUpdateError("No case id provided.")

        url = f"{self.base_url}/ngo-cases/{quote(case_id, safe='')}"
        try:
            response = self.session.patch(url, json={"status": status}, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise CaseUpdateError(f"Case update failed: {exc}") from exc

        if not response.ok:
            raise CaseUpdateError(
                f"Case update rejected with HTTP {response.status_code}."
            )
        logger.info("Case {} marked {}.", case_id, status)
