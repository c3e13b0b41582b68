# rescue_tracker/services/location.py

import itertools
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from rescue_tracker.core.errors import SensorError
from rescue_tracker.core.logger import logger
from rescue_tracker.models.tracking import PositionSample

SampleCallback = Callable[[PositionSample], object]
ErrorCallback = Callable[[SensorError], object]

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class SubscriptionHandle:
    feed_id: str
    handle_id: int


class LocationFeed:
    """
    Push-based location sensor for one device.

    Devices post fixes through the API; the feed hands each one to every
    current subscriber, in arrival order. Samples published while nobody
    is subscribed are dropped.
    """

    def __init__(self, feed_id: str) -> None:
        self.feed_id = feed_id
        self._subscribers: Dict[int, Tuple[SampleCallback, ErrorCallback]] = {}

    @property
    def subscribed(self) -> bool:
        return bool(self._subscribers)

    def subscribe(self, on_sample: SampleCallback, on_error: ErrorCallback) -> SubscriptionHandle:
        handle = SubscriptionHandle(self.feed_id, next(_handle_ids))
        self._subscribers[handle.handle_id] = (on_sample, on_error)
        logger.debug("Feed {} subscribed (handle {}).", self.feed_id, handle.handle_id)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if self._subscribers.pop(handle.handle_id, None) is not None:
            logger.debug("Feed {} unsubscribed (handle {}).", self.feed_id, handle.handle_id)

    def publish(self, sample: PositionSample) -> bool:
        """Deliver a sample; returns False when it was dropped."""
        if not self._subscribers:
            return False
        # Callbacks may unsubscribe while we iterate
        for on_sample, _ in list(self._subscribers.values()):
            on_sample(sample)
        return True

    def fail(self, error: SensorError) -> bool:
        """Report a sensor failure to subscribers; returns False when nobody listened."""
        if not self._subscribers:
            return False
        for _, on_error in list(self._subscribers.values()):
            on_error(error)
        return True
