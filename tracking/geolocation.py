"""
Purpose: In-process geolocation source.
What it does:
Fans position samples out to subscribers and remembers the latest one.
The device/GPS integration pushes samples in through publish(); the
coordinator only ever subscribes.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from drivers.models import PositionSample

logger = logging.getLogger(__name__)

PositionCallback = Callable[[PositionSample], None]


class GeolocationFeed:
    def __init__(self):
        self._subscribers: Dict[int, PositionCallback] = {}
        self._next_token = 0
        self._current: Optional[PositionSample] = None

    def current(self) -> Optional[PositionSample]:
        return self._current

    def subscribe(self, callback: PositionCallback) -> Callable[[], None]:
        """
        Register a callback. If a sample is already known it is delivered
        immediately. Returns the unsubscribe handle.
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        if self._current is not None:
            callback(self._current)

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, sample: PositionSample) -> None:
        self._current = sample
        for callback in list(self._subscribers.values()):
            try:
                callback(sample)
            except Exception:
                logger.exception("geolocation subscriber failed")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
