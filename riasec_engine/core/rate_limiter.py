import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Optional

from .exceptions import RateLimitError

logger = logging.getLogger(__name__)


class ParticipantRateLimiter:
    """Sliding-window request budget per participant.

    State is owned here and evicted by ``sweep``; nothing lives at module level.
    """

    def __init__(self, max_requests: int = 30, window_seconds: float = 60.0,
                 clock: Optional[Callable[[], datetime]] = None):
        if max_requests < 1:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock or datetime.now
        self._hits: Dict[str, Deque[datetime]] = {}
        self._lock = threading.Lock()

    def _evict_old(self, hits: Deque[datetime], now: datetime) -> None:
        cutoff = now - self.window
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, participant_id: str) -> int:
        """Count one request. Returns the remaining budget or raises RateLimitError"""
        now = self._clock()

        with self._lock:
            hits = self._hits.setdefault(participant_id, deque())
            self._evict_old(hits, now)

            if len(hits) >= self.max_requests:
                retry_after = (hits[0] + self.window - now).total_seconds()
                logger.warning(f"Rate limit exceeded for participant {participant_id}")
                raise RateLimitError(participant_id, max(retry_after, 0.0))

            hits.append(now)
            return self.max_requests - len(hits)

    def remaining(self, participant_id: str) -> int:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(participant_id)
            if not hits:
                return self.max_requests
            self._evict_old(hits, now)
            return self.max_requests - len(hits)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop participants with no hits inside the window. Returns how many were evicted"""
        now = now or self._clock()
        evicted = 0

        with self._lock:
            for participant_id in list(self._hits.keys()):
                hits = self._hits[participant_id]
                self._evict_old(hits, now)
                if not hits:
                    del self._hits[participant_id]
                    evicted += 1

        if evicted:
            logger.debug(f"Rate limiter evicted {evicted} idle participants")
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)
