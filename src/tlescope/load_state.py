"""Per-source load status.

The tracker stores whatever the fetch pipeline last reported for each
source id. It performs no I/O and never retries; a fetch pipeline drives
every transition::

    IDLE -> LOADING -> LOADED | ERROR
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LoadStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class LoadState:
    """Last reported state of one source.

    Attributes:
        status: Current position in the load state machine.
        sat_count: Objects parsed on the last successful load; None if never loaded.
        cache_age: Seconds since the data was fetched, when served from cache.
        error: Human-readable failure cause, only set for ERROR.
    """
    status: LoadStatus = LoadStatus.IDLE
    sat_count: Optional[int] = None
    cache_age: Optional[float] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.sat_count is not None and self.sat_count < 0:
            raise ValueError(f"sat_count must be non-negative, got {self.sat_count}")

    @classmethod
    def loading(cls) -> LoadState:
        return cls(status=LoadStatus.LOADING)

    @classmethod
    def loaded(cls, sat_count: int, cache_age: Optional[float] = None) -> LoadState:
        return cls(status=LoadStatus.LOADED, sat_count=sat_count, cache_age=cache_age)

    @classmethod
    def failed(cls, error: str, previous: Optional[LoadState] = None) -> LoadState:
        """ERROR state keeping the count and cache age of the last success."""
        if previous is not None and previous.status in (LoadStatus.LOADED, LoadStatus.ERROR):
            return cls(
                status=LoadStatus.ERROR,
                sat_count=previous.sat_count,
                cache_age=previous.cache_age,
                error=error,
            )
        return cls(status=LoadStatus.ERROR, error=error)


class LoadStateTracker:
    """Thread-safe map of source id to its last reported ``LoadState``.

    Updates for different ids may arrive from independent in-flight
    fetches; each write simply replaces the previous record.
    """

    def __init__(self):
        self._states: dict[str, LoadState] = {}
        self._lock = threading.Lock()

    def set_load_state(self, source_id: str, state: LoadState) -> None:
        with self._lock:
            self._states[source_id] = state

    def get(self, source_id: str) -> LoadState:
        """State for ``source_id``; IDLE if nothing was ever reported."""
        with self._lock:
            return self._states.get(source_id, LoadState())

    def discard(self, source_id: str) -> None:
        with self._lock:
            self._states.pop(source_id, None)

    def snapshot(self) -> dict[str, LoadState]:
        with self._lock:
            return dict(self._states)

    def __contains__(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._states
