"""CelesTrak and custom-URL TLE fetcher with store-backed caching.

Downloads raw TLE text and caches it in the same ``KeyValueStore`` the
registry uses. Cached text younger than 24 hours is served without a
request. When CelesTrak answers HTTP 403 the client backs off CelesTrak
group fetches for an hour and serves stale cache (if any) in the
meantime, so a rate-limited session still shows the last known catalog.
Custom URLs live on other hosts and never take part in that cooldown.

Storage faults are treated as a cold cache: a store that cannot be read
means "nothing cached, not rate limited".

Cache entries are JSON objects::

    {"ts": <unix seconds>, "data": "<raw TLE text>", "count": <records>}
"""

from __future__ import annotations

import json
import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .store import KeyValueStore
from .tle_sources import celestrak_url
from .tle_text import count_tle_records

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "tlescope_tle_"
CACHE_MAX_AGE = 24 * 3600  # seconds
RATELIMIT_KEY = "tlescope_ratelimited"
RATELIMIT_COOLDOWN = 3600  # seconds
REQUEST_TIMEOUT = 10.0  # seconds


class FetchError(ConnectionError):
    """A source could not be fetched and no cached copy exists."""

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


class RateLimitedError(FetchError):
    """CelesTrak refused the request (HTTP 403) or the cooldown is active."""

    def __init__(self, message: str = "Rate limited by CelesTrak"):
        super().__init__(message, rate_limited=True)


@dataclass(frozen=True)
class FetchResult:
    """Raw TLE text and where it came from.

    Attributes:
        text: Raw TLE text.
        origin: ``"network"``, ``"cache"`` or ``"stale-cache"``.
        cache_age: Seconds since the text was cached (cache origins only).
        rate_limited: Whether the rate-limit cooldown was involved.
    """
    text: str
    origin: str
    cache_age: Optional[float] = None
    rate_limited: bool = False


def url_cache_key(source_id: str) -> str:
    """Cache key of a user-added URL source."""
    return f"custom_{source_id}"


class CelestrakClient:
    """Fetch TLE text over HTTP, caching responses in a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock

    def fetch_group(self, group: str, force: bool = False) -> FetchResult:
        """Fetch a CelesTrak GP group, honoring the rate-limit cooldown."""
        return self.fetch(group, celestrak_url(group), force=force, throttled=True)

    def fetch_url(self, source_id: str, url: str, force: bool = False) -> FetchResult:
        """Fetch a user-added URL source, cached under its source id."""
        return self.fetch(url_cache_key(source_id), url, force=force)

    def fetch(
        self,
        cache_key: str,
        url: str,
        force: bool = False,
        throttled: bool = False,
    ) -> FetchResult:
        """Fetch ``url``, preferring fresh cache unless ``force`` is set.

        Only ``throttled`` fetches (CelesTrak groups) check the cooldown,
        and only they start it on HTTP 403. Anywhere else a 403 is an
        ordinary ``FetchError``.

        Raises:
            RateLimitedError: Cooldown active (or HTTP 403) and nothing cached.
            FetchError: Request failed and nothing cached.
        """
        age = self.cache_age(cache_key)
        if not force and age is not None and age < CACHE_MAX_AGE:
            cached = self._load_cached(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit: {cache_key}")
                return FetchResult(cached, "cache", cache_age=age)

        if throttled and not force and self.is_rate_limited():
            stale = self._load_cached(cache_key)
            if stale is not None:
                logger.info(f"Rate limited, using cached data for {cache_key}")
                return FetchResult(
                    stale, "stale-cache", cache_age=self.cache_age(cache_key), rate_limited=True
                )
            raise RateLimitedError()

        logger.info(f"Querying: {url}")
        try:
            text = self._get(url, throttled)
        except (requests.RequestException, FetchError) as e:
            stale = self._load_cached(cache_key)
            if stale is None:
                if isinstance(e, FetchError):
                    raise
                raise FetchError(f"Request failed: {e}") from e
            logger.warning(f"Fetch failed for {cache_key}, using stale cache: {e}")
            return FetchResult(
                stale,
                "stale-cache",
                cache_age=self.cache_age(cache_key),
                rate_limited=isinstance(e, RateLimitedError),
            )

        if throttled:
            self.clear_rate_limit()
        self._save_cached(cache_key, text)
        return FetchResult(text, "network")

    # ── Cache inspection ──

    def cache_age(self, cache_key: str) -> Optional[float]:
        """Seconds since ``cache_key`` was cached, or None."""
        entry = self._cache_entry(cache_key)
        if entry is None or not isinstance(entry.get("ts"), (int, float)):
            return None
        return self.clock() - entry["ts"]

    def cached_sat_count(self, cache_key: str) -> Optional[int]:
        """Record count of a cached entry, scanning text for old entries."""
        entry = self._cache_entry(cache_key)
        if entry is None:
            return None
        if isinstance(entry.get("count"), int):
            return entry["count"]
        data = entry.get("data")
        return count_tle_records(data) if isinstance(data, str) else None

    # ── Rate limiting ──

    def is_rate_limited(self) -> bool:
        raw = self._read(RATELIMIT_KEY)
        if not raw:
            return False
        try:
            since = float(raw)
        except ValueError:
            return False
        return self.clock() - since < RATELIMIT_COOLDOWN

    def clear_rate_limit(self) -> None:
        try:
            self.store.remove(RATELIMIT_KEY)
        except Exception as e:
            logger.warning(f"Store delete failed for {RATELIMIT_KEY!r}: {e}")

    # ── Private helpers ──

    def _get(self, url: str, throttled: bool) -> str:
        resp = self.session.get(url, timeout=self.timeout)
        if resp.status_code == 403 and throttled:
            self._write(RATELIMIT_KEY, str(self.clock()))
            raise RateLimitedError("HTTP 403: rate limited")
        if resp.status_code != 200:
            raise FetchError(f"HTTP {resp.status_code}")
        return resp.text

    def _cache_entry(self, cache_key: str) -> Optional[dict]:
        raw = self._read(CACHE_KEY_PREFIX + cache_key)
        if not raw:
            return None
        try:
            entry = json.loads(raw)
        except ValueError:
            return None
        return entry if isinstance(entry, dict) else None

    def _load_cached(self, cache_key: str) -> Optional[str]:
        entry = self._cache_entry(cache_key)
        if entry is None or not isinstance(entry.get("data"), str):
            return None
        return entry["data"]

    def _save_cached(self, cache_key: str, text: str) -> None:
        entry = {"ts": self.clock(), "data": text, "count": count_tle_records(text)}
        if not self._write(CACHE_KEY_PREFIX + cache_key, json.dumps(entry)):
            logger.warning(f"Could not cache {cache_key} (store full?)")

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.store.get(key)
        except Exception as e:
            logger.warning(f"Store read failed for {key!r}: {e}")
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            return bool(self.store.set(key, value))
        except Exception as e:
            logger.warning(f"Store write failed for {key!r}: {e}")
            return False
