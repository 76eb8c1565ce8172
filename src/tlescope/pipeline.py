"""Fetch-and-merge pipeline driven by registry changes.

``SourcePipeline.attach()`` installs ``reconcile`` as the registry's
change callback. Each pass fetches every enabled source, reports its
load state back to the registry, and merges the results into one
deduplicated catalog.

Passes are serialized: a change arriving mid-pass waits for the running
pass to finish and then runs its own.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from tqdm import tqdm

from .aggregate import MergedCatalog, merge_sources
from .celestrak import CelestrakClient, FetchError, url_cache_key
from .load_state import LoadState
from .registry import SourceDescriptor, SourceKind, SourceRegistry
from .tle_text import TLERecord, count_tle_records, parse_tle_text

logger = logging.getLogger(__name__)


class SourcePipeline:
    """Keeps a merged catalog in step with the registry's enabled sources."""

    def __init__(
        self,
        registry: SourceRegistry,
        client: CelestrakClient,
        progress: bool = False,
        on_merged: Optional[Callable[[MergedCatalog], object]] = None,
    ):
        self.registry = registry
        self.client = client
        self.progress = progress
        self.on_merged = on_merged
        self.merged = MergedCatalog()
        self._lock = threading.Lock()

    def attach(self) -> None:
        """Re-run ``reconcile`` whenever enabled sources change."""
        self.registry.on_sources_change = self.reconcile

    def reconcile(self, force: bool = False) -> MergedCatalog:
        """Fetch all enabled sources and rebuild the merged catalog."""
        with self._lock:
            sources = self.registry.enabled_descriptors()
            contributions: dict[str, list[TLERecord]] = {}

            for source in tqdm(sources, desc="Loading sources", disable=not self.progress):
                records = self._load_source(source, force)
                if records is not None:
                    contributions[source.id] = records

            self.merged = merge_sources(self.registry, contributions)
            logger.info(
                f"Reconciled {len(sources)} sources: {self.merged.result.total_sats} objects, "
                f"{self.merged.result.dups_removed} duplicates removed"
            )

        if self.on_merged is not None:
            self.on_merged(self.merged)
        return self.merged

    def cached_count(self, source: SourceDescriptor) -> Optional[int]:
        """Objects available without fetching, or None if nothing is cached."""
        if source.kind is SourceKind.PASTED_TEXT:
            text = self.registry.get_stored_text(source.id)
            return count_tle_records(text) if text else None
        if source.kind is SourceKind.REMOTE_URL:
            return self.client.cached_sat_count(url_cache_key(source.id))
        return self.client.cached_sat_count(source.locator)

    def _load_source(self, source: SourceDescriptor, force: bool) -> Optional[list[TLERecord]]:
        previous = self.registry.load_state(source.id)
        self.registry.set_load_state(source.id, LoadState.loading())

        try:
            text, cache_age = self._fetch_text(source, force)
            records = parse_tle_text(text)
        except FetchError as e:
            logger.warning(f"Failed to load {source.name} ({source.id}): {e}")
            self.registry.set_load_state(source.id, LoadState.failed(str(e), previous))
            return None
        except Exception as e:
            logger.exception(f"Unexpected error loading {source.name} ({source.id})")
            self.registry.set_load_state(
                source.id, LoadState.failed(f"Unexpected error: {e}", previous)
            )
            return None

        if not records and source.kind is SourceKind.PASTED_TEXT:
            message = "No TLE data stored" if not text.strip() else "No valid TLEs found"
            self.registry.set_load_state(source.id, LoadState.failed(message, previous))
            return None

        self.registry.set_load_state(source.id, LoadState.loaded(len(records), cache_age))
        return records

    def _fetch_text(self, source: SourceDescriptor, force: bool) -> tuple[str, Optional[float]]:
        if source.kind is SourceKind.REMOTE_CATALOG:
            result = self.client.fetch_group(source.locator, force=force)
        elif source.kind is SourceKind.REMOTE_URL:
            result = self.client.fetch_url(source.id, source.locator, force=force)
        else:
            return self.registry.get_stored_text(source.id), None
        return result.text, result.cache_age
