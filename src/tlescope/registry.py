"""Multi-source registry: which TLE sources exist and which are enabled.

The registry owns three pieces of state:

    catalog:     Built-in CelesTrak groups plus user-added URL and
                 pasted-text sources, in a stable order.
    enablement:  The set of source ids currently contributing objects.
    load states: The last status the fetch pipeline reported per source.

Catalog and enablement changes are written through to a ``KeyValueStore``
and announced through the ``on_sources_change`` callback, which a fetch
pipeline installs to re-fetch and re-merge. Storage faults never escape:
unreadable data falls back to defaults and failed writes are logged.

Example:
    >>> from tlescope.store import MemoryStore
    >>> from tlescope.registry import SourceRegistry
    >>>
    >>> registry = SourceRegistry(MemoryStore())
    >>> registry.initialize()
    >>> registry.load()
    >>> [s.id for s in registry.enabled_descriptors()]
    ['celestrak:visual']
"""

from __future__ import annotations

import json
import uuid
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Optional

from .load_state import LoadState, LoadStateTracker
from .store import KeyValueStore
from .tle_sources import (
    CUSTOM_GROUP,
    DEFAULT_GROUP,
    NONE_GROUP,
    TLE_SOURCES,
    TLESource,
)

logger = logging.getLogger(__name__)

# ── Persisted key layout ──

ENABLED_KEY = "tlescope_sources_enabled"
CUSTOM_KEY = "tlescope_sources_custom"
TEXT_KEY_PREFIX = "tlescope_source_text_"
LEGACY_GROUP_KEY = "tlescope_tle_group"
LEGACY_CACHE_PREFIX = "tlescope_tle_custom_"

BUILTIN_PREFIX = "celestrak:"
CUSTOM_PREFIX = "custom:"

DEFAULT_SOURCE_ID = BUILTIN_PREFIX + DEFAULT_GROUP


class SourceKind(Enum):
    """Where a source's TLE text comes from."""
    REMOTE_CATALOG = "celestrak"
    REMOTE_URL = "url"
    PASTED_TEXT = "text"


@dataclass(frozen=True)
class SourceDescriptor:
    """Identity and provenance of one data source.

    Attributes:
        id: Stable unique id (``celestrak:<group>`` or ``custom:<uuid>``).
        name: Display label.
        kind: Source kind.
        locator: Group slug or URL; ``None`` for pasted text.
        builtin: Built-ins cannot be renamed or removed.
    """
    id: str
    name: str
    kind: SourceKind
    locator: Optional[str] = None
    builtin: bool = False

    @classmethod
    def from_builtin(cls, source: TLESource) -> SourceDescriptor:
        return cls(
            id=BUILTIN_PREFIX + source.group,
            name=source.name,
            kind=SourceKind.REMOTE_CATALOG,
            locator=source.group,
            builtin=True,
        )

    def to_record(self) -> dict:
        """Serializable form for the custom-source list."""
        record = {"id": self.id, "name": self.name, "kind": self.kind.value}
        if self.locator is not None:
            record["locator"] = self.locator
        return record

    @classmethod
    def from_record(cls, record: dict) -> SourceDescriptor:
        """Rebuild a custom descriptor from its stored record.

        Older records used ``type``/``url`` instead of ``kind``/``locator``;
        both spellings are accepted.

        Raises:
            ValueError: If the record is not a well-formed custom source.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Expected object, got {type(record).__name__}")

        source_id = record.get("id")
        name = record.get("name")
        if not isinstance(source_id, str) or not source_id.startswith(CUSTOM_PREFIX):
            raise ValueError(f"Invalid custom source id: {source_id!r}")
        if not isinstance(name, str):
            raise ValueError(f"Invalid name for {source_id}: {name!r}")

        kind = SourceKind(record.get("kind", record.get("type")))
        if kind is SourceKind.REMOTE_CATALOG:
            raise ValueError(f"Custom source {source_id} cannot be a catalog group")

        locator = record.get("locator", record.get("url"))
        if kind is SourceKind.REMOTE_URL:
            if not isinstance(locator, str) or not locator:
                raise ValueError(f"URL source {source_id} has no URL")
        else:
            locator = None

        return cls(id=source_id, name=name, kind=kind, locator=locator)


def text_key(source_id: str) -> str:
    """Store key holding the pasted payload of a text source."""
    return TEXT_KEY_PREFIX + source_id


class SourceRegistry:
    """Source catalog, enablement set and reconciliation trigger.

    Args:
        store: Durable key/value storage.
        builtins: Static group definitions (default: ``TLE_SOURCES``).
        id_factory: Returns a fresh unique suffix for custom ids.
        on_sources_change: Called after every toggle, add and remove.
    """

    def __init__(
        self,
        store: KeyValueStore,
        builtins: Iterable[TLESource] = TLE_SOURCES,
        id_factory: Optional[Callable[[], str]] = None,
        on_sources_change: Optional[Callable[[], object]] = None,
    ):
        self.store = store
        self.builtins = tuple(builtins)
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.on_sources_change = on_sources_change
        self.tracker = LoadStateTracker()
        self._sources: list[SourceDescriptor] = []
        self._enabled: set[str] = set()

    # ── Catalog ──

    @property
    def sources(self) -> tuple[SourceDescriptor, ...]:
        return tuple(self._sources)

    def get(self, source_id: str) -> Optional[SourceDescriptor]:
        for source in self._sources:
            if source.id == source_id:
                return source
        return None

    def initialize(self) -> None:
        """Build the catalog from built-in definitions and stored customs."""
        sources = [
            SourceDescriptor.from_builtin(s)
            for s in self.builtins
            if s.group != NONE_GROUP
        ]
        seen = {s.id for s in sources}

        for source in self._read_custom():
            if source.id in seen:
                logger.warning(f"Skipping duplicate custom source {source.id}")
                continue
            seen.add(source.id)
            sources.append(source)

        self._sources = sources
        logger.debug(f"Catalog initialized with {len(sources)} sources")

    def add_url_source(self, name: str, url: str) -> str:
        """Add and enable a source fetched from ``url``. Returns its id."""
        source = SourceDescriptor(
            id=self._new_id(), name=name, kind=SourceKind.REMOTE_URL, locator=url
        )
        self._append_custom(source)
        return source.id

    def add_text_source(self, name: str, raw_text: str) -> str:
        """Add and enable a source whose TLE text is stored verbatim.

        If the store rejects the payload (quota), the source is still
        added; ``get_stored_text`` then yields an empty string.
        """
        source = SourceDescriptor(id=self._new_id(), name=name, kind=SourceKind.PASTED_TEXT)
        if not self._write(text_key(source.id), raw_text):
            logger.warning(f"Pasted text for {name!r} was not stored; source will load empty")
        self._append_custom(source)
        return source.id

    def remove_custom_source(self, source_id: str) -> bool:
        """Remove a custom source with its payload, cache and load state.

        Returns False (and changes nothing) for built-in ids.
        """
        if self._is_builtin(source_id):
            logger.debug(f"Refusing to remove built-in source {source_id}")
            return False

        in_catalog = self.get(source_id) is not None
        was_enabled = source_id in self._enabled

        self._delete(text_key(source_id))
        self._delete(LEGACY_CACHE_PREFIX + source_id)
        self.tracker.discard(source_id)

        if not in_catalog and not was_enabled:
            return False

        self._sources = [s for s in self._sources if s.id != source_id]
        self._enabled.discard(source_id)
        self._persist_custom()
        self._persist_enabled()
        logger.info(f"Removed source {source_id}")
        self._notify()
        return True

    def rename_custom_source(self, source_id: str, new_name: str) -> bool:
        """Rename a custom source. Does not trigger reconciliation."""
        if self._is_builtin(source_id):
            return False
        for i, source in enumerate(self._sources):
            if source.id == source_id:
                self._sources[i] = replace(source, name=new_name)
                self._persist_custom()
                return True
        return False

    def get_stored_text(self, source_id: str) -> str:
        """Pasted payload of a text source, or ``""`` if absent."""
        return self._read(text_key(source_id)) or ""

    # ── Enablement ──

    @property
    def enabled_ids(self) -> frozenset[str]:
        return frozenset(self._enabled)

    def is_enabled(self, source_id: str) -> bool:
        return source_id in self._enabled

    def enabled_descriptors(self) -> list[SourceDescriptor]:
        """Enabled catalog sources, in catalog order."""
        return [s for s in self._sources if s.id in self._enabled]

    def load(self) -> None:
        """Restore the enabled set, migrating the legacy group key once.

        Resolution order: stored id list, legacy single-group selection,
        then the default source. The legacy key is gone afterwards.
        """
        ids = self._read_enabled()
        if ids is not None:
            self._enabled = ids
        else:
            group = self._read(LEGACY_GROUP_KEY)
            if group and group not in (NONE_GROUP, CUSTOM_GROUP):
                self._enabled = {BUILTIN_PREFIX + group}
                logger.info(f"Migrated legacy group {group!r} to multi-source selection")
            else:
                self._enabled = {DEFAULT_SOURCE_ID}
            self._persist_enabled()

        if self._read(LEGACY_GROUP_KEY) is not None:
            self._delete(LEGACY_GROUP_KEY)

    def toggle(self, source_id: str) -> bool:
        """Flip membership of ``source_id``. Returns the new membership."""
        if source_id in self._enabled:
            self._enabled.discard(source_id)
        else:
            self._enabled.add(source_id)
        self._persist_enabled()
        self._notify()
        return source_id in self._enabled

    # ── Load states ──

    def set_load_state(self, source_id: str, state: LoadState) -> None:
        self.tracker.set_load_state(source_id, state)

    def load_state(self, source_id: str) -> LoadState:
        return self.tracker.get(source_id)

    @property
    def load_states(self) -> dict[str, LoadState]:
        return self.tracker.snapshot()

    # ── Private helpers ──

    def _is_builtin(self, source_id: str) -> bool:
        if source_id.startswith(BUILTIN_PREFIX):
            return True
        source = self.get(source_id)
        return source is not None and source.builtin

    def _new_id(self) -> str:
        taken = {s.id for s in self._sources} | self._enabled
        while True:
            source_id = CUSTOM_PREFIX + self.id_factory()
            if source_id not in taken:
                return source_id

    def _append_custom(self, source: SourceDescriptor) -> None:
        self._sources.append(source)
        self._enabled.add(source.id)
        self._persist_custom()
        self._persist_enabled()
        logger.info(f"Added {source.kind.value} source {source.name!r} ({source.id})")
        self._notify()

    def _notify(self) -> None:
        callback = self.on_sources_change
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Source change callback failed")

    def _read_custom(self) -> list[SourceDescriptor]:
        raw = self._read(CUSTOM_KEY)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable custom sources: {e}")
            return []
        if not isinstance(records, list):
            logger.warning("Ignoring custom sources: not a list")
            return []

        sources = []
        for record in records:
            try:
                sources.append(SourceDescriptor.from_record(record))
            except ValueError as e:
                logger.warning(f"Skipping malformed custom source: {e}")
        return sources

    def _read_enabled(self) -> Optional[set[str]]:
        raw = self._read(ENABLED_KEY)
        if not raw:
            return None
        try:
            ids = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable enabled sources: {e}")
            return None
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            logger.warning("Ignoring enabled sources: not a list of ids")
            return None
        return set(ids)

    def _persist_custom(self) -> None:
        records = [s.to_record() for s in self._sources if not s.builtin]
        self._write(CUSTOM_KEY, json.dumps(records))

    def _persist_enabled(self) -> None:
        self._write(ENABLED_KEY, json.dumps(sorted(self._enabled)))

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.store.get(key)
        except Exception as e:
            logger.warning(f"Store read failed for {key!r}: {e}")
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            ok = self.store.set(key, value)
        except Exception as e:
            logger.warning(f"Store write failed for {key!r}: {e}")
            return False
        if not ok:
            logger.warning(f"Store rejected write for {key!r}")
        return bool(ok)

    def _delete(self, key: str) -> None:
        try:
            self.store.remove(key)
        except Exception as e:
            logger.warning(f"Store delete failed for {key!r}: {e}")
