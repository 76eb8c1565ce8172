"""TLEscope — multi-source TLE catalog registry and reconciliation.

Track satellites whose element sets come from several independently
updated providers: built-in CelesTrak groups, custom URLs and pasted TLE
text. Sources are registered, enabled, persisted and merged into one
deduplicated catalog.

Modules:
    store:       Persistent key/value store adapters.
    tle_sources: Built-in CelesTrak group definitions.
    registry:    Source catalog, enablement set and change notification.
    load_state:  Per-source load status tracking.
    tle_text:    Split raw TLE text into identity-keyed records.
    aggregate:   Cross-source deduplication and status tables.
    celestrak:   HTTP fetcher with store-backed caching and rate limiting.
    pipeline:    Fetch-and-merge pass driven by registry changes.
    cli:         Command-line interface.

Example:
    >>> from tlescope.store import JsonFileStore
    >>> from tlescope.registry import SourceRegistry
    >>> from tlescope.celestrak import CelestrakClient
    >>> from tlescope.pipeline import SourcePipeline
    >>>
    >>> store = JsonFileStore("data/tlescope_store.json")
    >>> registry = SourceRegistry(store)
    >>> registry.initialize()
    >>> registry.load()
    >>> pipeline = SourcePipeline(registry, CelestrakClient(store))
    >>> pipeline.attach()
    >>> registry.toggle("celestrak:stations")
    >>> print(pipeline.merged.result)
"""

__version__ = "0.1.0"
