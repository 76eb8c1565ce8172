"""Merge per-source object lists into one deduplicated set.

Objects are identified across sources by NORAD catalog number. Only
sources that are enabled and currently LOADED contribute; everything
else counts as an empty contribution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Mapping

import pandas as pd

from .load_state import LoadStatus
from .registry import SourceRegistry
from .tle_text import TLERecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateResult:
    """Counts describing one merge pass.

    Attributes:
        total_sats: Distinct identity keys across all contributions.
        dups_removed: Extra occurrences dropped (sum of counts - total).
    """
    total_sats: int = 0
    dups_removed: int = 0


@dataclass
class MergedCatalog:
    """Merged object set plus its counts and per-record provenance."""
    records: list[TLERecord] = field(default_factory=list)
    result: AggregateResult = field(default_factory=AggregateResult)
    source_of: dict[int, str] = field(default_factory=dict)


def dedup_counts(contributions: Mapping[str, Iterable[Hashable]]) -> AggregateResult:
    """Count distinct keys and duplicates across source contributions.

    Example:
        >>> dedup_counts({"a": [1, 2, 3], "b": [2, 3, 4]})
        AggregateResult(total_sats=4, dups_removed=2)
    """
    seen: set[Hashable] = set()
    submitted = 0
    for keys in contributions.values():
        for key in keys:
            submitted += 1
            seen.add(key)
    return AggregateResult(total_sats=len(seen), dups_removed=submitted - len(seen))


def merge_sources(
    registry: SourceRegistry,
    contributions: Mapping[str, list[TLERecord]],
) -> MergedCatalog:
    """Merge records of enabled, LOADED sources, first occurrence wins.

    Sources are visited in catalog order, so when two sources publish
    the same object the one listed first in the catalog supplies it.
    """
    merged = MergedCatalog()
    submitted = 0

    for source in registry.enabled_descriptors():
        if registry.load_state(source.id).status is not LoadStatus.LOADED:
            continue
        for record in contributions.get(source.id, ()):
            submitted += 1
            if record.norad_id in merged.source_of:
                continue
            merged.source_of[record.norad_id] = source.id
            merged.records.append(record)

    total = len(merged.records)
    merged.result = AggregateResult(total_sats=total, dups_removed=submitted - total)
    logger.debug(
        "Merged %d objects (%d duplicates removed)", total, merged.result.dups_removed
    )
    return merged


def status_frame(registry: SourceRegistry) -> pd.DataFrame:
    """One row per catalog source with its enablement and load state."""
    rows = []
    for source in registry.sources:
        state = registry.load_state(source.id)
        rows.append({
            "id": source.id,
            "name": source.name,
            "kind": source.kind.value,
            "builtin": source.builtin,
            "enabled": registry.is_enabled(source.id),
            "status": state.status.value,
            "sat_count": state.sat_count,
            "cache_age_s": state.cache_age,
            "error": state.error,
        })
    return pd.DataFrame(rows)


def records_frame(merged: MergedCatalog) -> pd.DataFrame:
    """Merged records as a DataFrame, tagged with the contributing source."""
    return pd.DataFrame([
        {**r.to_dict(), "source_id": merged.source_of[r.norad_id]}
        for r in merged.records
    ])
