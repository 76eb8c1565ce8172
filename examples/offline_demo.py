#!/usr/bin/env python3
"""
TLEscope Example: merge overlapping pasted-text sources, no network needed.

Shows legacy migration, adding sources, dedup counts and the status table.
"""
import sys
sys.path.insert(0, "src")

from tlescope.store import MemoryStore
from tlescope.registry import SourceRegistry, LEGACY_GROUP_KEY
from tlescope.celestrak import CelestrakClient
from tlescope.pipeline import SourcePipeline
from tlescope.aggregate import status_frame

LINE1 = "1 25544U 98067A   24001.50000000  .00016717  00000-0  10270-3 0  9003"
LINE2 = "2 25544  51.6400 208.5000 0007417  68.0000 292.1000 15.49560000400000"


def synthetic_catalog(norad_ids):
    """Build TLE text for the given catalog numbers from the ISS element lines."""
    blocks = []
    for n in norad_ids:
        blocks.append(f"OBJECT {n}")
        blocks.append(LINE1[:2] + f"{n:05d}" + LINE1[7:])
        blocks.append(LINE2[:2] + f"{n:05d}" + LINE2[7:])
    return "\n".join(blocks)


def main():
    print("=" * 65)
    print("  TLEscope — Offline multi-source merge")
    print("=" * 65)

    store = MemoryStore()
    store.set(LEGACY_GROUP_KEY, "stations")

    registry = SourceRegistry(store)
    registry.initialize()
    registry.load()
    print(f"\nMigrated selection: {sorted(registry.enabled_ids)}")

    # Keep the demo offline: drop the migrated CelesTrak group
    registry.toggle("celestrak:stations")

    pipeline = SourcePipeline(registry, CelestrakClient(store))
    pipeline.attach()

    registry.add_text_source("Operator A", synthetic_catalog([1, 2, 3]))
    registry.add_text_source("Operator B", synthetic_catalog([2, 3, 4]))

    result = pipeline.merged.result
    print(f"\nObjects: {result.total_sats}  Duplicates removed: {result.dups_removed}")

    df = status_frame(registry)
    print()
    print(df[df["enabled"]][["id", "name", "status", "sat_count"]].to_string(index=False))


if __name__ == "__main__":
    main()
