"""Split raw TLE catalog text into identity-keyed records.

Only the fields needed to merge sources are read: the NORAD catalog
number (the cross-source identity key), the optional name line, and the
two element lines kept verbatim for downstream propagation.

References:
    - Kelso, T.S. "CelesTrak TLE Format Documentation"
      https://celestrak.org/columns/v04n03/
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TLERecord:
    """One element set as it appeared in a source.

    Attributes:
        norad_id: NORAD catalog number.
        name: Object name from line 0 (if present).
        line1: TLE line 1, trailing whitespace stripped.
        line2: TLE line 2, trailing whitespace stripped.
    """
    norad_id: int
    name: Optional[str]
    line1: str
    line2: str

    @property
    def label(self) -> str:
        return self.name or str(self.norad_id)

    def to_dict(self) -> dict:
        return {
            "norad_id": self.norad_id,
            "name": self.name,
            "line1": self.line1,
            "line2": self.line2,
        }


def parse_tle_text(text: str) -> list[TLERecord]:
    """Parse 2-line or 3-line TLE text, in order of appearance.

    Lines that belong to no recognizable element set are skipped, as are
    element sets whose catalog numbers cannot be read or disagree
    between line 1 and line 2.
    """
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    records: list[TLERecord] = []
    i = 0

    while i < len(lines):
        if (
            i + 2 < len(lines)
            and lines[i + 1].startswith("1 ")
            and lines[i + 2].startswith("2 ")
        ):
            record = _make_record(lines[i + 1], lines[i + 2], name=lines[i])
            i += 3
        elif (
            lines[i].startswith("1 ")
            and i + 1 < len(lines)
            and lines[i + 1].startswith("2 ")
        ):
            record = _make_record(lines[i], lines[i + 1])
            i += 2
        else:
            i += 1
            continue

        if record is not None:
            records.append(record)

    return records


def count_tle_records(text: str) -> int:
    """Count element sets by their line-1 prefix, without parsing."""
    return sum(1 for line in text.splitlines() if line.startswith("1 "))


def _make_record(line1: str, line2: str, name: Optional[str] = None) -> Optional[TLERecord]:
    try:
        norad_1 = int(line1[2:7].strip())
        norad_2 = int(line2[2:7].strip())
    except ValueError:
        logger.debug("Skipping element set with unreadable catalog number: %r", line1)
        return None

    if norad_1 != norad_2:
        logger.debug("Skipping element set with NORAD ID mismatch: %d vs %d", norad_1, norad_2)
        return None

    name = name.strip() if name else None
    if name and name.startswith("0 "):
        name = name[2:].strip()

    return TLERecord(norad_id=norad_1, name=name or None, line1=line1, line2=line2)
