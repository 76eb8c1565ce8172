"""Built-in CelesTrak catalog groups.

The order here is the order sources appear in the catalog. The ``none``
entry exists for the legacy single-group selector and never becomes a
catalog source.
"""

from __future__ import annotations

from dataclasses import dataclass

CELESTRAK_GP_URL = "https://celestrak.org/NORAD/elements/gp.php"

NONE_GROUP = "none"
"""Legacy sentinel meaning "globe only, no satellites"."""

CUSTOM_GROUP = "__custom__"
"""Legacy sentinel meaning "a custom file or URL is the source"."""

DEFAULT_GROUP = "visual"


@dataclass(frozen=True)
class TLESource:
    """Static definition of one CelesTrak group."""
    name: str
    group: str


TLE_SOURCES: tuple[TLESource, ...] = (
    TLESource("None (Globe only)", NONE_GROUP),
    TLESource("Last 30 Days' Launches", "last-30-days"),
    TLESource("Space Stations", "stations"),
    TLESource("100 Brightest", "visual"),
    TLESource("Active Satellites", "active"),
    TLESource("Analyst Satellites", "analyst"),
    TLESource("Russian ASAT (COSMOS 1408)", "cosmos-1408-debris"),
    TLESource("Chinese ASAT (FENGYUN 1C)", "fengyun-1c-debris"),
    TLESource("IRIDIUM 33 Debris", "iridium-33-debris"),
    TLESource("COSMOS 2251 Debris", "cosmos-2251-debris"),
    TLESource("Weather", "weather"),
    TLESource("NOAA", "noaa"),
    TLESource("GOES", "goes"),
    TLESource("Earth Resources", "resource"),
    TLESource("SARSAT", "sarsat"),
    TLESource("Disaster Monitoring", "dmc"),
    TLESource("TDRSS", "tdrss"),
    TLESource("ARGOS", "argos"),
    TLESource("Planet", "planet"),
    TLESource("Spire", "spire"),
    TLESource("Starlink", "starlink"),
    TLESource("OneWeb", "oneweb"),
    TLESource("GPS Operational", "gps-ops"),
    TLESource("Galileo", "galileo"),
    TLESource("Amateur Radio", "amateur"),
    TLESource("CubeSats", "cubesat"),
)


def celestrak_url(group: str) -> str:
    """GP query URL returning a group in TLE format."""
    return f"{CELESTRAK_GP_URL}?GROUP={group}&FORMAT=tle"
