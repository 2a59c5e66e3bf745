"""Catalog system: stars, galaxies and constellations.

- star.py: Star descriptors and lazy descriptor fetch
- constellation.py: Named bundles of star requests
- galaxy.py: Galaxy manifests and the repository set loader
- resolver.py: First-match resolution across prioritized galaxies
- sync.py: Mirror remote galaxies into the local cache
"""

from cosmos.catalog.star import Star, StarType, fetch_star
from cosmos.catalog.constellation import Constellation, parse_member
from cosmos.catalog.galaxy import Galaxy, GalaxyMeta, load_all, load_galaxy
from cosmos.catalog.resolver import find_galaxy, find_star
from cosmos.catalog.sync import GalaxySyncResult, SyncLevel, SyncReport, sync_all

__all__ = [
    "Star",
    "StarType",
    "fetch_star",
    "Constellation",
    "parse_member",
    "Galaxy",
    "GalaxyMeta",
    "load_all",
    "load_galaxy",
    "find_galaxy",
    "find_star",
    "GalaxySyncResult",
    "SyncLevel",
    "SyncReport",
    "sync_all",
]
