"""Resolve star requests against the priority-ordered galaxy list.

Galaxies are scanned in configured order and the first star whose name
matches and whose version satisfies the constraint wins. There is no
aggregation across galaxies and no backtracking: declaration order alone
decides between conflicting versions.
"""

from __future__ import annotations

import logging

from cosmos.catalog.galaxy import Galaxy
from cosmos.catalog.star import Star
from cosmos.versioning import satisfies

logger = logging.getLogger(__name__)


def find_star(
    galaxies: list[Galaxy], name: str, constraint: str
) -> tuple[Star, Galaxy] | None:
    """Find the first star named name satisfying constraint.

    Args:
        galaxies: Galaxies in priority order
        name: Exact star name
        constraint: Version constraint (``*`` matches any version)

    Returns:
        (star, origin galaxy), or None if no galaxy has a match
    """
    for galaxy in galaxies:
        star = galaxy.get_star(name)
        if star is None:
            continue
        if satisfies(star.version, constraint):
            logger.debug(f"Resolved {name}@{constraint} to {star.version} from '{galaxy.name}'")
            return star, galaxy
        logger.debug(
            f"'{galaxy.name}' has {name} {star.version}, which does not satisfy {constraint}"
        )
    return None


def find_galaxy(galaxies: list[Galaxy], name: str) -> Galaxy | None:
    """Return the galaxy configured under name."""
    for galaxy in galaxies:
        if galaxy.name == name:
            return galaxy
    return None
