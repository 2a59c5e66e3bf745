"""Mirror remote galaxies into the local cache.

Sync levels build on each other:
- META_ONLY: meta.yaml
- WITH_STARS: plus every declared star descriptor
- FULL: plus every star's source tarball, verified against the manifest
  checksum when one is published

Local galaxies are never synced. A failure in one galaxy, or in one star of
a galaxy, is recorded in the report and the rest of the work continues.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path

from cosmos.catalog.galaxy import META_FILENAME, PACKAGES_DIR, Galaxy, GalaxyMeta
from cosmos.catalog.star import STARS_DIR, Star, descriptor_filename, remote_descriptor_url
from cosmos.config import Config, is_local_locator
from cosmos.errors import ChecksumMismatchError, CosmosError, UnsupportedUrlError
from cosmos.install.archive import atomic_write_bytes
from cosmos.transport import Transport

logger = logging.getLogger(__name__)


class SyncLevel(IntEnum):
    META_ONLY = 1
    WITH_STARS = 2
    FULL = 3


@dataclass
class GalaxySyncResult:
    """Outcome of syncing one galaxy."""

    name: str
    skipped: bool = False
    error: str = ""
    downloaded: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.error and not self.failures


@dataclass
class SyncReport:
    """Outcome of a sync across every configured galaxy."""

    level: SyncLevel
    galaxies: list[GalaxySyncResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(g.ok for g in self.galaxies)

    @property
    def failed(self) -> list[GalaxySyncResult]:
        return [g for g in self.galaxies if not g.ok]

    def summary(self) -> str:
        synced = sum(1 for g in self.galaxies if not g.skipped and not g.error)
        skipped = sum(1 for g in self.galaxies if g.skipped)
        failed = sum(1 for g in self.galaxies if g.error)
        return f"{synced} synced, {skipped} skipped, {failed} failed"


def _download(transport: Transport, url: str, dest: Path) -> bytes:
    logger.info(f"Downloading: {url}")
    data = transport.fetch_bytes(url)
    atomic_write_bytes(dest, data)
    logger.debug(f"Saved to: {dest}")
    return data


def _sync_star_source(
    star: Star,
    galaxy: Galaxy,
    checksums: dict[str, str] | None,
    packages_dir: Path,
    transport: Transport,
    result: GalaxySyncResult,
) -> None:
    if not star.source:
        return

    source = galaxy.resolve_source(star.source).rstrip("/")
    logger.info(f"Syncing star source for '{star.name}' ('{source}')")

    if transport.supports_url(source):
        data = transport.fetch_bytes(source)
        expected = (checksums or {}).get(star.name)
        if expected is not None:
            actual = hashlib.sha256(data).hexdigest()
            if actual != expected.strip().lower():
                raise ChecksumMismatchError(
                    f"Checksum mismatch for '{star.artifact_filename}': "
                    f"expected {expected}, got {actual}",
                    star.name,
                )
        dest = packages_dir / star.artifact_filename
        atomic_write_bytes(dest, data)
        result.downloaded.append(str(dest))
    elif source.startswith("file://") or Path(source).exists():
        logger.info(f"Local source detected for star '{star.name}'")
    else:
        raise UnsupportedUrlError(f"Unsupported source format: {source}", star.name)


def sync_galaxy(
    name: str,
    url: str,
    config: Config,
    level: SyncLevel,
    transport: Transport,
) -> GalaxySyncResult:
    """Sync one galaxy into <cache_dir>/galaxies/<name>.

    Raises:
        UnsupportedUrlError: If no enabled transport handles url
        CosmosError: If meta.yaml cannot be fetched or parsed
    """
    result = GalaxySyncResult(name=name)

    if is_local_locator(url):
        logger.info(f"Skipping sync for local galaxy '{name}'")
        result.skipped = True
        return result

    if not transport.supports_url(url):
        raise UnsupportedUrlError(f"Scheme not allowed for galaxy '{name}': {url}")

    cache_dir = config.galaxy_cache_dir(name)
    stars_dir = cache_dir / STARS_DIR
    packages_dir = cache_dir / PACKAGES_DIR
    stars_dir.mkdir(parents=True, exist_ok=True)
    packages_dir.mkdir(parents=True, exist_ok=True)

    meta_path = cache_dir / META_FILENAME
    _download(transport, f"{url.rstrip('/')}/{META_FILENAME}", meta_path)
    result.downloaded.append(str(meta_path))

    if level == SyncLevel.META_ONLY:
        return result

    meta = GalaxyMeta.from_file(meta_path)
    galaxy = Galaxy(name=name, url=url, checksums=meta.checksums)

    for star_name in meta.stars or {}:
        star_dest = stars_dir / descriptor_filename(star_name)
        try:
            _download(transport, remote_descriptor_url(url, star_name), star_dest)
            result.downloaded.append(str(star_dest))

            if level == SyncLevel.FULL:
                star = Star.from_file(star_dest)
                _sync_star_source(
                    star, galaxy, meta.checksums, packages_dir, transport, result
                )
        except CosmosError as e:
            logger.warning(f"Failed to sync star '{star_name}' from '{name}': {e}")
            result.failures[star_name] = str(e)

    logger.info(f"Synced galaxy '{name}'")
    return result


def sync_all(config: Config, level: SyncLevel, transport: Transport) -> SyncReport:
    """Sync every configured galaxy, in configured order."""
    report = SyncReport(level=level)

    for name, url in config.galaxies.items():
        try:
            result = sync_galaxy(name, url, config, level, transport)
        except CosmosError as e:
            logger.error(f"Failed to sync galaxy '{name}': {e}")
            result = GalaxySyncResult(name=name, error=str(e))
        report.galaxies.append(result)

    return report
