"""Galaxies (repositories) and the repository set loader.

Galaxy directory layout, shared by local galaxies and the cache mirror of
remote ones:

    <galaxy>/meta.yaml                         catalog manifest (GalaxyMeta)
    <galaxy>/stars/<star>.yaml                 star descriptors
    <galaxy>/packages/<star>-<version>.tar.gz  artifacts

Loading is best-effort per star: a malformed, missing or version-mismatched
descriptor is logged and skipped, and the galaxy loads with whatever subset
succeeded. A remote galaxy without a local cache is skipped with a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cosmos.catalog.star import (
    STARS_DIR,
    Star,
    descriptor_filename,
    remote_descriptor_url,
)
from cosmos.config import Config, is_local_locator, locator_to_path
from cosmos.errors import CosmosError, CosmosIOError, MetadataParseError, MissingFieldError
from cosmos.install.archive import atomic_write_bytes
from cosmos.transport import Transport, url_scheme

logger = logging.getLogger(__name__)

META_FILENAME = "meta.yaml"
PACKAGES_DIR = "packages"


@dataclass
class GalaxyMeta:
    """Catalog manifest of a galaxy (meta.yaml)."""

    name: str
    description: str | None = None
    version: str | None = None
    stars: dict[str, str] | None = None
    checksums: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "GalaxyMeta":
        if not isinstance(data, dict):
            raise MetadataParseError("Galaxy manifest must be a mapping")
        name = str(data.get("name") or "").strip()
        if not name:
            raise MissingFieldError("Galaxy manifest missing required field: name")

        for key in ("stars", "checksums"):
            if data.get(key) is not None and not isinstance(data[key], dict):
                raise MetadataParseError(f"'{key}' must be a mapping", name)

        stars = data.get("stars")
        checksums = data.get("checksums")
        version = data.get("version")
        return cls(
            name=name,
            description=data.get("description"),
            version=str(version) if version is not None else None,
            stars={str(k): str(v) for k, v in stars.items()} if stars is not None else None,
            checksums=(
                {str(k): str(v) for k, v in checksums.items()}
                if checksums is not None
                else None
            ),
        )

    @classmethod
    def from_file(cls, path: Path) -> "GalaxyMeta":
        """Load a manifest.

        Raises:
            CosmosIOError: If the manifest cannot be read
            MetadataParseError: If it is not a valid manifest
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise CosmosIOError(f"Cannot read galaxy manifest {path}: {e}") from e
        except yaml.YAMLError as e:
            raise MetadataParseError(f"Invalid galaxy manifest {path}: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        result: dict = {"name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.version is not None:
            result["version"] = self.version
        if self.stars is not None:
            result["stars"] = dict(self.stars)
        if self.checksums is not None:
            result["checksums"] = dict(self.checksums)
        return result


@dataclass
class Galaxy:
    """A named catalog of stars, local or mirrored from a remote URL."""

    name: str
    url: str | None = None
    stars: dict[str, Star] = field(default_factory=dict)
    checksums: dict[str, str] | None = None

    @property
    def is_local(self) -> bool:
        """True if url is absent or a filesystem path; never fetched remotely."""
        return is_local_locator(self.url)

    def add_star(self, star: Star) -> None:
        self.stars[star.name] = star

    def get_star(self, name: str) -> Star | None:
        return self.stars.get(name)

    def find_star(self, name: str, version: str) -> Star | None:
        """Return the star only if its version matches exactly."""
        star = self.stars.get(name)
        if star is not None and star.version == version:
            return star
        return None

    def has_star_named(self, name: str) -> bool:
        return name in self.stars

    def root_path(self, config: Config) -> Path:
        """Directory holding this galaxy's files on disk."""
        if self.is_local:
            if not self.url:
                raise MissingFieldError(
                    f"Local galaxy '{self.name}' missing URL. "
                    "Define its path in the galaxies config."
                )
            return locator_to_path(self.url)
        return config.galaxy_cache_dir(self.name)

    def cached_artifact_path(self, star: Star, config: Config) -> Path:
        """Where this galaxy's cached tarball for star lives."""
        return (
            config.galaxy_cache_dir(self.name) / PACKAGES_DIR / star.artifact_filename
        )

    def resolve_source(self, source: str) -> str:
        """Resolve a star source locator against this galaxy's base.

        - file:// and scheme-qualified URLs are returned unchanged
        - ./x, /x and bare relative paths are rooted at the galaxy base:
          URL join for remote galaxies, path join for local ones
        """
        if source.startswith("file://") or url_scheme(source):
            return source
        if not self.url:
            return source

        relative = source
        while relative.startswith("./"):
            relative = relative[2:]
        relative = relative.lstrip("/")

        if self.is_local:
            return str(locator_to_path(self.url) / relative)
        return f"{self.url.rstrip('/')}/{relative}"


def _accept_star(
    star: Star, declared_name: str, declared_version: str, galaxy_name: str
) -> bool:
    if star.name != declared_name:
        logger.warning(
            f"Descriptor for '{declared_name}' in galaxy '{galaxy_name}' "
            f"names '{star.name}'; skipping"
        )
        return False
    if star.version != declared_version:
        logger.warning(
            f"Version mismatch: {declared_name} expected {declared_version}, "
            f"got {star.version}"
        )
        return False
    return True


def load_galaxy(
    galaxy_path: Path,
    name: str,
    url: str | None,
    offline: bool,
    transport: Transport | None = None,
) -> Galaxy:
    """Load a galaxy directory.

    Args:
        galaxy_path: Local galaxy directory or cache mirror
        name: Configured galaxy name
        url: Configured locator (remote URL enables descriptor downloads)
        offline: Never download when True
        transport: Used to fetch descriptors missing from a remote mirror

    Raises:
        CosmosIOError, MetadataParseError: If meta.yaml is unusable
    """
    meta = GalaxyMeta.from_file(galaxy_path / META_FILENAME)
    stars_path = galaxy_path / STARS_DIR
    remote = not is_local_locator(url)

    galaxy = Galaxy(name=name, url=url, checksums=meta.checksums)

    for star_name, version in (meta.stars or {}).items():
        star_path = stars_path / descriptor_filename(star_name)

        if star_path.exists():
            try:
                star = Star.from_file(star_path)
            except CosmosError as e:
                logger.warning(f"Could not parse star file '{star_path}': {e}")
                continue
        elif remote and not offline and transport is not None:
            star_url = remote_descriptor_url(url, star_name)
            try:
                content = transport.fetch_bytes(star_url)
                star = Star.from_yaml(content.decode("utf-8"), star_url)
                atomic_write_bytes(star_path, content)
            except (CosmosError, UnicodeDecodeError) as e:
                logger.warning(f"Could not download star '{star_name}' from {star_url}: {e}")
                continue
        elif offline:
            logger.warning(
                f"Star file for '{star_name}' not found in offline mode ({meta.name}). "
                "Did you forget to run `cosmos sync --stars`?"
            )
            continue
        else:
            logger.warning(f"Star file for '{star_name}' missing from galaxy '{name}'")
            continue

        if _accept_star(star, star_name, version, name):
            galaxy.add_star(star)

    logger.debug(f"Loaded galaxy '{name}' with {len(galaxy.stars)} stars")
    return galaxy


def load_all(
    config: Config,
    offline: bool,
    transport: Transport | None = None,
) -> list[Galaxy]:
    """Build the priority-ordered galaxy list from configuration.

    Local galaxies load from their path; remote galaxies load from the cache
    mirror and are skipped with a warning when it does not exist.
    """
    galaxies = []

    for name, url in config.galaxies.items():
        if is_local_locator(url):
            galaxies.append(
                load_galaxy(locator_to_path(url), name, url, offline, transport)
            )
            continue

        cache_path = config.galaxy_cache_dir(name)
        if cache_path.exists():
            galaxies.append(load_galaxy(cache_path, name, url, offline, transport))
        else:
            logger.warning(
                f"Galaxy cache missing for '{name}'. Did you forget to run `cosmos sync`?"
            )

    return galaxies
