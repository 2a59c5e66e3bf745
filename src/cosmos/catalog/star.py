"""Star descriptors.

A Star is one installable unit. Descriptors live in a galaxy at
stars/<name>.yaml and are immutable once loaded.

Required fields: name, version, authors (non-empty mapping).
Optional fields: type (normal | nebula | meta, default normal),
description, license, dependencies, install_script, source, checksums.

Nebula and meta stars are pure dependency aggregators: they may not carry
source, install_script or checksums.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

import yaml

from cosmos.config import Config, locator_to_path
from cosmos.errors import (
    CosmosIOError,
    MetadataParseError,
    MissingFieldError,
    MissingFileError,
    TransportError,
    UnsupportedUrlError,
)
from cosmos.install.archive import atomic_write_bytes
from cosmos.install.scripts import uses_sandboxed_runner

if TYPE_CHECKING:
    from cosmos.catalog.galaxy import Galaxy
    from cosmos.transport import Transport

logger = logging.getLogger(__name__)

STARS_DIR = "stars"
DESCRIPTOR_SUFFIX = ".yaml"


class StarType(Enum):
    NORMAL = "normal"
    NEBULA = "nebula"
    META = "meta"


def _frozen_str_map(value: object, field_name: str, star_name: str) -> Mapping[str, str]:
    if value is None:
        return MappingProxyType({})
    if not isinstance(value, dict):
        raise MetadataParseError(f"'{field_name}' must be a mapping", star_name)
    return MappingProxyType({str(k): str(v) for k, v in value.items()})


@dataclass(frozen=True)
class Star:
    """A package descriptor."""

    name: str
    version: str
    authors: Mapping[str, str]
    type: StarType = StarType.NORMAL
    description: str | None = None
    license: str | None = None
    dependencies: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    install_script: str | None = None
    source: str | None = None
    checksums: Mapping[str, str] | None = None

    @property
    def is_aggregator(self) -> bool:
        """True for nebula/meta stars, which install no files."""
        return self.type in (StarType.NEBULA, StarType.META)

    @property
    def uses_nova(self) -> bool:
        return uses_sandboxed_runner(self.install_script)

    @property
    def artifact_filename(self) -> str:
        return f"{self.name}-{self.version}.tar.gz"

    def get_dependencies(self) -> list[tuple[str, str]]:
        return list(self.dependencies.items())

    @classmethod
    def from_dict(cls, data: dict) -> "Star":
        """Create a Star from a descriptor mapping.

        Raises:
            MissingFieldError: If name, version or authors is missing/empty
            MetadataParseError: If a field has the wrong shape, type is
                unknown, or an aggregator carries install fields
        """
        if not isinstance(data, dict):
            raise MetadataParseError("Star descriptor must be a mapping")

        name = str(data.get("name") or "").strip()
        if not name:
            raise MissingFieldError("Missing required field: name")

        version = str(data.get("version") or "").strip()
        if not version:
            raise MissingFieldError("Missing required field: version", name)

        authors = data.get("authors")
        if not authors:
            raise MissingFieldError(
                "The 'authors' field is required and cannot be empty", name
            )
        authors = _frozen_str_map(authors, "authors", name)

        type_str = data.get("type") or StarType.NORMAL.value
        try:
            star_type = StarType(type_str)
        except ValueError:
            valid_types = [t.value for t in StarType]
            raise MetadataParseError(
                f"Invalid type '{type_str}'. Must be one of: {valid_types}", name
            ) from None

        checksums = data.get("checksums")
        star = cls(
            name=name,
            version=version,
            authors=authors,
            type=star_type,
            description=data.get("description"),
            license=data.get("license"),
            dependencies=_frozen_str_map(data.get("dependencies"), "dependencies", name),
            install_script=data.get("install_script") or None,
            source=data.get("source") or None,
            checksums=(
                _frozen_str_map(checksums, "checksums", name)
                if checksums is not None
                else None
            ),
        )

        if star.is_aggregator:
            carried = [
                f
                for f in ("source", "install_script", "checksums")
                if getattr(star, f) is not None
            ]
            if carried:
                raise MetadataParseError(
                    f"{star.type.value} stars cannot carry: {', '.join(carried)}", name
                )

        return star

    @classmethod
    def from_yaml(cls, text: str, origin: str = "<string>") -> "Star":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise MetadataParseError(f"Invalid star descriptor {origin}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "Star":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise MissingFileError(f"Star descriptor not found: {path}") from e
        except OSError as e:
            raise CosmosIOError(f"Cannot read star descriptor {path}: {e}") from e
        return cls.from_yaml(text, str(path))

    def to_dict(self) -> dict:
        """Serialize to a descriptor mapping (optional fields omitted)."""
        result: dict = {
            "name": self.name,
            "version": self.version,
            "authors": dict(self.authors),
            "type": self.type.value,
        }
        if self.description is not None:
            result["description"] = self.description
        if self.license is not None:
            result["license"] = self.license
        if self.dependencies:
            result["dependencies"] = dict(self.dependencies)
        if self.install_script is not None:
            result["install_script"] = self.install_script
        if self.source is not None:
            result["source"] = self.source
        if self.checksums is not None:
            result["checksums"] = dict(self.checksums)
        return result


def descriptor_filename(star_name: str) -> str:
    return f"{star_name}{DESCRIPTOR_SUFFIX}"


def remote_descriptor_url(base_url: str, star_name: str) -> str:
    return f"{base_url.rstrip('/')}/{STARS_DIR}/{descriptor_filename(star_name)}"


def fetch_star(
    galaxy: "Galaxy",
    star_name: str,
    config: Config,
    offline: bool,
    transport: "Transport",
) -> Star:
    """Return a star from a galaxy, loading it lazily.

    Lookup order:
    1. Already loaded in memory
    2. Local galaxy: stars/<name>.yaml under its path (missing is an error)
    3. Cached descriptor under the galaxy cache
    4. Remote download (not in offline mode), cached for next time

    Raises:
        MissingFileError: If a local galaxy has no such descriptor
        TransportError: If offline, or the download fails
        UnsupportedUrlError: If the galaxy URL scheme is not allowed
    """
    star = galaxy.get_star(star_name)
    if star is not None:
        return star

    if galaxy.is_local:
        if not galaxy.url:
            raise MissingFieldError(f"Local galaxy '{galaxy.name}' has no path")
        local_path = (
            locator_to_path(galaxy.url) / STARS_DIR / descriptor_filename(star_name)
        )
        star = Star.from_file(local_path)
        galaxy.add_star(star)
        return star

    star_path = config.galaxy_cache_dir(galaxy.name) / STARS_DIR / descriptor_filename(
        star_name
    )
    if star_path.exists():
        star = Star.from_file(star_path)
        galaxy.add_star(star)
        return star

    if offline:
        raise TransportError(
            f"Star '{star_name}' not cached and offline mode is enabled"
        )

    if not galaxy.url:
        raise MissingFieldError(f"Missing galaxy URL for '{galaxy.name}'")
    if not transport.supports_url(galaxy.url):
        raise UnsupportedUrlError(f"Scheme not allowed for galaxy '{galaxy.name}': {galaxy.url}")

    url = remote_descriptor_url(galaxy.url, star_name)
    logger.info(f"Downloading star metadata: {url}")
    content = transport.fetch_bytes(url)
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TransportError(f"Star descriptor at {url} is not UTF-8: {e}") from e

    star = Star.from_yaml(text, url)
    atomic_write_bytes(star_path, content)
    galaxy.add_star(star)
    return star
