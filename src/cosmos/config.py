"""Configuration and filesystem layout for Cosmos.

Design assumptions:
- The system root defaults to / (COSMOS_ROOT env override)
- Config lives at {root}/etc/cosmos/config.yaml
- The ledger lives at {root}/var/lib/cosmos/universe.json
- Galaxy order in config.yaml is the trust/priority order used by the resolver
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cosmos.errors import CosmosIOError, MetadataParseError, MissingFieldError

ROOT_ENV_VAR = "COSMOS_ROOT"

CONFIG_RELPATH = Path("etc") / "cosmos" / "config.yaml"
UNIVERSE_RELPATH = Path("var") / "lib" / "cosmos" / "universe.json"
LOCK_RELPATH = Path("var") / "lib" / "cosmos" / "universe.lock"

DEFAULT_GALAXIES = {"core": "file:///mnt/usb/galaxies/core"}
DEFAULT_INSTALL_DIR = "/"
DEFAULT_CACHE_DIR = "/var/cache/cosmos"

LOCAL_PREFIXES = ("file://", "/", "./", "../")


def is_local_locator(locator: str | None) -> bool:
    """True if a galaxy or source locator denotes a filesystem path."""
    if not locator:
        return True
    return locator.startswith(LOCAL_PREFIXES)


def locator_to_path(locator: str) -> Path:
    """Strip a file:// prefix and return the filesystem path."""
    if locator.startswith("file://"):
        return Path(locator[len("file://") :])
    return Path(locator)


def resolve_root(override: Path | str | None = None) -> Path:
    """Resolve the system root directory."""
    if override:
        return Path(override)

    env_root = os.environ.get(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root)

    return Path("/")


@dataclass
class CosmosPaths:
    """Well-known paths under a system root."""

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_RELPATH

    @property
    def universe_path(self) -> Path:
        return self.root / UNIVERSE_RELPATH

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_RELPATH


@dataclass
class Config:
    """Cosmos configuration.

    Fields:
        galaxies: Ordered mapping of galaxy name to locator (URL or path)
        install_dir: Root that star files are installed into
        cache_dir: Where remote galaxy catalogs and packages are cached
    """

    galaxies: dict[str, str] = field(default_factory=dict)
    install_dir: str = DEFAULT_INSTALL_DIR
    cache_dir: str = DEFAULT_CACHE_DIR

    @property
    def galaxy_cache_root(self) -> Path:
        return Path(self.cache_dir) / "galaxies"

    def galaxy_cache_dir(self, name: str) -> Path:
        return self.galaxy_cache_root / name

    @classmethod
    def default(cls, root: Path | str | None = None) -> "Config":
        """Default configuration; a non-/ root becomes the install dir."""
        install_dir = DEFAULT_INSTALL_DIR
        if root is not None and Path(root) != Path("/"):
            install_dir = str(root)
        return cls(
            galaxies=dict(DEFAULT_GALAXIES),
            install_dir=install_dir,
            cache_dir=DEFAULT_CACHE_DIR,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create Config from a parsed YAML mapping."""
        for key in ("install_dir", "cache_dir"):
            if not data.get(key):
                raise MissingFieldError(f"Config missing required field: {key}")

        galaxies = data.get("galaxies") or {}
        if not isinstance(galaxies, dict):
            raise MetadataParseError("Config 'galaxies' must be a mapping")

        return cls(
            galaxies={str(k): str(v) for k, v in galaxies.items()},
            install_dir=str(data["install_dir"]),
            cache_dir=str(data["cache_dir"]),
        )

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "galaxies": dict(self.galaxies),
            "install_dir": self.install_dir,
            "cache_dir": self.cache_dir,
        }

    @classmethod
    def from_file(cls, path: Path | str) -> "Config":
        """Load config from a YAML file.

        Raises:
            CosmosIOError: If the file cannot be read
            MetadataParseError: If the file is not a valid config document
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise CosmosIOError(f"Cannot read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise MetadataParseError(f"Invalid config {path}: {e}") from e

        if not isinstance(data, dict):
            raise MetadataParseError(f"Config {path} must be a YAML mapping")
        return cls.from_dict(data)

    def save(self, path: Path | str) -> None:
        """Save config to a YAML file, preserving galaxy order."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    @classmethod
    def create_default(cls, path: Path | str, root: Path | str | None = None) -> "Config":
        config = cls.default(root)
        config.save(path)
        return config
