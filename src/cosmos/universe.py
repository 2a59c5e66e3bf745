"""Installed-state ledger (universe.json).

The ledger is the only record of what is installed and the sole uninstall
manifest. It never names a star whose install did not finish. Files are
recorded as install-root-relative paths with a leading /.

Format:
    {
      "installed": {
        "<name>": {"files": ["/usr/bin/tool"], "name": "<name>", "version": "1.0.0"}
      },
      "system": {"arch": "x86_64", "version": "0.1.0"}
    }
"""

from __future__ import annotations

import fcntl
import json
import logging
import platform
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from cosmos import __version__
from cosmos.errors import CosmosIOError, LockError, MetadataParseError
from cosmos.install.archive import atomic_write_bytes
from cosmos.versioning import satisfies

logger = logging.getLogger(__name__)


@dataclass
class SystemInfo:
    arch: str
    version: str

    @classmethod
    def current(cls) -> "SystemInfo":
        return cls(arch=platform.machine() or "unknown", version=__version__)


@dataclass
class InstalledStar:
    """Record of an installed star."""

    name: str
    version: str
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version, "files": list(self.files)}

    @classmethod
    def from_dict(cls, data: dict) -> "InstalledStar":
        return cls(
            name=data["name"],
            version=data["version"],
            files=list(data.get("files", [])),
        )


@dataclass
class Universe:
    """Ledger of installed stars keyed by name."""

    system: SystemInfo = field(default_factory=SystemInfo.current)
    installed: dict[str, InstalledStar] = field(default_factory=dict)

    def is_installed(self, name: str) -> bool:
        return name in self.installed

    def get(self, name: str) -> InstalledStar | None:
        return self.installed.get(name)

    def record_star(self, name: str, version: str, files: list[str]) -> InstalledStar:
        """Insert or replace the entry for name."""
        entry = InstalledStar(name=name, version=version, files=list(files))
        self.installed[name] = entry
        return entry

    def uninstall_star(self, name: str) -> bool:
        """Remove the entry for name. Returns False if there was none."""
        return self.installed.pop(name, None) is not None

    def satisfies(self, name: str, constraint: str) -> bool:
        """True if name is installed at a version matching constraint."""
        entry = self.installed.get(name)
        if entry is None:
            return False
        return satisfies(entry.version, constraint)

    def to_dict(self) -> dict:
        return {
            "system": {"arch": self.system.arch, "version": self.system.version},
            "installed": {k: v.to_dict() for k, v in self.installed.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Universe":
        if not isinstance(data, dict):
            raise MetadataParseError("Ledger must be a JSON object")
        try:
            system_data = data.get("system") or {}
            system = SystemInfo(
                arch=str(system_data.get("arch") or platform.machine() or "unknown"),
                version=str(system_data.get("version") or __version__),
            )
            installed = {
                name: InstalledStar.from_dict(entry)
                for name, entry in (data.get("installed") or {}).items()
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise MetadataParseError(f"Malformed ledger entry: {e}") from e
        return cls(system=system, installed=installed)

    @classmethod
    def load(cls, path: Path | str) -> "Universe":
        """Load the ledger; a missing file yields a fresh, empty ledger.

        Raises:
            CosmosIOError: If the file exists but cannot be read
            MetadataParseError: If it is not a valid ledger
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No ledger at {path}, starting fresh")
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise CosmosIOError(f"Cannot read ledger {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise MetadataParseError(f"Invalid ledger {path}: {e}") from e
        return cls.from_dict(data)

    def save(self, path: Path | str) -> None:
        """Write the ledger deterministically and atomically."""
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
        atomic_write_bytes(Path(path), (text + "\n").encode("utf-8"))


@contextmanager
def ledger_lock(lock_path: Path | str) -> Iterator[None]:
    """Hold an exclusive lock on the ledger for the duration of the block.

    Raises:
        LockError: If another process already holds the lock
        CosmosIOError: If the lock file cannot be created
    """
    lock_path = Path(lock_path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(lock_path, "a")
    except OSError as e:
        raise CosmosIOError(f"Cannot open lock file {lock_path}: {e}") from e

    with lock_file:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockError(
                f"Another cosmos operation holds the ledger lock ({lock_path})"
            ) from None
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
