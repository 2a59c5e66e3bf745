"""Star installer and uninstaller.

Install runs in two phases:
1. Plan: walk the dependency graph with an explicit worklist and produce
   every unit exactly once, dependencies before dependents. Cycles and
   unresolvable requirements fail here, before anything is touched.
2. Execute: install each planned unit in order and record it in the
   ledger as soon as it finishes. A failing unit stops the plan; units
   already recorded stay recorded.

Per-unit pipeline: acquire artifact -> verify tarball checksum -> extract
into a temporary directory -> verify per-file checksums -> install action
-> ledger update.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from cosmos.catalog.galaxy import Galaxy
from cosmos.catalog.resolver import find_star
from cosmos.catalog.star import Star
from cosmos.config import Config, locator_to_path
from cosmos.errors import (
    CopyFailedError,
    DependencyCycleError,
    DependencyUnresolvedError,
    MissingFieldError,
    MissingFileError,
    NotInstalledError,
    SecurityViolationError,
    TransportError,
    UnsupportedUrlError,
)
from cosmos.install.archive import atomic_write_bytes, extract_archive, is_path_safe
from cosmos.install.integrity import (
    FILES_SUBDIR,
    verify_file_checksums,
    verify_tarball_checksum,
)
from cosmos.install.scripts import NovaScriptRunner, ScriptRunner, run_shell_script
from cosmos.transport import Transport, url_scheme
from cosmos.universe import InstalledStar, Universe
from cosmos.versioning import satisfies

logger = logging.getLogger(__name__)


@dataclass
class PlannedUnit:
    """A star scheduled for installation and the galaxy it comes from."""

    star: Star
    origin: Galaxy

    @property
    def name(self) -> str:
        return self.star.name


class Installer:
    """Installs stars into an install root and records them in a ledger.

    Usage:
        installer = Installer(config, galaxies, universe, transport)
        installed = installer.install(star, origin)
        universe.save(paths.universe_path)
    """

    def __init__(
        self,
        config: Config,
        galaxies: list[Galaxy],
        universe: Universe,
        transport: Transport,
        script_runner: ScriptRunner | None = None,
        offline: bool = False,
        install_root: Path | str | None = None,
    ):
        """Initialize installer.

        Args:
            config: Active configuration (cache layout, default install dir)
            galaxies: Galaxies in priority order, for dependency resolution
            universe: Ledger to update; saving it is the caller's job
            transport: Used to download artifacts not in the cache
            script_runner: Runs .nova install scripts (NovaScriptRunner if None)
            offline: Never download when True
            install_root: Overrides config.install_dir
        """
        self.config = config
        self.galaxies = galaxies
        self.universe = universe
        self.transport = transport
        self.script_runner = script_runner or NovaScriptRunner()
        self.offline = offline
        self.install_root = Path(install_root or config.install_dir)

    def plan(self, star: Star, origin: Galaxy) -> list[PlannedUnit]:
        """Compute the install order for star and its missing dependencies.

        Dependencies already satisfied by the ledger are left out. The
        requested star itself is always part of the plan, last.

        Raises:
            DependencyCycleError: If the dependency graph has a cycle
            DependencyUnresolvedError: If a dependency matches no galaxy, or
                two dependents need incompatible versions of one star
        """
        planned: dict[str, PlannedUnit] = {}
        path = [star.name]
        stack: list[tuple[PlannedUnit, Iterator[tuple[str, str]]]] = [
            (PlannedUnit(star, origin), iter(star.get_dependencies()))
        ]

        while stack:
            unit, pending = stack[-1]
            for dep_name, constraint in pending:
                if dep_name in path:
                    raise DependencyCycleError(path[path.index(dep_name) :] + [dep_name])

                if dep_name in planned:
                    planned_version = planned[dep_name].star.version
                    if not satisfies(planned_version, constraint):
                        raise DependencyUnresolvedError(
                            f"Dependency '{dep_name}' requires {constraint}, "
                            f"but {planned_version} is already planned",
                            unit.name,
                        )
                    continue

                if self.universe.satisfies(dep_name, constraint):
                    logger.debug(f"Dependency '{dep_name}' ({constraint}) already installed")
                    continue

                found = find_star(self.galaxies, dep_name, constraint)
                if found is None:
                    raise DependencyUnresolvedError(
                        f"Dependency '{dep_name}' ({constraint}) not found in any galaxy",
                        unit.name,
                    )

                dep_star, dep_origin = found
                stack.append((PlannedUnit(dep_star, dep_origin), iter(dep_star.get_dependencies())))
                path.append(dep_name)
                break
            else:
                stack.pop()
                path.pop()
                planned[unit.name] = unit

        return list(planned.values())

    def install(self, star: Star, origin: Galaxy) -> list[InstalledStar]:
        """Install star and its dependencies.

        Returns:
            Ledger entries written, in install order

        Raises:
            CosmosError: From planning or from the first unit that fails
        """
        units = self.plan(star, origin)
        logger.debug(f"Install plan: {', '.join(u.name for u in units)}")

        installed = []
        for unit in units:
            installed.append(self.install_unit(unit.star, unit.origin))
        return installed

    def install_unit(self, star: Star, origin: Galaxy) -> InstalledStar:
        """Install one star without looking at its dependencies."""
        logger.info(f"Installing star: {star.name} {star.version}")

        if star.is_aggregator:
            logger.info(
                f"{star.type.value.capitalize()} '{star.name}' does not extract files "
                "or run scripts. Installation has been logged"
            )
            return self.universe.record_star(star.name, star.version, [])

        tarball_path = self._acquire_artifact(star, origin)
        verify_tarball_checksum(tarball_path, star.name, origin.checksums)

        with tempfile.TemporaryDirectory(prefix="cosmos-") as tmp:
            extraction_root = Path(tmp)
            extracted = extract_archive(tarball_path, extraction_root)

            if star.checksums is not None:
                count = verify_file_checksums(extraction_root, star.checksums, star.name)
                logger.info(f"Verified {count} file checksums for '{star.name}'")

            files = self._run_install_action(star, extraction_root, extracted)

        entry = self.universe.record_star(star.name, star.version, files)
        logger.info(f"Installed: {star.name} {star.version}")
        return entry

    def _acquire_artifact(self, star: Star, origin: Galaxy) -> Path:
        """Return a local tarball for star, downloading it into the cache if needed.

        Raises:
            MissingFieldError: If nothing is cached and the star has no source
            MissingFileError: If a local source does not exist
            TransportError: If a download is needed in offline mode, or fails
            UnsupportedUrlError: If the source scheme is not enabled
        """
        cached = origin.cached_artifact_path(star, self.config)
        if cached.exists():
            logger.debug(f"Using cached tarball: {cached}")
            return cached

        if not star.source:
            raise MissingFieldError("Star has no source and no tarball cached", star.name)

        resolved = origin.resolve_source(star.source)

        if resolved.startswith("file://") or not url_scheme(resolved):
            local_path = locator_to_path(resolved)
            if not local_path.is_file():
                raise MissingFileError(
                    f"Local source path does not exist: {local_path}", star.name
                )
            logger.info(f"Using local tarball at: {local_path}")
            return local_path

        if self.offline:
            raise TransportError(
                "Missing tarball and offline mode is enabled", star.name
            )
        if not self.transport.supports_url(resolved):
            raise UnsupportedUrlError(f"Unsupported source URL: {resolved}", star.name)

        logger.info(f"Downloading tarball: {resolved}")
        data = self.transport.fetch_bytes(resolved)
        atomic_write_bytes(cached, data)
        return cached

    def _run_install_action(
        self, star: Star, extraction_root: Path, extracted: list[str]
    ) -> list[str]:
        if star.install_script:
            if not is_path_safe(star.install_script, extraction_root):
                raise SecurityViolationError(
                    f"Install script escapes the archive: {star.install_script}",
                    star.name,
                )
            script_path = extraction_root / star.install_script
            if not script_path.is_file():
                raise MissingFileError(
                    f"Install script not found in archive: {star.install_script}",
                    star.name,
                )

            if star.uses_nova:
                logger.info(f"Running sandboxed install script: {star.install_script}")
                return list(
                    self.script_runner.run_install_script(
                        script_path, extraction_root, self.install_root
                    )
                )

            logger.info(f"Running shell install script: {star.install_script}")
            run_shell_script(script_path, extraction_root)
            return list(extracted)

        files_dir = extraction_root / FILES_SUBDIR
        if files_dir.is_dir():
            logger.info(f"No install script. Copying {FILES_SUBDIR}/* to {self.install_root}")
            return self._copy_files(files_dir, star.name)

        logger.warning(
            f"No install script and no {FILES_SUBDIR}/ directory for '{star.name}'. "
            "Nothing to do."
        )
        return []

    def _copy_files(self, files_dir: Path, star_name: str) -> list[str]:
        """Copy files_dir recursively into the install root, overwriting.

        Returns every copied file and link as a /-prefixed path relative to
        the install root.
        """
        copied: list[str] = []
        try:
            for dirpath, dirnames, filenames in os.walk(files_dir):
                dirnames.sort()
                current = Path(dirpath)
                relative_dir = current.relative_to(files_dir)
                (self.install_root / relative_dir).mkdir(parents=True, exist_ok=True)

                # os.walk lists symlinks to directories as dirnames
                names = sorted(filenames + [d for d in dirnames if (current / d).is_symlink()])
                for name in names:
                    source = current / name
                    relative = relative_dir / name
                    dest = self.install_root / relative

                    if dest.is_dir() and not dest.is_symlink():
                        raise CopyFailedError(
                            f"Destination is a directory: /{relative.as_posix()}", star_name
                        )
                    if dest.is_symlink() or dest.is_file():
                        dest.unlink()
                    if source.is_symlink():
                        os.symlink(os.readlink(source), dest)
                    else:
                        shutil.copy2(source, dest)
                    copied.append("/" + relative.as_posix())
        except OSError as e:
            raise CopyFailedError(f"Failed to copy files: {e}", star_name) from e

        return copied


def _path_in_root(root: Path, recorded: str) -> Path | None:
    """Map a ledger path under root without following its final component."""
    relative = recorded.replace("\\", "/").lstrip("/")
    if not relative or ".." in relative.split("/"):
        return None

    path = root / relative
    try:
        path.parent.resolve().relative_to(root)
    except ValueError:
        return None
    return path


def uninstall_star(name: str, universe: Universe, install_root: Path | str) -> InstalledStar:
    """Delete a star's recorded files and drop its ledger entry.

    Paths escaping the install root, missing files and directories are
    skipped; per-file deletion errors are logged. Once the entry is found it
    is always removed from the ledger.

    Returns:
        The removed ledger entry

    Raises:
        NotInstalledError: If name is not in the ledger
    """
    entry = universe.get(name)
    if entry is None:
        raise NotInstalledError(f"Star '{name}' is not installed")

    logger.info(f"Uninstalling star: {name} {entry.version}")
    root = Path(install_root).resolve()

    for recorded in entry.files:
        path = _path_in_root(root, recorded)
        if path is None:
            logger.warning(f"Skipping path outside install root: {recorded}")
            continue

        if path.is_symlink() or path.is_file():
            try:
                path.unlink()
                logger.debug(f"Removed {path}")
            except OSError as e:
                logger.error(f"Failed to remove {path}: {e}")
        elif path.is_dir():
            logger.debug(f"Leaving directory {path}")
        else:
            logger.info(f"Skipped missing {path}")

    universe.uninstall_star(name)
    logger.info(f"Uninstalled: {name}")
    return entry
