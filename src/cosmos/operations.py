"""Public operations.

Every operation returns an OperationResult describing its own outcome;
there is no shared error state between calls. Operations that change the
ledger (install, update, uninstall) hold the ledger lock for their whole
load-mutate-save cycle.

Usage:
    cosmos = Cosmos(root="/mnt/target")
    result = cosmos.install("hello")
    if not result.success:
        print(result.error, result.message)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cosmos.catalog.constellation import Constellation
from cosmos.catalog.galaxy import Galaxy, load_all
from cosmos.catalog.resolver import find_star
from cosmos.catalog.star import Star, fetch_star
from cosmos.catalog.sync import SyncLevel, sync_all
from cosmos.config import Config, CosmosPaths, is_local_locator, resolve_root
from cosmos.errors import (
    CosmosError,
    CosmosIOError,
    DependencyUnresolvedError,
    MissingFileError,
    SemverError,
    TransportError,
)
from cosmos.install.installer import Installer, uninstall_star
from cosmos.install.scripts import ScriptRunner
from cosmos.transport import Transport, build_transport
from cosmos.universe import Universe, ledger_lock
from cosmos.versioning import compare_versions

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Result of a Cosmos operation."""

    success: bool
    message: str
    error: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, exc: CosmosError) -> "OperationResult":
        return cls(success=False, message=str(exc), error=exc.code)


class Cosmos:
    """Facade over config, galaxies, installer and ledger for one system root."""

    def __init__(
        self,
        root: Path | str | None = None,
        offline: bool = False,
        transport: Transport | None = None,
        script_runner: ScriptRunner | None = None,
        install_dir: Path | str | None = None,
    ):
        """Initialize.

        Args:
            root: System root (COSMOS_ROOT, then / when not given)
            offline: Only use local galaxies and the cache
            transport: URL fetcher (plain HTTP only if not given)
            script_runner: Runner for .nova install scripts
            install_dir: Overrides the configured install_dir
        """
        self.paths = CosmosPaths(resolve_root(root))
        self.offline = offline
        self.transport = transport or build_transport()
        self.script_runner = script_runner
        self.install_dir = str(install_dir) if install_dir else None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def load_config(self) -> Config:
        config_path = self.paths.config_path
        if not config_path.exists():
            raise MissingFileError(
                f"Config does not exist at {config_path}. Run `cosmos init` first."
            )
        return Config.from_file(config_path)

    def install_root(self, config: Config | None) -> Path:
        if self.install_dir:
            return Path(self.install_dir)
        if config is not None:
            return Path(config.install_dir)
        return self.paths.root

    def _resolve(
        self,
        galaxies: list[Galaxy],
        config: Config,
        name: str,
        constraint: str = "*",
    ) -> tuple[Star, Galaxy]:
        found = find_star(galaxies, name, constraint)
        if found is None:
            raise DependencyUnresolvedError(
                f"Star '{name}' ({constraint}) not found in any galaxy"
            )
        star, galaxy = found
        return fetch_star(galaxy, star.name, config, self.offline, self.transport), galaxy

    def _with_installer(
        self, work: Callable[[Installer, list[Galaxy], Config], OperationResult]
    ) -> OperationResult:
        """Run work under the ledger lock and save the ledger afterwards.

        The ledger is saved even when work fails, so units that finished
        before the failure stay recorded.
        """
        try:
            with ledger_lock(self.paths.lock_path):
                config = self.load_config()
                universe = Universe.load(self.paths.universe_path)
                galaxies = load_all(config, self.offline, self.transport)
                installer = Installer(
                    config,
                    galaxies,
                    universe,
                    self.transport,
                    script_runner=self.script_runner,
                    offline=self.offline,
                    install_root=self.install_root(config),
                )
                try:
                    result = work(installer, galaxies, config)
                except Exception:
                    # The original failure is the one to report
                    try:
                        universe.save(self.paths.universe_path)
                    except CosmosError as save_error:
                        logger.error(f"Failed to save ledger: {save_error}")
                    raise
                universe.save(self.paths.universe_path)
                return result
        except CosmosError as e:
            logger.error(str(e))
            return OperationResult.failed(e)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def init(self) -> OperationResult:
        """Write the default config and an empty ledger."""
        config_path = self.paths.config_path
        universe_path = self.paths.universe_path

        if config_path.exists():
            return OperationResult(
                success=False,
                message=f"Config already exists at {config_path}",
                error=CosmosIOError.code,
            )

        try:
            Config.create_default(config_path, self.paths.root)
            created_universe = not universe_path.exists()
            if created_universe:
                Universe().save(universe_path)
            else:
                logger.warning(f"Universe already exists at {universe_path}")
        except OSError as e:
            return OperationResult.failed(CosmosIOError(f"Failed to initialize: {e}"))
        except CosmosError as e:
            return OperationResult.failed(e)

        return OperationResult(
            success=True,
            message=f"Wrote config to {config_path}",
            details={
                "config_path": str(config_path),
                "universe_path": str(universe_path),
                "created_universe": created_universe,
            },
        )

    # -------------------------------------------------------------------------
    # Ledger-changing operations
    # -------------------------------------------------------------------------

    def install(self, name: str, constraint: str = "*") -> OperationResult:
        """Install a star and its missing dependencies."""

        def work(installer: Installer, galaxies: list[Galaxy], config: Config):
            star, galaxy = self._resolve(galaxies, config, name, constraint)
            installed = installer.install(star, galaxy)
            return OperationResult(
                success=True,
                message=f"Installed {star.name} {star.version}",
                details={"installed": [e.to_dict() for e in installed]},
            )

        return self._with_installer(work)

    def install_constellation(self, path: Path | str) -> OperationResult:
        """Install every member of a constellation file, in order."""
        try:
            constellation = Constellation.from_file(path)
        except CosmosError as e:
            return OperationResult.failed(e)

        def work(installer: Installer, galaxies: list[Galaxy], config: Config):
            logger.info(f"Installing constellation: {constellation.name}")
            installed = []
            for member_name, constraint in constellation.requests():
                star, galaxy = self._resolve(galaxies, config, member_name, constraint)
                installed.extend(installer.install(star, galaxy))
            return OperationResult(
                success=True,
                message=f"Installed constellation {constellation.name}",
                details={"installed": [e.to_dict() for e in installed]},
            )

        return self._with_installer(work)

    def update(self, name: str) -> OperationResult:
        """Install the newest resolvable version of name if it is newer."""

        def work(installer: Installer, galaxies: list[Galaxy], config: Config):
            latest, galaxy = self._resolve(galaxies, config, name)
            current = installer.universe.get(name)

            if current is not None:
                try:
                    up_to_date = compare_versions(current.version, latest.version) >= 0
                except SemverError as e:
                    logger.warning(f"Cannot compare versions of '{name}': {e}")
                    up_to_date = False
                if up_to_date:
                    return OperationResult(
                        success=True,
                        message=f"'{name}' is already up to date ({current.version})",
                        details={"updated": False, "version": current.version},
                    )
                logger.info(f"Updating {name}: {current.version} -> {latest.version}")
            else:
                logger.info(f"'{name}' is not currently installed. Installing {latest.version}")

            installed = installer.install(latest, galaxy)
            return OperationResult(
                success=True,
                message=f"Update complete for {name} ({latest.version})",
                details={
                    "updated": True,
                    "previous": current.version if current else None,
                    "version": latest.version,
                    "installed": [e.to_dict() for e in installed],
                },
            )

        return self._with_installer(work)

    def uninstall(self, name: str) -> OperationResult:
        """Remove a star's files and its ledger entry."""
        try:
            with ledger_lock(self.paths.lock_path):
                config = self.load_config() if self.paths.config_path.exists() else None
                universe = Universe.load(self.paths.universe_path)
                entry = uninstall_star(name, universe, self.install_root(config))
                universe.save(self.paths.universe_path)
        except CosmosError as e:
            logger.error(str(e))
            return OperationResult.failed(e)

        return OperationResult(
            success=True,
            message=f"Uninstalled {name}",
            details={"version": entry.version, "files": list(entry.files)},
        )

    # -------------------------------------------------------------------------
    # Catalog operations
    # -------------------------------------------------------------------------

    def sync(self, level: SyncLevel = SyncLevel.META_ONLY) -> OperationResult:
        """Mirror remote galaxies into the cache."""
        try:
            config = self.load_config()
        except CosmosError as e:
            return OperationResult.failed(e)

        report = sync_all(config, level, self.transport)
        if report.ok:
            return OperationResult(
                success=True,
                message=f"Sync complete: {report.summary()}",
                details={"report": report},
            )

        failed = ", ".join(g.name for g in report.failed)
        return OperationResult(
            success=False,
            message=f"Sync finished with errors ({failed}): {report.summary()}",
            error=TransportError.code,
            details={"report": report},
        )

    def status(self) -> OperationResult:
        """List installed stars."""
        try:
            universe = Universe.load(self.paths.universe_path)
        except CosmosError as e:
            return OperationResult.failed(e)

        installed = [universe.installed[n].to_dict() for n in sorted(universe.installed)]
        return OperationResult(
            success=True,
            message=f"{len(installed)} stars installed",
            details={
                "system": {"arch": universe.system.arch, "version": universe.system.version},
                "installed": installed,
            },
        )

    def show(self, name: str) -> OperationResult:
        """Describe the star that installing name would pick."""
        try:
            config = self.load_config()
            galaxies = load_all(config, self.offline, self.transport)
            star, galaxy = self._resolve(galaxies, config, name)
            universe = Universe.load(self.paths.universe_path)
        except CosmosError as e:
            return OperationResult.failed(e)

        installed = universe.get(name)
        return OperationResult(
            success=True,
            message=f"{star.name} {star.version}",
            details={
                "star": star.to_dict(),
                "galaxy": galaxy.name,
                "installed_version": installed.version if installed else None,
            },
        )

    def search(self, term: str) -> OperationResult:
        """Find loaded stars whose name or description contains term."""
        try:
            config = self.load_config()
            galaxies = load_all(config, self.offline, self.transport)
        except CosmosError as e:
            return OperationResult.failed(e)

        matches = []
        for galaxy in galaxies:
            for star in sorted(galaxy.stars.values(), key=lambda s: s.name):
                if term in star.name or (star.description and term in star.description):
                    matches.append(
                        {
                            "name": star.name,
                            "version": star.version,
                            "galaxy": galaxy.name,
                            "description": star.description or "",
                        }
                    )

        return OperationResult(
            success=True,
            message=f"{len(matches)} stars match '{term}'",
            details={"matches": matches},
        )

    # -------------------------------------------------------------------------
    # Galaxy configuration
    # -------------------------------------------------------------------------

    def add_galaxy(self, name: str, url: str) -> OperationResult:
        """Add (or repoint) a galaxy. New galaxies get the lowest priority."""
        try:
            config = self.load_config()
            replaced = name in config.galaxies
            config.galaxies[name] = url
            config.save(self.paths.config_path)
        except OSError as e:
            return OperationResult.failed(CosmosIOError(f"Failed to save config: {e}"))
        except CosmosError as e:
            return OperationResult.failed(e)

        needs_sync = not is_local_locator(url)
        verb = "updated" if replaced else "added"
        message = f"Galaxy '{name}' {verb} with URL: {url}"
        if needs_sync:
            message += ". Run `cosmos sync` to fetch the galaxy data."
        return OperationResult(
            success=True,
            message=message,
            details={"name": name, "url": url, "needs_sync": needs_sync},
        )

    def remove_galaxy(self, name: str) -> OperationResult:
        try:
            config = self.load_config()
            if name not in config.galaxies:
                return OperationResult(
                    success=False,
                    message=f"Galaxy not configured: {name}",
                    error="galaxy_not_found",
                )
            del config.galaxies[name]
            config.save(self.paths.config_path)
        except OSError as e:
            return OperationResult.failed(CosmosIOError(f"Failed to save config: {e}"))
        except CosmosError as e:
            return OperationResult.failed(e)

        return OperationResult(success=True, message=f"Galaxy '{name}' removed")

    def list_galaxies(self) -> OperationResult:
        try:
            config = self.load_config()
        except CosmosError as e:
            return OperationResult.failed(e)

        galaxies = [
            {"name": name, "url": url, "local": is_local_locator(url)}
            for name, url in config.galaxies.items()
        ]
        return OperationResult(
            success=True,
            message=f"{len(galaxies)} galaxies configured",
            details={"galaxies": galaxies},
        )
