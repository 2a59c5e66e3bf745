"""Install actions: shell scripts and sandboxed Nova scripts.

A Nova script is a YAML document with an ``install`` list of steps. Each
step names exactly one capability, optionally guarded:

    install:
      - mkdir: /usr/bin
      - copy: {from: bin/tool, to: /usr/bin/tool}
      - chmod: {path: /usr/bin/tool, mode: "755"}
      - symlink: {target: tool, link: /usr/bin/t}
      - run: [make, install]
        unless_exists: /usr/bin/t

Capabilities only reach two roots: ``run`` executes with the extraction
root as working directory, ``copy`` reads from <extraction>/files and
everything else writes inside the install root.

Scripts ending in .lua go through the same runner and must be Nova
documents; they never reach the shell.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml

from cosmos.errors import CosmosError, ScriptFailedError, SecurityViolationError

logger = logging.getLogger(__name__)

SANDBOXED_EXTENSIONS = (".nova", ".lua")

NOVA_ACTIONS = ("run", "copy", "symlink", "mkdir", "chmod")


def uses_sandboxed_runner(install_script: str | None) -> bool:
    """True if an install script must go through the script runner."""
    return bool(install_script) and install_script.endswith(SANDBOXED_EXTENSIONS)


@runtime_checkable
class ScriptRunner(Protocol):
    """Runs a sandboxed install script."""

    def run_install_script(
        self, script_path: Path, extraction_root: Path, install_root: Path
    ) -> list[str]:
        """Run the script and return the files it wrote (/-prefixed,
        relative to install_root)."""
        ...


def run_shell_script(script_path: Path, extraction_root: Path) -> None:
    """Run an install script with sh, rooted at the extraction directory.

    Raises:
        ScriptFailedError: If the script cannot be started or exits nonzero
    """
    try:
        result = subprocess.run(
            ["sh", "-c", str(script_path)],
            cwd=extraction_root,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        raise ScriptFailedError(f"Cannot run {script_path.name}: {e}") from e

    if result.stdout:
        logger.debug(result.stdout.rstrip())
    if result.returncode != 0:
        detail = result.stderr.strip() or f"exit status {result.returncode}"
        raise ScriptFailedError(f"{script_path.name} failed: {detail}")


def within_root(root: Path, requested: str) -> Path:
    """Map a script-supplied path into root.

    Absolute paths are re-rooted (``/usr/bin`` -> ``root/usr/bin``).

    Raises:
        SecurityViolationError: If the result would leave root
    """
    relative = str(requested).replace("\\", "/").lstrip("/")
    if ".." in relative.split("/"):
        raise SecurityViolationError(f"Path escapes its root: {requested}")

    full_path = root / relative
    try:
        full_path.resolve().relative_to(root.resolve())
    except ValueError:
        raise SecurityViolationError(f"Path escapes its root: {requested}") from None
    return full_path


def recorded_path(requested: str) -> str:
    """Ledger form of a script-supplied install path."""
    relative = str(requested).replace("\\", "/")
    while relative.startswith("./"):
        relative = relative[2:]
    return "/" + relative.strip("/")


class NovaCapabilities:
    """The only operations a Nova script can perform."""

    def __init__(self, extraction_root: Path, install_root: Path):
        self.extraction_root = extraction_root
        self.install_root = install_root
        self.files_root = extraction_root / "files"
        self.written: list[str] = []

    def run(self, args: list[str]) -> int:
        if not args:
            raise ScriptFailedError("run requires at least one argument")
        try:
            result = subprocess.run(
                [str(a) for a in args], cwd=self.extraction_root, capture_output=True
            )
        except OSError as e:
            raise ScriptFailedError(f"Command failed to start: {args}: {e}") from e
        if result.returncode != 0:
            raise ScriptFailedError(f"Command failed: {args}")
        return result.returncode

    def copy(self, source: str, dest: str) -> None:
        full_from = within_root(self.files_root, source)
        full_to = within_root(self.install_root, dest)
        if not full_from.exists():
            raise ScriptFailedError(f"Source file does not exist: files/{source}")

        full_to.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(full_from, full_to)
        self.written.append(recorded_path(dest))

    def symlink(self, target: str, link: str) -> None:
        full_link = within_root(self.install_root, link)
        full_link.parent.mkdir(parents=True, exist_ok=True)
        if full_link.is_symlink() or full_link.is_file():
            full_link.unlink()
        os.symlink(target, full_link)
        self.written.append(recorded_path(link))

    def mkdir(self, path: str) -> None:
        within_root(self.install_root, path).mkdir(parents=True, exist_ok=True)

    def chmod(self, path: str, mode: int | str) -> None:
        if isinstance(mode, str):
            mode = int(mode, 8)
        within_root(self.install_root, path).chmod(mode)

    def exists(self, path: str) -> bool:
        return within_root(self.install_root, path).exists()


class NovaScriptRunner:
    """Interprets .nova (and .lua) install scripts against NovaCapabilities."""

    def run_install_script(
        self, script_path: Path, extraction_root: Path, install_root: Path
    ) -> list[str]:
        try:
            with open(script_path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except OSError as e:
            raise ScriptFailedError(f"Cannot read {script_path.name}: {e}") from e
        except yaml.YAMLError as e:
            raise ScriptFailedError(f"Invalid Nova script {script_path.name}: {e}") from e

        steps = document.get("install") if isinstance(document, dict) else None
        if not isinstance(steps, list):
            raise ScriptFailedError(
                f"Nova script {script_path.name} has no 'install' step list"
            )

        caps = NovaCapabilities(extraction_root, install_root)
        for index, step in enumerate(steps, start=1):
            try:
                self._run_step(caps, step)
            except CosmosError:
                raise
            except (OSError, KeyError, ValueError, TypeError) as e:
                raise ScriptFailedError(
                    f"{script_path.name} step {index} failed: {e}"
                ) from e

        return caps.written

    def _run_step(self, caps: NovaCapabilities, step: object) -> None:
        if not isinstance(step, dict):
            raise ScriptFailedError(f"Step must be a mapping: {step!r}")

        if "if_exists" in step and not caps.exists(step["if_exists"]):
            return
        if "unless_exists" in step and caps.exists(step["unless_exists"]):
            return

        actions = [key for key in step if key in NOVA_ACTIONS]
        unknown = [
            key
            for key in step
            if key not in NOVA_ACTIONS and key not in ("if_exists", "unless_exists")
        ]
        if unknown:
            raise ScriptFailedError(f"Unknown Nova capability: {', '.join(unknown)}")
        if len(actions) != 1:
            raise ScriptFailedError(f"Step must name exactly one action: {step!r}")

        action = actions[0]
        value = step[action]
        logger.debug(f"nova: {action} {value!r}")

        if action == "run":
            caps.run(value if isinstance(value, list) else str(value).split())
        elif action == "copy":
            caps.copy(value["from"], value["to"])
        elif action == "symlink":
            caps.symlink(value["target"], value["link"])
        elif action == "mkdir":
            caps.mkdir(value)
        elif action == "chmod":
            caps.chmod(value["path"], value["mode"])
