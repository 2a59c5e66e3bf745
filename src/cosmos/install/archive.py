"""Hashing, atomic writes and safe tarball extraction.

Security protections for extraction:
- Absolute member paths rejected
- Path traversal (tar-slip) via .. components rejected
- Links whose targets resolve outside the extraction root rejected
- Device files and other special members rejected (tarfile data filter)
"""

from __future__ import annotations

import hashlib
import logging
import os
import tarfile
from pathlib import Path

from cosmos.errors import CosmosIOError, MetadataParseError, SecurityViolationError

logger = logging.getLogger(__name__)


def sha256_file(file_path: Path) -> str:
    """Compute lowercase hex SHA-256 of a file."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def atomic_write_bytes(dest: Path, data: bytes) -> None:
    """Write bytes to dest via a .tmp sibling and an atomic rename.

    A failed write never leaves a partial file at dest.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(dest)
    except OSError as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise CosmosIOError(f"Failed to write {dest}: {e}") from e


def is_path_safe(member_path: str, target_dir: Path) -> bool:
    """Check that a relative path stays inside target_dir.

    Rejects absolute paths, Windows drive paths, any .. component, and
    anything that resolves (following existing symlinks) outside target_dir.
    """
    if member_path.startswith("/") or member_path.startswith("\\"):
        return False
    if len(member_path) >= 2 and member_path[1] == ":":
        return False

    normalized = member_path.replace("\\", "/")
    if ".." in normalized.split("/"):
        return False

    full_path = (target_dir / member_path).resolve()
    try:
        full_path.relative_to(target_dir.resolve())
        return True
    except ValueError:
        return False


def is_link_safe(member: tarfile.TarInfo, target_dir: Path) -> bool:
    """Check that a symlink or hardlink member points inside target_dir."""
    if member.issym():
        if member.linkname.startswith("/"):
            return False
        link_parent = Path(member.name).parent
        target = (target_dir / link_parent / member.linkname).resolve()
    else:
        if not is_path_safe(member.linkname, target_dir):
            return False
        target = (target_dir / member.linkname).resolve()
    try:
        target.relative_to(target_dir.resolve())
        return True
    except ValueError:
        return False


def normalize_member_name(name: str) -> str:
    """Normalize an archive member name to a /-prefixed relative path."""
    normalized = name.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return "/" + normalized.strip("/")


def extract_archive(tarball_path: Path, target_dir: Path) -> list[str]:
    """Extract a .tar.gz into target_dir after validating every member.

    Args:
        tarball_path: Archive to extract
        target_dir: Existing, empty extraction directory

    Returns:
        Extracted file and link paths as /-prefixed paths relative to
        target_dir, in archive order (directories are not listed)

    Raises:
        SecurityViolationError: If any member escapes target_dir
        MetadataParseError: If the archive cannot be read
    """
    extracted: list[str] = []
    try:
        with tarfile.open(tarball_path, "r:*") as tf:
            members = tf.getmembers()
            for member in members:
                if not is_path_safe(member.name, target_dir):
                    raise SecurityViolationError(
                        f"Unsafe path in archive {tarball_path.name}: {member.name}"
                    )
                if (member.issym() or member.islnk()) and not is_link_safe(
                    member, target_dir
                ):
                    raise SecurityViolationError(
                        f"Link escapes extraction root in {tarball_path.name}: "
                        f"{member.name} -> {member.linkname}"
                    )

            try:
                tf.extractall(target_dir, members=members, filter="data")
            except tarfile.FilterError as e:
                raise SecurityViolationError(
                    f"Rejected archive member in {tarball_path.name}: {e}"
                ) from e

            for member in members:
                if member.isfile() or member.issym() or member.islnk():
                    extracted.append(normalize_member_name(member.name))
    except tarfile.TarError as e:
        raise MetadataParseError(f"Cannot read archive {tarball_path}: {e}") from e
    except OSError as e:
        raise CosmosIOError(f"Failed to extract {tarball_path}: {e}") from e

    logger.debug(f"Extracted {len(extracted)} entries from {tarball_path.name}")
    return extracted
