"""Artifact integrity checks.

Two layers:
1. Tarball level: the origin galaxy may publish a SHA-256 per star.
2. File level: a star may carry checksums for paths under files/ in its
   archive. Every entry is validated (containment, format, existence)
   before any file is hashed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path

from cosmos.errors import (
    ChecksumMismatchError,
    InvalidChecksumFormatError,
    MissingFileError,
    SecurityViolationError,
)
from cosmos.install.archive import is_path_safe, sha256_file

logger = logging.getLogger(__name__)

SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")

FILES_SUBDIR = "files"


def is_valid_sha256(value: object) -> bool:
    """True if value is a 64-character lowercase hex string."""
    return isinstance(value, str) and bool(SHA256_PATTERN.match(value))


def verify_tarball_checksum(
    tarball_path: Path,
    star_name: str,
    checksums: Mapping[str, str] | None,
) -> bool:
    """Verify a tarball against its galaxy-published checksum.

    Args:
        tarball_path: Artifact to hash
        star_name: Star the artifact belongs to
        checksums: The origin galaxy's star-name -> sha256 map, if any

    Returns:
        True if a checksum was found and matched, False if none was published

    Raises:
        ChecksumMismatchError: If the published checksum does not match
    """
    if checksums is None:
        logger.warning(f"No checksum validation for '{tarball_path.name}'")
        return False

    expected = checksums.get(star_name)
    if expected is None:
        logger.warning(f"No checksum found for '{tarball_path.name}'")
        return False

    actual = sha256_file(tarball_path)
    if actual != str(expected).strip().lower():
        raise ChecksumMismatchError(
            f"Checksum mismatch for '{tarball_path.name}': "
            f"expected {expected}, got {actual}",
            star_name,
        )

    logger.info(f"Checksum verified for '{tarball_path.name}'")
    return True


def resolve_checked_file(files_root: Path, rel_path: str, star_name: str) -> Path:
    """Resolve a checksum entry inside files_root.

    Raises:
        SecurityViolationError: If the path, lexically or through a
            symlink, leaves files_root
        MissingFileError: If the file does not exist
    """
    if not is_path_safe(rel_path, files_root):
        raise SecurityViolationError(
            f"Checksum path escapes {FILES_SUBDIR}/: {rel_path}", star_name
        )

    candidate = files_root / rel_path
    canonical = candidate.resolve()
    try:
        canonical.relative_to(files_root.resolve())
    except ValueError:
        raise SecurityViolationError(
            f"Checksum path resolves outside {FILES_SUBDIR}/: {rel_path}", star_name
        ) from None

    if not canonical.is_file():
        raise MissingFileError(
            f"File listed in checksums not found: {FILES_SUBDIR}/{rel_path}",
            star_name,
        )
    return canonical


def verify_file_checksums(
    extraction_root: Path,
    checksums: Mapping[str, str],
    star_name: str,
) -> int:
    """Verify per-file checksums against an extracted archive.

    Args:
        extraction_root: Directory the archive was extracted into
        checksums: Path (relative to files/) -> lowercase hex sha256
        star_name: For error messages

    Returns:
        Number of files verified

    Raises:
        SecurityViolationError, InvalidChecksumFormatError, MissingFileError:
            Raised by the validation pass, before any hashing
        ChecksumMismatchError: If a computed hash differs
    """
    files_root = extraction_root / FILES_SUBDIR

    checked: list[tuple[str, Path, str]] = []
    for rel_path, expected in checksums.items():
        if not is_path_safe(rel_path, files_root):
            raise SecurityViolationError(
                f"Checksum path escapes {FILES_SUBDIR}/: {rel_path}", star_name
            )
        if not is_valid_sha256(expected):
            raise InvalidChecksumFormatError(
                f"Checksum for '{rel_path}' is not 64 lowercase hex characters: "
                f"{expected!r}",
                star_name,
            )
        checked.append((rel_path, resolve_checked_file(files_root, rel_path, star_name), expected))

    for rel_path, path, expected in checked:
        actual = sha256_file(path)
        if actual != expected:
            raise ChecksumMismatchError(
                f"Checksum mismatch for {FILES_SUBDIR}/{rel_path}: "
                f"expected {expected}, got {actual}",
                star_name,
            )
        logger.debug(f"Verified {FILES_SUBDIR}/{rel_path}")

    return len(checked)
