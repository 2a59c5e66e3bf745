"""Error taxonomy for the Cosmos core.

Every failure raised by the core is a CosmosError subclass carrying a
stable ``code`` string. The operations layer turns these into
OperationResult values; nothing here prints or exits.
"""

from __future__ import annotations


class CosmosError(Exception):
    """Base class for all Cosmos failures."""

    code = "error"

    def __init__(self, message: str, star: str | None = None):
        self.star = star
        self.message = message
        full_message = f"[{star}] {message}" if star else message
        super().__init__(full_message)


class CosmosIOError(CosmosError):
    """Filesystem read/write failure."""

    code = "io"


class LockError(CosmosIOError):
    """Another operation holds the ledger lock."""

    code = "locked"


class TransportError(CosmosError):
    """Fetching remote bytes failed."""

    code = "transport_failure"


class UnsupportedUrlError(TransportError):
    """URL scheme or shape is not allowed by the configured transports."""

    code = "unsupported_url"


class DependencyUnresolvedError(CosmosError):
    """A required star could not be found in any galaxy."""

    code = "dependency_unresolved"


class DependencyCycleError(DependencyUnresolvedError):
    """Dependencies form a cycle."""

    code = "dependency_cycle"

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class SemverError(CosmosError):
    """Version or constraint text could not be parsed."""

    code = "semver_parse"


class MetadataParseError(CosmosError):
    """A descriptor, manifest or config document is malformed."""

    code = "metadata_parse"


class CopyFailedError(CosmosError):
    code = "copy_failed"


class MissingFileError(CosmosError):
    code = "file_not_found"


class ChecksumMismatchError(CosmosError):
    code = "checksum_mismatch"


class InvalidChecksumFormatError(CosmosError):
    code = "invalid_checksum_format"


class SecurityViolationError(CosmosError):
    """A path escapes the directory it must stay inside."""

    code = "security_violation"


class ScriptFailedError(CosmosError):
    code = "script_failed"


class MissingFieldError(CosmosError):
    """A required descriptor field is absent or empty."""

    code = "missing_field"


class NotInstalledError(CosmosError):
    code = "not_installed"
