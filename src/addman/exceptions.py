"""
Custom exceptions for addman.

Every error raised while updating an add-on is scoped to that add-on: the
update coordinator wraps it in an AddonUpdateError and reports it as the
add-on's status instead of letting it reach sibling add-ons.
"""

from typing import List, Optional, Sequence


class AddmanError(Exception):
    """
    Base exception for all addman errors.

    All custom exceptions in addman should inherit from this class
    to allow for easy catching of all application-specific errors.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(AddmanError):
    """Exception raised when configuration is invalid or missing."""

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when configuration file cannot be read or written."""

    def __init__(
        self, message: str, path: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.path = path


class ConfigValidationError(ConfigurationError):
    """
    Exception raised when configuration validation fails.

    Problems are collected per add-on so every misconfigured entry is reported
    in a single pass instead of one error per run.
    """

    def __init__(self) -> None:
        super().__init__("validation errors found")
        self.addons: List[tuple[str, int, List[str]]] = []

    def add_addon_errors(self, name: str, count: int, errors: Sequence[str]) -> None:
        """
        Record the problems found for one configured add-on.

        Args:
            name: Normalized add-on name (may be empty).
            count: Number of earlier occurrences of the same name; 0 for the first.
            errors: Human-readable problem descriptions.
        """
        self.addons.append((name, count, list(errors)))

    def __str__(self) -> str:
        lines = ["validation errors found:"]
        for name, count, errors in self.addons:
            label = name or "<empty>"
            if count > 0:
                label = f"{label} ({count})"
            lines.append(f"  {label}:")
            lines.extend(f"    - {err}" for err in errors)
        return "\n".join(lines)


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(AddmanError):
    """
    Exception raised when a remote resource cannot be fetched.

    This includes:
    - Connection failures and timeouts
    - DNS resolution failures
    - Broken response streams

    Transport errors are surfaced to the add-on that triggered them and are
    never retried automatically.
    """

    def __init__(
        self, message: str, url: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.url = url


class HTTPError(TransportError):
    """
    Exception raised when the server answers with a non-success status.

    Attributes:
        status_code: The HTTP status code returned by the server.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, url, details)
        self.status_code = status_code


# =============================================================================
# Resolution Errors
# =============================================================================


class DecodeError(AddmanError):
    """Exception raised when a remote JSON document or manifest is malformed."""

    def __init__(
        self, message: str, url: str | None = None, details: str | None = None
    ) -> None:
        super().__init__(message, details)
        self.url = url


class NoAssetFoundError(AddmanError):
    """Exception raised when release resolution runs out of fallback options."""

    pass


# =============================================================================
# Archive and File System Errors
# =============================================================================


class FormatError(AddmanError):
    """Exception raised when a downloaded payload is not a valid zip archive."""

    pass


class FilesystemError(AddmanError):
    """
    Exception raised for file system-related errors.

    This includes:
    - Stale add-on directories that cannot be removed
    - Directories or files that cannot be created or written
    - Archive members that resolve outside the destination directory
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


class ExtractionError(FilesystemError):
    """Exception raised when writing extracted archive members fails."""

    pass


# =============================================================================
# Add-on Errors
# =============================================================================


class AddonUpdateError(AddmanError):
    """
    Exception reported as an add-on's update status.

    Attributes:
        addon: Short name of the add-on that failed.
        cause: The underlying error, also chained as ``__cause__``.
    """

    def __init__(
        self, addon: str, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(message, str(cause) if cause is not None else None)
        self.addon = addon
        self.cause = cause
