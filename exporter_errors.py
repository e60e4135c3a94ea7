"""
Exceptions and process exit-codes shared by the exporter modules.
"""

## exit codes -------------------------------------------------------
E_SUCCESS: int = 0
E_GENERAL_ERROR: int = 1
E_INVALID_ARGS: int = 2
E_LOCK_EXISTS: int = 4
E_NETWORK_ERROR: int = 5
E_PERMISSION_ERROR: int = 6
E_ALREADY_EXISTS: int = 7
E_UNSUPPORTED_LIBRARY: int = 8


class ExporterError(Exception):
    """Base for errors that end one export (or the whole run)."""

    exit_code: int = E_GENERAL_ERROR


class ConfigError(ExporterError):
    exit_code = E_INVALID_ARGS


class FetchError(ExporterError):
    """A request to the Plex server failed after all retries."""

    exit_code = E_NETWORK_ERROR


class SizeUnavailable(FetchError):
    """The zero-size probe did not yield a usable `totalSize`."""


class PageFailed(FetchError):
    def __init__(self, offset: int, cause: Exception | None = None) -> None:
        self.offset: int = offset
        self.cause: Exception | None = cause
        super().__init__(f'page at offset {offset} failed: {cause}')


class AlreadyExists(ExporterError):
    exit_code = E_ALREADY_EXISTS


class UnsupportedLibraryKind(ExporterError):
    exit_code = E_UNSUPPORTED_LIBRARY


class LibraryNotFound(ExporterError):
    exit_code = E_GENERAL_ERROR


class LockHeld(ExporterError):
    exit_code = E_LOCK_EXISTS


class ExportIOError(ExporterError):
    """Writing one library's output file failed (bad path, no permission, disk full...)."""

    def __init__(self, message: str, cause: OSError) -> None:
        self.cause: OSError = cause
        self.exit_code = E_PERMISSION_ERROR if isinstance(cause, PermissionError) else E_GENERAL_ERROR
        super().__init__(message)
