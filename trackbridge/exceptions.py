"""TrackBridge exception classes."""


class TrackBridgeError(Exception):
    """Base class for all TrackBridge exceptions."""

    # Process exit code used when the error reaches the entry point
    exit_code: int = 1


# Configuration errors
class ConfigError(TrackBridgeError):
    """Base class for configuration-related errors."""

    exit_code = 2


class ServiceConfigError(ConfigError, ValueError):
    """Invalid or incomplete configuration for a tracking service."""

    exit_code = 2


class DataPathError(ConfigError, ValueError):
    """The configured data directory path cannot be used."""

    exit_code = 2


# Storage errors
class StorageError(TrackBridgeError):
    """Base class for local persistence failures."""

    exit_code = 3


class WatchHistoryLoadError(StorageError, RuntimeError):
    """Watch history entries could not be loaded from the store."""

    exit_code = 3


class WatchHistoryWriteError(StorageError, RuntimeError):
    """A merged watch history entry could not be written back."""

    exit_code = 3


class CacheEntryError(StorageError, ValueError):
    """A cached service ID entry is malformed and cannot be decoded."""

    exit_code = 3


# Tracking service errors
class TrackingServiceError(TrackBridgeError):
    """Base class for tracking service failures."""

    exit_code = 4


class AuthenticationError(TrackingServiceError, PermissionError):
    """The tracking service rejected or lacks a valid bearer token."""

    exit_code = 4


class TokenRefreshError(AuthenticationError):
    """An expired OAuth token could not be refreshed."""

    exit_code = 4


class ProgressFetchError(TrackingServiceError, RuntimeError):
    """Remote progress could not be fetched because the call failed."""

    exit_code = 4


class UnsupportedServiceError(TrackingServiceError, ValueError):
    """The requested tracking service has no adapter implementation."""

    exit_code = 4


# Scheduler errors
class SchedulerError(TrackBridgeError):
    """Base class for scheduling and debouncing failures."""

    exit_code = 5


class DebouncerDisposedError(SchedulerError, RuntimeError):
    """A sync was requested from a debouncer that has been disposed."""

    exit_code = 5
