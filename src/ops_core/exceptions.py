"""Domain-specific exceptions for the ops aggregation engine.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from OpsAPIError for easy catching.
"""


class OpsAPIError(Exception):
    """Base exception for all aggregation engine errors.

    Users can catch this exception to handle any engine error.
    """

    pass


class ConfigError(OpsAPIError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Invalid configuration values are provided
    - Environment variables cannot be parsed
    """

    pass


class DataQualityError(OpsAPIError):
    """Raised when a single raw record cannot be normalized.

    Aggregators catch this per record, count it and report it as a warning.
    It only escapes to callers from the low-level normalization helpers.
    The concrete per-record errors are ``MalformedLine`` (sales) and
    ``MalformedShift`` (labor).
    """

    pass


class IdentityConflictError(OpsAPIError):
    """Raised when duplicate worker identities are found in strict mode.

    In the default (non-strict) mode duplicates are reported instead and
    the first profile wins.
    """

    pass


class ETLError(OpsAPIError):
    """Raised when an aggregation pass fails as a whole."""

    pass


class StoreUnavailableError(ETLError):
    """Raised when reading from or writing to the RawStore fails.

    This exception is raised when:
    - A collection file cannot be read or written
    - A filter cannot be evaluated against stored documents
    - A bulk write is rejected by the backing store
    """

    pass


class AggregationCancelled(ETLError):
    """Raised when an in-flight pass is cancelled or exceeds its time budget."""

    pass
