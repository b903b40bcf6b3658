"""
Error types for release mirroring.

Every error carries the process exit code the CLI reports when it ends a run.
"""


class MirrorError(Exception):
    """Base exception for release mirroring errors."""

    exit_code = 1


class ConfigurationError(MirrorError):
    """Raised when credentials, bucket identity or other settings are missing or invalid."""

    exit_code = 2


class CorruptStateError(MirrorError):
    """Raised when the persisted index document cannot be parsed."""

    exit_code = 3


class TransportError(MirrorError):
    """Raised when talking to the hosting platform fails."""

    exit_code = 4


class TransportTimeoutError(TransportError):
    """Raised when a hosting platform request exceeds its timeout."""

    pass


class StorageError(MirrorError):
    """Raised when a storage operation fails."""

    exit_code = 5


class ObjectNotFoundError(StorageError):
    """Raised when storage object doesn't exist."""

    pass


class DiskSpaceError(StorageError):
    """Raised when the scratch directory has no room for a download."""

    pass


class SerializationError(MirrorError):
    """Raised when the index document cannot be encoded or written."""

    exit_code = 6
