"""Core utilities for upload handling."""

from upload_guard.core.logging import (
    get_logger,
    configure_logging,
    upload_log_context,
)
from upload_guard.core.errors import (
    UploadGuardError,
    MissingFileError,
    ValidationFailedError,
    InvalidFileError,
    PersistenceFailedError,
    UnknownRuleError,
    InvalidRuleParameterError,
    TransactionStateError,
    StorageError,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "upload_log_context",
    # Errors
    "UploadGuardError",
    "MissingFileError",
    "ValidationFailedError",
    "InvalidFileError",
    "PersistenceFailedError",
    "UnknownRuleError",
    "InvalidRuleParameterError",
    "TransactionStateError",
    "StorageError",
]
