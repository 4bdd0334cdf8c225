"""Enumeration types used throughout the receipt-to-ledger API.

Enumerations constrain the values that cross the API boundary and make
branching on domain concepts (error kinds, review stages) explicit
instead of relying on message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every service boundary."""

    CONFIG = "config"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    PROCESSING = "processing"
    COMMIT = "commit"
    UNAVAILABLE = "unavailable"


class ReviewStage(str, Enum):
    """Stage of a receipt review workflow."""

    EXTRACT = "extract"
    REVIEW = "review"
    COMMIT = "commit"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class StorageBackend(str, Enum):
    FILESYSTEM = "filesystem"
    MINIO = "minio"
