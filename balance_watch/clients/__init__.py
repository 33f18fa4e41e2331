"""Expose constructed client wrappers."""

from .account_api import (
    AccountApiClient,
    AccountServiceError,
    ErrorKind,
    HttpRejectedError,
    MalformedResponseError,
    NetworkUnreachableError,
    UnknownAccountError,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "AccountApiClient",
    "AccountServiceError",
    "ErrorKind",
    "HttpRejectedError",
    "MalformedResponseError",
    "NetworkUnreachableError",
    "SQLiteStore",
    "UnknownAccountError",
]
