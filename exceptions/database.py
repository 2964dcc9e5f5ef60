"""
Database Exception Classes for Liveness Sweep

Specialized exceptions for registry access: connection issues,
failed queries, missing rows and unreadable snapshots.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from exceptions.base import LivenessMonitorException


class DatabaseException(LivenessMonitorException):
    """
    Base Database Exception

    Parent class for all database-related exceptions.
    """

    default_error_code = 2000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize database exception.

        Args:
            message: Error message
            query: The SQL query that caused the error (sanitized)
            table: The database table involved
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if query:
            self.details["query"] = self._sanitize_query(query)

        if table:
            self.details["table"] = table

    @staticmethod
    def _sanitize_query(query: str) -> str:
        """Strip literal values from a SQL statement before it is logged."""
        query = re.sub(r"'[^']*'", "'***'", query)
        query = re.sub(r"= \d+", "= ***", query)

        if len(query) > 500:
            query = query[:500] + "..."

        return query


class DatabaseConnectionError(DatabaseException):
    """
    Database Connection Error

    Raised when unable to establish or maintain database connection.
    """

    default_error_code = 2001
    default_recoverable = False

    def __init__(
        self,
        message: str = "Unable to connect to database",
        url: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if url:
            self.details["url"] = url


class DatabaseQueryError(DatabaseException):
    """
    Database Query Error

    Raised when a statement fails. The affected device is retried
    on the next sweep cycle.
    """

    default_error_code = 2002


class DatabaseNotFoundError(DatabaseException):
    """
    Database Not Found Error

    Raised when an addressed row does not exist.
    """

    default_error_code = 2003

    def __init__(
        self,
        message: str = "Record not found",
        family_id: Optional[str] = None,
        device_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if family_id:
            self.details["family_id"] = family_id

        if device_id:
            self.details["device_id"] = device_id


class SnapshotUnavailableError(DatabaseException):
    """
    Snapshot Unavailable Error

    Raised when the family/device snapshot cannot be read. This is the
    only failure that aborts a whole sweep cycle.
    """

    default_error_code = 2004
