"""
Error taxonomy shared by the persistence adapters, the service and the API.
"""

from __future__ import annotations


class OrchardError(Exception):
    """Base class for errors the API translates into HTTP responses."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrchardError):
    status_code = 400


class NotFoundError(OrchardError):
    status_code = 404


class ConflictError(OrchardError):
    status_code = 409


class StorageError(OrchardError):
    """The underlying store failed. The message is never shown to clients."""

    status_code = 500
