"""
Error taxonomy for document and revision operations.

Every error carries the HTTP status the blueprint answers with; the core raises
them before mutating anything, so a refused operation leaves the aggregate as it was.
"""

from __future__ import annotations


class DocumentError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(DocumentError):
    status_code = 404


class Conflict(DocumentError):
    status_code = 409


class Forbidden(DocumentError):
    status_code = 403


class InvalidInput(DocumentError):
    status_code = 400


class PolicyViolation(DocumentError):
    status_code = 400


class StorageFailure(DocumentError):
    status_code = 500
