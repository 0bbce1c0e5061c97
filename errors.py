# errors.py
from typing import Optional


class AppError(Exception):
    """Domain error carrying the HTTP status it should be reported with."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ParseError(AppError):
    """Malformed file structure or an empty workbook/sheet."""
    status_code = 400


class ValidationError(AppError):
    """Caller input that must be corrected before resubmitting."""
    status_code = 400


class StorageError(AppError):
    """Insert or query failure in the relational store. Not retried here."""
    status_code = 500


class CategorizationError(AppError):
    # Raised by llm_service; import_service recovers from it locally.
    status_code = 502
