"""
MFS Quote Engine - Error Types

Operational errors raised by services and rendered by the API layer as
{"success": false, "error": {...}}.

Taxonomy:
- NotFoundError: record absent (in both product families where applicable)
- ValidationError: request rejected before touching the store
- StoreError: the store failed for a reason other than "no rows"
"""
from typing import Any, Optional


class QuoteEngineError(Exception):
    """Base class for errors the API layer knows how to render."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(QuoteEngineError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationError(QuoteEngineError):
    status_code = 400
    code = "VALIDATION_ERROR"


class StoreError(QuoteEngineError):
    status_code = 500
    code = "DATABASE_ERROR"